"""Tests for the flow executor.

These cover the run state machine end to end: guards, skip rules,
cancellation across flows, failures, persistence after every step and
resuming an interrupted run.
"""
from unittest.mock import patch

import pytest

from flowsmith.backup import BackupStore
from flowsmith.executor import FlowExecutor, RunStatus, execute_blueprint
from flowsmith.models import Blueprint
from flowsmith.session import SessionTracker
from flowsmith.steps import StepResult, StepType, default_registry
from flowsmith.storage import MemoryStore
from flowsmith.ui import CANCELLED


def blueprint(steps=None, flows=None, **extra):
    doc = {"smith": "test-bp", "schema_version": "1.0.0", **extra}
    doc["flows"] = flows if flows is not None else [{"id": "main", "steps": steps or []}]
    return Blueprint.model_validate(doc)


def make_executor(bp, prompter, variable_store=None, tracker=None, **kwargs):
    kwargs.setdefault("interactive", False)
    return FlowExecutor(bp, prompter, variable_store=variable_store, session_tracker=tracker, **kwargs)


class TestEndToEnd:
    """The input / guarded confirm / info scenario, run twice."""

    def test_second_run_skips_captured_input(self, ada_blueprint, scripted, variable_store, tracker):
        first = make_executor(ada_blueprint, scripted(answers=["Ada"]), variable_store, tracker).run()

        assert first.status == RunStatus.COMPLETED
        assert first.variables["name"] == "Ada"
        assert first.flows_executed == ["setup"]

        prompter = scripted()
        second = make_executor(ada_blueprint, prompter, variable_store, tracker).run()

        assert second.status == RunStatus.COMPLETED
        assert second.variables["name"] == "Ada"
        assert "ask-name" in second.skipped_steps
        assert prompter.asked("text") == []
        assert ("Info", "All set, Ada.") in prompter.shown

    def test_guarded_confirm_runs_once_name_is_set(self, ada_blueprint, scripted):
        prompter = scripted(answers=["Ada"])
        result = make_executor(ada_blueprint, prompter).run()

        assert result.success
        assert prompter.asked("confirm") == ["Hello Ada?"]


class TestGuards:
    """Tests for ``when`` guards."""

    def test_false_guard_skips(self, scripted):
        bp = blueprint([
            {"id": "a", "type": "info", "markdown": "A", "when": 'mode == "live"'},
            {"id": "b", "type": "info", "markdown": "B"},
        ])
        prompter = scripted()
        result = make_executor(bp, prompter).run()

        assert result.success
        assert result.skipped_steps == ["a"]
        assert [body for _, body in prompter.shown] == ["B"]

    def test_malformed_guard_skips_instead_of_raising(self, scripted):
        bp = blueprint([{"id": "a", "type": "input", "save_to": "x", "when": "foo ??? bar"}])
        result = make_executor(bp, scripted()).run()

        assert result.success
        assert result.skipped_steps == ["a"]
        assert "x" not in result.variables


class TestSkipRules:
    """Tests for skipping steps whose effect is already captured."""

    def test_input_with_existing_value_is_not_executed(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"x": "kept"})
        bp = blueprint([{"id": "ask", "type": "input", "save_to": "x"}])
        prompter = scripted()

        result = make_executor(bp, prompter, variable_store).run()

        assert result.success
        assert result.skipped_steps == ["ask"]
        assert result.variables["x"] == "kept"
        assert prompter.calls == []

    def test_multi_input_skips_only_when_all_present(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"user": "ada"})
        bp = blueprint([{"id": "ask", "type": "input", "inputs": [{"name": "user"}, {"name": "host"}]}])
        prompter = scripted(answers=["grace", "db"])

        result = make_executor(bp, prompter, variable_store).run()

        assert result.skipped_steps == []
        assert result.variables["user"] == "grace"
        assert result.variables["host"] == "db"

    def test_choice_skip(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"region": "eu"})
        bp = blueprint([{"id": "pick", "type": "choice", "options": ["us", "eu"], "save_to": "region"}])
        result = make_executor(bp, scripted(), variable_store).run()
        assert result.skipped_steps == ["pick"]

    def test_navigate_explicit_captures(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"api_key": "k"})
        bp = blueprint([
            {"id": "nav", "type": "navigate", "url": "u", "captures": ["api_key"]},
            {"id": "nav2", "type": "navigate", "url": "u", "captures": ["api_key", "secret"]},
        ])
        prompter = scripted()
        result = make_executor(bp, prompter, variable_store).run()

        assert result.skipped_steps == ["nav"]
        assert len(prompter.asked("confirm")) == 1

    def test_navigate_looks_ahead_to_next_input(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"api_key": "k"})
        bp = blueprint([
            {"id": "nav", "type": "navigate", "url": "u"},
            {"id": "note", "type": "info", "markdown": "copy it"},
            {"id": "ask", "type": "input", "save_to": "api_key"},
        ])
        result = make_executor(bp, scripted(), variable_store).run()
        assert result.skipped_steps == ["nav", "ask"]

    def test_look_ahead_stops_at_next_navigate(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"api_key": "k"})
        bp = blueprint([
            {"id": "nav", "type": "navigate", "url": "u"},
            {"id": "nav2", "type": "navigate", "url": "v"},
            {"id": "ask", "type": "input", "save_to": "api_key"},
        ])
        result = make_executor(bp, scripted(), variable_store).run()
        assert result.skipped_steps == ["nav2", "ask"]

    def test_navigate_without_candidate_runs(self, scripted):
        bp = blueprint([{"id": "nav", "type": "navigate", "url": "u"}])
        prompter = scripted()
        result = make_executor(bp, prompter).run()

        assert result.skipped_steps == []
        assert prompter.asked("confirm") == ["Have you completed the steps above?"]

    def test_interactive_run_asks_before_skipping(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"x": "old"})
        bp = blueprint([{"id": "ask", "type": "input", "title": "X", "save_to": "x"}])
        # reuse saved variables: yes; skip the step: no
        prompter = scripted(answers=["new"], confirms=[True, False])

        result = make_executor(bp, prompter, variable_store, interactive=True).run()

        assert result.variables["x"] == "new"
        assert result.skipped_steps == []
        assert "looks done already" in prompter.asked("confirm")[1]

    def test_cancel_at_skip_prompt_cancels_run(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"x": "old"})
        bp = blueprint([{"id": "ask", "type": "input", "save_to": "x"}])
        prompter = scripted(confirms=[True, CANCELLED])

        result = make_executor(bp, prompter, variable_store, interactive=True).run()
        assert result.status == RunStatus.CANCELLED


class TestCancellation:
    """Cancellation stops the whole run, not just the step."""

    def test_cancel_in_flow_two_of_three(self, three_flow_blueprint, scripted):
        prompter = scripted(answers=["1", "2", "3"], confirms=[False])
        result = make_executor(three_flow_blueprint, prompter).run()

        assert result.status == RunStatus.CANCELLED
        assert result.cancelled and not result.success
        assert result.flows_executed == ["f1"]
        assert result.variables["a"] == "1"
        assert result.variables["b"] == "2"
        assert "c" not in result.variables
        assert len(prompter.asked("text")) == 2

    def test_cancelled_input(self, scripted):
        bp = blueprint([
            {"id": "a", "type": "input", "save_to": "a"},
            {"id": "b", "type": "info", "markdown": "never"},
        ])
        prompter = scripted(answers=[CANCELLED])
        result = make_executor(bp, prompter).run()

        assert result.cancelled
        assert prompter.shown == []


class TestFailures:
    """Failures stop the run and name the step."""

    def test_failed_step_is_reported(self, scripted):
        registry = default_registry()
        registry.register(StepType(type="broken", execute=lambda *a: StepResult.fail("no network")))
        bp = blueprint([
            {"id": "ok", "type": "info", "markdown": "x"},
            {"id": "bad", "type": "broken"},
            {"id": "after", "type": "info", "markdown": "y"},
        ])
        prompter = scripted()
        result = make_executor(bp, prompter, registry=registry).run()

        assert result.status == RunStatus.FAILED
        assert result.failed_step == "bad"
        assert result.failed_flow == "main"
        assert result.error == "no network"
        assert len(prompter.shown) == 1

    def test_raising_step_becomes_failure(self, scripted):
        def explode(*args):
            raise RuntimeError("boom")

        registry = default_registry()
        registry.register(StepType(type="explode", execute=explode))
        bp = blueprint([{"id": "x", "type": "explode"}])

        result = make_executor(bp, scripted(), registry=registry).run()
        assert result.status == RunStatus.FAILED
        assert result.failed_step == "x"
        assert "boom" in result.error

    def test_invalid_blueprint_never_runs(self, scripted):
        bp = blueprint([
            {"id": "a", "type": "info", "markdown": "x"},
            {"id": "b", "type": "choice"},
        ])
        prompter = scripted()
        result = make_executor(bp, prompter).run()

        assert result.status == RunStatus.FAILED
        assert result.validation is not None
        assert result.validation.error_count == 2
        assert prompter.shown == [] and prompter.calls == []

    def test_unknown_flow(self, three_flow_blueprint, scripted):
        result = make_executor(three_flow_blueprint, scripted(), flow_id="f9").run()
        assert result.status == RunStatus.FAILED
        assert "Unknown flow: f9" in result.error


class TestFlowSelection:
    def test_runs_only_requested_flow(self, three_flow_blueprint, scripted):
        prompter = scripted(answers=["3"])
        result = make_executor(three_flow_blueprint, prompter, flow_id="f3").run()

        assert result.success
        assert result.flows_executed == ["f3"]
        assert result.variables["c"] == "3"

    def test_context_flows_between_flows(self, scripted):
        bp = blueprint(flows=[
            {"id": "one", "steps": [{"type": "input", "save_to": "name"}]},
            {"id": "two", "steps": [{"type": "info", "markdown": "Hi {{ name }}"}]},
        ])
        prompter = scripted(answers=["Ada"])
        result = make_executor(bp, prompter).run()

        assert result.flows_executed == ["one", "two"]
        assert prompter.shown[-1][1] == "Hi Ada"


class TestPersistence:
    """Variables are persisted after every step."""

    def test_saved_before_later_step_cancels(self, scripted, variable_store):
        bp = blueprint([
            {"id": "a", "type": "input", "save_to": "a"},
            {"id": "b", "type": "input", "save_to": "b"},
        ])
        make_executor(bp, scripted(answers=["1", CANCELLED]), variable_store).run()

        assert variable_store.load_record("test-bp").variables == {"a": "1"}

    def test_reserved_keys_excluded_and_slugs_interpolated(self, scripted, variable_store):
        bp = blueprint(
            [{"id": "a", "type": "input", "save_to": "name"}],
            slugs={"app": "{{ name }}-app"},
            auth={"provider": "github"},
            variables={"name": {"required": True}},
        )
        make_executor(bp, scripted(answers=["ada"]), variable_store).run()

        stored = variable_store.load_record("test-bp")
        assert stored.schema_version == "1.0.0"
        assert stored.variables == {"name": "ada", "slugs": {"app": "ada-app"}}

    def test_major_version_change_asks_again(self, scripted, variable_store):
        variable_store.save("test-bp", "0.9.0", {"x": "old"})
        bp = blueprint([{"id": "ask", "type": "input", "save_to": "x"}])
        result = make_executor(bp, scripted(answers=["new"]), variable_store).run()

        assert result.skipped_steps == []
        assert result.variables["x"] == "new"

    def test_stored_value_failing_pattern_is_asked_again(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"key": "pk_1"})
        bp = blueprint(
            [{"id": "ask", "type": "input", "save_to": "key"}],
            variables={"key": {"validation": "^sk_"}},
        )
        result = make_executor(bp, scripted(answers=["sk_1"]), variable_store).run()
        assert result.variables["key"] == "sk_1"

    def test_declining_saved_variables_deletes_them(self, scripted, variable_store):
        variable_store.save("test-bp", "1.0.0", {"x": "old"})
        bp = blueprint([{"id": "ask", "type": "input", "save_to": "x"}])
        prompter = scripted(answers=["new"], confirms=[False])

        result = make_executor(bp, prompter, variable_store, interactive=True).run()

        assert result.variables["x"] == "new"
        assert "saved variable" in prompter.asked("confirm")[0]
        assert variable_store.load_record("test-bp").variables == {"x": "new"}


class TestResume:
    """Resuming an interrupted run."""

    def test_resume_starts_at_recorded_step(self, scripted, variable_store, tracker):
        bp = blueprint(flows=[{"id": "f1", "steps": [
            {"id": f"s{i}", "type": "input", "save_to": f"v{i}"} for i in range(5)
        ]}])

        first = make_executor(bp, scripted(answers=["0", "1", CANCELLED]), variable_store, tracker).run()
        assert first.cancelled
        assert tracker.current().flow_id == "f1"
        assert tracker.current().step_index == 2

        prompter = scripted(answers=["2", "3", "4"])
        second = make_executor(bp, prompter, variable_store, tracker).run()

        assert second.success
        assert second.resumed
        assert second.skipped_steps == []
        assert len(prompter.asked("text")) == 3
        assert [second.variables[f"v{i}"] for i in range(5)] == ["0", "1", "2", "3", "4"]
        assert tracker.current() is None

    def test_resume_skips_earlier_flows(self, three_flow_blueprint, scripted, variable_store, tracker):
        make_executor(
            three_flow_blueprint, scripted(answers=["1", "2"], confirms=[False]), variable_store, tracker
        ).run()
        assert tracker.current().flow_id == "f2"

        result = make_executor(three_flow_blueprint, scripted(answers=["3"]), variable_store, tracker).run()

        assert result.success
        assert result.flows_executed == ["f2", "f3"]
        assert result.variables["a"] == "1"
        assert result.variables["c"] == "3"

    def test_stale_session_starts_over(self, scripted, variable_store, tracker, clock):
        bp = blueprint([
            {"id": "s0", "type": "info", "markdown": "hello"},
            {"id": "s1", "type": "confirm"},
        ])
        make_executor(bp, scripted(confirms=[False]), variable_store, tracker).run()
        clock.advance(hours=30)

        prompter = scripted()
        result = make_executor(bp, prompter, variable_store, tracker).run()

        assert result.success
        assert not result.resumed
        assert prompter.shown[0][1] == "hello"


class TestInteractiveRun:
    def test_overview_declined_cancels(self, scripted):
        bp = blueprint(
            [{"id": "a", "type": "info", "markdown": "x"}],
            overview={"title": "Stripe", "description": "Payments", "estimated_time": "5 min", "steps": ["Keys"]},
        )
        prompter = scripted(confirms=[False])
        result = make_executor(bp, prompter, interactive=True).run()

        assert result.cancelled
        title, body = prompter.shown[0]
        assert title == "Stripe"
        assert "Estimated time: 5 min" in body
        assert prompter.asked("confirm") == ["Ready to begin?"]

    def test_overview_not_shown_in_dev_mode(self, scripted):
        bp = blueprint([{"id": "a", "type": "input", "save_to": "x", "default": "d"}], overview={"title": "T"})
        prompter = scripted()
        result = make_executor(bp, prompter, interactive=True, dev_mode=True).run()

        assert result.success
        assert result.variables["x"] == "d"
        assert prompter.calls == []


class TestCompletion:
    def test_completed_run_is_backed_up(self, ada_blueprint, scripted, variable_store, clock, tmp_path):
        backup = BackupStore(tmp_path / "home", clock=clock)
        tracker = SessionTracker(MemoryStore(), variable_store, backup=backup, clock=clock)

        result = make_executor(
            ada_blueprint, scripted(answers=["Ada"]), variable_store, tracker, project_root=tmp_path
        ).run()

        assert result.success
        assert result.backed_up is True
        assert tracker.current() is None
        assert len(backup.list_backups()) == 1


class TestSummary:
    def test_sensitive_values_are_masked(self, scripted):
        bp = blueprint(
            [{"id": "a", "type": "input", "inputs": [{"name": "region"}, {"name": "api_token"}, {"name": "dsn"}]}],
            variables={"dsn": {"sensitive": True}, "region": {}, "api_token": {}},
        )
        executor = make_executor(bp, scripted(answers=["eu", "tok_123", "https://k@sentry"]))
        executor.run()
        summary = executor.summary()

        assert "region: eu" in summary
        assert "tok_123" not in summary
        assert "https://k@sentry" not in summary
        assert "api_token: ********" in summary
        assert "  region: eu" in summary.splitlines()


class TestLogging:
    def test_run_is_scoped_by_correlation_id(self, ada_blueprint, scripted):
        result = make_executor(ada_blueprint, scripted(answers=["Ada"])).run(correlation_id="corr_test")
        assert result.correlation_id == "corr_test"
        assert result.duration_ms is not None

    def test_logs_carry_blueprint_identity(self, ada_blueprint, scripted):
        with patch("flowsmith.executor.get_logger") as get_logger:
            executor = make_executor(ada_blueprint, scripted(answers=["Ada"]))
            executor.run()
        messages = [c.args[0] for c in get_logger.return_value.info.call_args_list]
        assert any(m.startswith("Run started") for m in messages)
        assert any(m.startswith("Run completed") for m in messages)


def test_execute_blueprint_convenience(ada_blueprint, scripted):
    result = execute_blueprint(ada_blueprint, scripted(answers=["Ada"]), interactive=False)
    assert result.success
    assert result.to_dict()["status"] == "completed"
