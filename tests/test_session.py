"""Tests for the session tracker's resume decisions and completion."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from flowsmith.backup import VARIABLES_RECORD, BackupError, BackupStore
from flowsmith.models import Blueprint
from flowsmith.session import SessionTracker, time_ago
from flowsmith.storage import MemoryStore
from flowsmith.ui import CANCELLED


@pytest.fixture
def bp(ada_blueprint):
    return ada_blueprint


def other_blueprint():
    return Blueprint.model_validate({"smith": "someone-else", "flows": [{"id": "x", "steps": []}]})


class TestStartAndProgress:
    """Tests for recording progress."""

    def test_start_creates_session(self, tracker, bp, clock):
        session = tracker.start(bp, "setup")
        assert session.blueprint_id == "ada-demo"
        assert session.flow_id == "setup"
        assert session.step_index == 0
        assert session.started_at == clock.now
        assert tracker.current() == session

    def test_update_progress(self, tracker, bp, clock):
        tracker.start(bp, "setup")
        clock.advance(minutes=3)
        tracker.update_progress("setup", 2)

        session = tracker.current()
        assert session.step_index == 2
        assert session.last_updated == clock.now
        assert session.started_at == clock.now - timedelta(minutes=3)

    def test_start_keeps_open_session_start_time(self, tracker, bp, clock):
        first = tracker.start(bp, "setup")
        clock.advance(minutes=1)
        second = tracker.start(bp, "next-flow")
        assert second.started_at == first.started_at
        assert second.flow_id == "next-flow"

    def test_update_without_session_is_noop(self, tracker):
        assert tracker.update_progress("f", 1) is None
        assert tracker.current() is None


class TestCheckForResume:
    """Tests for the resume-vs-restart decision."""

    def test_no_session(self, tracker, bp):
        decision = tracker.check_for_resume(bp, interactive=False)
        assert not decision.resume and not decision.cancelled

    def test_resumes_when_non_interactive(self, tracker, bp):
        tracker.start(bp, "setup")
        tracker.update_progress("setup", 2)

        decision = tracker.check_for_resume(bp, interactive=False)
        assert decision.resume
        assert decision.session.step_index == 2

    def test_other_blueprint_is_discarded(self, tracker, bp):
        tracker.start(other_blueprint(), "x")
        decision = tracker.check_for_resume(bp, interactive=False)

        assert not decision.resume
        assert decision.reason == "different blueprint"
        assert tracker.current() is None

    def test_stale_session_is_discarded(self, tracker, bp, clock):
        tracker.start(bp, "setup")
        clock.advance(hours=25)

        decision = tracker.check_for_resume(bp, interactive=False)
        assert not decision.resume
        assert decision.reason == "stale"
        assert tracker.current() is None

    def test_fresh_within_window(self, tracker, bp, clock):
        tracker.start(bp, "setup")
        clock.advance(hours=23)
        assert tracker.check_for_resume(bp, interactive=False).resume

    def test_max_age_is_configurable(self, variable_store, bp, clock):
        tracker = SessionTracker(MemoryStore(), variable_store, max_age=timedelta(minutes=5), clock=clock)
        tracker.start(bp, "setup")
        clock.advance(minutes=6)
        assert not tracker.check_for_resume(bp, interactive=False).resume

    def test_completed_session_starts_fresh(self, tracker, bp):
        tracker.start(bp, "setup")
        session = tracker.current()
        session.completed = True
        tracker.store.save("session", session.model_dump(mode="json"))

        assert not tracker.check_for_resume(bp, interactive=False).resume

    def test_interactive_yes_resumes(self, tracker, bp, scripted):
        tracker.start(bp, "setup")
        prompter = scripted(confirms=[True])

        decision = tracker.check_for_resume(bp, prompter=prompter, interactive=True)
        assert decision.resume
        assert "Resume" in prompter.asked("confirm")[0]

    def test_restart_is_full_reset(self, tracker, bp, scripted, variable_store):
        tracker.start(bp, "setup")
        variable_store.save(bp.identity, "1.0.0", {"name": "Ada"})

        decision = tracker.check_for_resume(bp, prompter=scripted(confirms=[False]), interactive=True)

        assert not decision.resume
        assert decision.reason == "restart"
        assert tracker.current() is None
        assert variable_store.load_record(bp.identity) is None

    def test_cancel_at_resume_prompt(self, tracker, bp, scripted):
        tracker.start(bp, "setup")
        decision = tracker.check_for_resume(bp, prompter=scripted(confirms=[CANCELLED]), interactive=True)
        assert decision.cancelled
        assert tracker.current() is not None

    def test_switching_flow_starts_fresh(self, tracker, bp, scripted):
        tracker.start(bp, "setup")
        prompter = scripted(confirms=[True])

        decision = tracker.check_for_resume(bp, prompter=prompter, interactive=True, target_flow="other")
        assert not decision.resume
        assert decision.reason == "switched flow"
        assert tracker.current() is None
        assert "Start 'other' instead?" in prompter.asked("confirm")[0]

    def test_declining_flow_switch_cancels(self, tracker, bp, scripted):
        tracker.start(bp, "setup")
        decision = tracker.check_for_resume(
            bp, prompter=scripted(confirms=[False]), interactive=True, target_flow="other"
        )
        assert decision.cancelled
        assert tracker.current().flow_id == "setup"

    def test_same_target_flow_resumes(self, tracker, bp):
        tracker.start(bp, "setup")
        assert tracker.check_for_resume(bp, interactive=False, target_flow="setup").resume


class TestComplete:
    """Completion backs up before clearing."""

    def test_without_backup_clears(self, tracker, bp):
        tracker.start(bp, "setup")
        assert tracker.complete() is True
        assert tracker.current() is None

    def test_backup_then_clear(self, variable_store, bp, clock, tmp_path):
        backup = BackupStore(tmp_path / "home", clock=clock)
        metadata = MemoryStore()
        metadata.save("tech-stack", {"lang": "python"})
        tracker = SessionTracker(
            MemoryStore(), variable_store, backup=backup, clock=clock, metadata_store=metadata
        )
        tracker.start(bp, "setup")
        variable_store.save(bp.identity, "1.0.0", {"name": "Ada"})

        assert tracker.complete(project_key=tmp_path / "proj", metadata={"extra": {"k": "v"}}) is True

        assert tracker.current() is None
        entry = backup.list_backups()[0]
        assert entry.display_name == bp.display_name
        records = backup.load_records(entry.project_hash)
        assert records[VARIABLES_RECORD]["record"]["variables"] == {"name": "Ada"}
        assert records["tech-stack"] == {"lang": "python"}
        assert records["extra"] == {"k": "v"}

    def test_session_is_marked_completed_before_backup(self, variable_store, bp, clock):
        store = MemoryStore()
        backup = MagicMock()
        seen = {}

        def check(*args, **kwargs):
            seen["completed"] = store.load("session")["completed"]

        backup.backup.side_effect = check
        tracker = SessionTracker(store, variable_store, backup=backup, clock=clock)
        tracker.start(bp, "setup")

        tracker.complete(project_key="/tmp/p")
        assert seen["completed"] is True

    def test_failed_backup_keeps_session(self, variable_store, bp, clock):
        backup = MagicMock()
        backup.backup.side_effect = BackupError("disk gone")
        tracker = SessionTracker(MemoryStore(), variable_store, backup=backup, clock=clock)
        tracker.start(bp, "setup")

        assert tracker.complete(project_key="/tmp/p") is False
        session = tracker.current()
        assert session is not None and session.completed


class TestStatus:
    def test_no_session(self, tracker):
        assert tracker.status_lines() == ["No active session"]

    def test_in_progress(self, tracker, bp, clock):
        tracker.start(bp, "setup")
        tracker.update_progress("setup", 1)
        clock.advance(hours=2)
        lines = tracker.status_lines()

        assert "Flow: setup" in lines
        assert "Next step: 2" in lines
        assert "Last active: 2 hours ago" in lines
        assert "Status: in progress" in lines

    def test_time_ago(self, clock):
        now = clock.now
        assert time_ago(now, now) == "just now"
        assert time_ago(now - timedelta(minutes=1), now) == "1 minute ago"
        assert time_ago(now - timedelta(days=3), now) == "3 days ago"

    def test_failed_backup_is_reported(self, variable_store, bp, clock):
        backup = MagicMock()
        backup.backup.side_effect = BackupError("disk gone")
        tracker = SessionTracker(MemoryStore(), variable_store, backup=backup, clock=clock)
        tracker.start(bp, "setup")
        tracker.complete(project_key="/tmp/p")

        assert "Status: completed, backup failed" in tracker.status_lines()
