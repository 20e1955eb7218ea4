"""Flow executor - walks a blueprint's flows step by step.

States: IDLE -> RUNNING -> COMPLETED | CANCELLED | FAILED.

For every step, in order:
1. ``when`` guard false -> skip
2. skip rules (effect already captured in context) -> skip, asking first
   in interactive runs
3. execute through the step type registry with templates resolved
4. merge produced variables, persist them
5. advance the session

A cancelled step stops the whole run; remaining flows never start. A
failed step stops the run and is reported by id. Neither raises.

All execution is wrapped in a CorrelationContext for observability.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional, Union

from flowsmith.logging import CorrelationContext, generate_correlation_id, get_logger
from flowsmith.models import Blueprint, Flow, Step
from flowsmith.session import ResumeDecision, SessionTracker
from flowsmith.steps import DEFAULT_REGISTRY, StepResult, StepTypeRegistry
from flowsmith.storage import VariableStore
from flowsmith.template import evaluate_condition, has_path, interpolate_object, merge_contexts
from flowsmith.ui import Prompter, is_cancelled
from flowsmith.validator import ValidationResult, validate

# Context keys never written to the variable store.
PERSIST_EXCLUDED = ("auth", "variables", "schema_version")

MASK = "********"


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RunResult:
    """Result of running a blueprint."""
    status: RunStatus
    variables: dict[str, Any] = field(default_factory=dict)
    flows_executed: list[str] = field(default_factory=list)
    failed_step: Optional[str] = None
    failed_flow: Optional[str] = None
    error: Optional[str] = None
    validation: Optional[ValidationResult] = None
    skipped_steps: list[str] = field(default_factory=list)
    resumed: bool = False
    backed_up: Optional[bool] = None
    correlation_id: Optional[str] = None
    duration_ms: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.status == RunStatus.CANCELLED

    def to_dict(self) -> dict[str, Any]:
        data = {
            "status": self.status.value,
            "variables": self.variables,
            "flows_executed": self.flows_executed,
            "skipped_steps": self.skipped_steps,
            "resumed": self.resumed,
        }
        if self.failed_step:
            data["failed_step"] = self.failed_step
            data["failed_flow"] = self.failed_flow
        if self.error:
            data["error"] = self.error
        if self.validation is not None and not self.validation.passed:
            data["validation_errors"] = [str(e) for e in self.validation.errors]
        if self.backed_up is not None:
            data["backed_up"] = self.backed_up
        return data


class _Stop(Exception):
    """Internal: unwinds the step loop with a terminal result."""

    def __init__(self, result: RunResult):
        self.result = result
        super().__init__(result.status.value)


class FlowExecutor:
    """Executes the flows of one blueprint against a shared variable context."""

    def __init__(
        self,
        blueprint: Blueprint,
        prompter: Prompter,
        *,
        registry: Optional[StepTypeRegistry] = None,
        variable_store: Optional[VariableStore] = None,
        session_tracker: Optional[SessionTracker] = None,
        dev_mode: bool = False,
        interactive: bool = True,
        flow_id: Optional[str] = None,
        project_root: Optional[Union[str, Path]] = None,
    ):
        self.blueprint = blueprint
        self.prompter = prompter
        self.registry = registry or DEFAULT_REGISTRY
        self.variable_store = variable_store
        self.session_tracker = session_tracker
        self.dev_mode = dev_mode
        self.interactive = interactive
        self.flow_id = flow_id
        self.project_root = project_root

        self.status = RunStatus.IDLE
        self.context: dict[str, Any] = {}
        self._flows_executed: list[str] = []
        self._skipped: list[str] = []
        self._resumed = False
        self._logger = get_logger("flowsmith.executor")

    @property
    def asks(self) -> bool:
        """Whether the run may ask the user about skips, resume and reuse."""
        return self.interactive and not self.dev_mode

    def run(self, correlation_id: Optional[str] = None) -> RunResult:
        """Run the blueprint to a terminal state.

        Args:
            correlation_id: Optional correlation ID for tracing. Auto-generated if not provided.

        Returns:
            RunResult with the final status and context.
        """
        cid = correlation_id or generate_correlation_id()
        started = time.monotonic()

        with CorrelationContext(correlation_id=cid, blueprint_id=self.blueprint.identity):
            self._logger.info(
                f"Run started: {self.blueprint.display_name}",
                component="executor",
                extra={
                    "flows": len(self.blueprint.flows),
                    "total_steps": self.blueprint.total_steps(),
                    "dev_mode": self.dev_mode,
                    "interactive": self.interactive,
                },
            )
            try:
                result = self._run()
            except _Stop as stop:
                result = stop.result

            self.status = result.status
            result.correlation_id = cid
            result.duration_ms = (time.monotonic() - started) * 1000
            log = self._logger.error if result.status == RunStatus.FAILED else self._logger.info
            log(
                f"Run {result.status.value}: {self.blueprint.display_name}",
                component="executor",
                duration_ms=result.duration_ms,
                extra={
                    "flows_executed": result.flows_executed,
                    "failed_step": result.failed_step,
                    "error": result.error,
                },
            )
            return result

    def _run(self) -> RunResult:
        validation = validate(self.blueprint, self.registry)
        if not validation.passed:
            return self._result(
                RunStatus.FAILED,
                error=f"Blueprint is invalid: {validation.summary()}",
                validation=validation,
            )

        flows = self._select_flows()

        decision = self._decide_resume()
        if decision.cancelled:
            return self._result(RunStatus.CANCELLED)
        self._resumed = decision.resume

        self._seed_context()

        if not self._resumed:
            self._show_overview()

        self.status = RunStatus.RUNNING
        start_flow, start_step = self._resume_point(flows, decision)

        for flow in flows[start_flow:]:
            first_step = start_step if flow is flows[start_flow] else 0
            self._run_flow(flow, first_step)
            self._flows_executed.append(flow.id)

        backed_up = None
        if self.session_tracker is not None:
            backed_up = self.session_tracker.complete(project_key=self.project_root)
        result = self._result(RunStatus.COMPLETED)
        result.backed_up = backed_up
        return result

    def _select_flows(self) -> list[Flow]:
        if not self.flow_id:
            return list(self.blueprint.flows)
        flow = self.blueprint.get_flow(self.flow_id)
        if flow is None:
            available = ", ".join(f.id for f in self.blueprint.flows) or "none"
            raise _Stop(self._result(
                RunStatus.FAILED,
                error=f"Unknown flow: {self.flow_id} (available: {available})",
            ))
        return [flow]

    def _decide_resume(self) -> ResumeDecision:
        if self.session_tracker is None:
            return ResumeDecision(resume=False, reason="no tracker")
        decision = self.session_tracker.check_for_resume(
            self.blueprint,
            prompter=self.prompter,
            interactive=self.asks,
            target_flow=self.flow_id,
        )
        self._logger.info(
            f"Session decision: {decision.reason}",
            component="executor",
            extra={"resume": decision.resume},
        )
        return decision

    def _seed_context(self) -> None:
        self.context = self.blueprint.initial_context()
        if self.variable_store is None:
            return

        identity = self.blueprint.identity
        stored = self.variable_store.load_validated(
            identity,
            self.blueprint.schema_version,
            self.blueprint.variables,
        )
        if not stored:
            return

        if self.asks and not self._resumed:
            answer = self.prompter.confirm(
                f"Found {len(stored)} saved variable(s) from a previous run. Use them?",
                default=True,
            )
            if is_cancelled(answer):
                raise _Stop(self._result(RunStatus.CANCELLED))
            if not answer:
                self.variable_store.delete(identity)
                self._logger.info("Saved variables discarded", component="executor")
                return

        captured = {k: v for k, v in stored.items() if k not in PERSIST_EXCLUDED and k != "slugs"}
        self.context = merge_contexts(self.context, captured)
        self._logger.info(
            f"Loaded {len(captured)} saved variable(s)",
            component="executor",
            extra={"names": sorted(captured)},
        )

    def _show_overview(self) -> None:
        overview = self.blueprint.overview
        if overview is None or not overview.enabled or not self.asks:
            return

        lines = []
        if overview.description:
            lines.append(overview.description)
        if overview.estimated_time:
            lines.append(f"Estimated time: {overview.estimated_time}")
        if overview.steps:
            lines.append("")
            lines.extend(f"  {i}. {text}" for i, text in enumerate(overview.steps, start=1))
        self.prompter.show(overview.title or self.blueprint.display_name, "\n".join(lines))

        answer = self.prompter.confirm("Ready to begin?", default=True)
        if is_cancelled(answer) or not answer:
            raise _Stop(self._result(RunStatus.CANCELLED))

    def _resume_point(self, flows: list[Flow], decision: ResumeDecision) -> tuple[int, int]:
        if not decision.resume or decision.session is None:
            return 0, 0
        for index, flow in enumerate(flows):
            if flow.id == decision.session.flow_id:
                self._logger.info(
                    f"Resuming at step {decision.session.step_index}",
                    flow_id=flow.id,
                    component="executor",
                )
                return index, decision.session.step_index
        self._resumed = False
        return 0, 0

    def _run_flow(self, flow: Flow, start_index: int) -> None:
        self._logger.info(
            f"Flow started: {flow.title}",
            flow_id=flow.id,
            component="executor",
            extra={"steps": flow.step_count(), "start_index": start_index},
        )
        if self.session_tracker is not None:
            self.session_tracker.start(self.blueprint, flow.id, start_index)

        for index in range(start_index, len(flow.steps)):
            self._run_step(flow, index)
            if self.session_tracker is not None:
                self.session_tracker.update_progress(flow.id, index + 1)

        self._logger.info(f"Flow completed: {flow.title}", flow_id=flow.id, component="executor")

    def _run_step(self, flow: Flow, index: int) -> None:
        raw = flow.steps[index]

        if raw.when and not evaluate_condition(raw.when, self.context):
            self._skip(flow, raw, "guard is false")
            return

        if self.should_skip(flow, index):
            if self.asks:
                answer = self.prompter.confirm(f"'{raw.label}' looks done already. Skip it?", default=True)
                if is_cancelled(answer):
                    raise _Stop(self._cancelled(flow, raw))
                if answer:
                    self._skip(flow, raw, "already captured")
                    return
            else:
                self._skip(flow, raw, "already captured")
                return

        step = self.resolve_step(raw)
        start = time.monotonic()
        try:
            result = self.registry.execute(step, MappingProxyType(self.context), self.prompter, self.dev_mode)
        except Exception as e:
            result = StepResult.fail(f"{type(e).__name__}: {e}")
        duration_ms = (time.monotonic() - start) * 1000

        if result.cancelled:
            raise _Stop(self._cancelled(flow, raw))

        if not result.success:
            self._logger.error(
                f"Step failed: {result.error}",
                flow_id=flow.id,
                step_id=raw.id,
                component="executor",
                duration_ms=duration_ms,
            )
            raise _Stop(self._result(
                RunStatus.FAILED,
                failed_step=raw.id,
                failed_flow=flow.id,
                error=result.error or "Step failed",
            ))

        self._logger.debug(
            f"Step completed: {raw.label}",
            flow_id=flow.id,
            step_id=raw.id,
            component="executor",
            duration_ms=duration_ms,
            extra={"variables": sorted(result.variables)},
        )
        if result.variables:
            self.context = merge_contexts(self.context, result.variables)
            self._persist()

    def resolve_step(self, step: Step) -> Step:
        """The step with every template in it resolved against the context."""
        return Step.model_validate(interpolate_object(step.to_document(), self.context))

    def should_skip(self, flow: Flow, index: int) -> bool:
        """Whether the effect of the step at ``index`` is already in the context.

        Navigate steps trust an explicit ``captures`` list. Without one they
        look ahead, up to the next navigate step, for the first input or
        choice step and skip when that one would be skipped. A navigate
        step with nothing to look at is never skipped.
        """
        step = flow.steps[index]
        if step.type == "navigate":
            if step.captures:
                return all(self._has(name) for name in step.captures)
            candidate = self._lookahead(flow, index)
            return candidate is not None and self._captured(candidate)
        if step.type in ("input", "choice"):
            return self._captured(step)
        return False

    def _lookahead(self, flow: Flow, index: int) -> Optional[Step]:
        for step in flow.steps[index + 1:]:
            if step.type == "navigate":
                return None
            if step.type in ("input", "choice"):
                return step
        return None

    def _captured(self, step: Step) -> bool:
        names = step.produced_variables()
        return bool(names) and all(self._has(name) for name in names)

    def _has(self, name: str) -> bool:
        return name in self.context or has_path(self.context, name)

    def _skip(self, flow: Flow, step: Step, reason: str) -> None:
        self._skipped.append(step.id)
        self._logger.info(
            f"Step skipped: {reason}",
            flow_id=flow.id,
            step_id=step.id,
            component="executor",
        )

    def _persist(self) -> None:
        if self.variable_store is None:
            return
        captured = {k: v for k, v in self.context.items() if k not in PERSIST_EXCLUDED}
        if "slugs" in captured:
            captured["slugs"] = interpolate_object(captured["slugs"], self.context)
        self.variable_store.save(self.blueprint.identity, self.blueprint.schema_version, captured)

    def _cancelled(self, flow: Flow, step: Step) -> RunResult:
        self._logger.info("Run cancelled by user", flow_id=flow.id, step_id=step.id, component="executor")
        return self._result(RunStatus.CANCELLED)

    def _result(self, status: RunStatus, **kwargs) -> RunResult:
        return RunResult(
            status=status,
            variables=dict(self.context),
            flows_executed=list(self._flows_executed),
            skipped_steps=list(self._skipped),
            resumed=self._resumed,
            **kwargs,
        )

    def summary(self) -> str:
        """Captured variables, with sensitive values masked."""
        captured = {
            k: v for k, v in self.context.items()
            if k not in PERSIST_EXCLUDED and k != "slugs"
        }
        lines = [
            "Blueprint: " + self.blueprint.display_name,
            "Status: " + self.status.value,
            "Flows executed: " + (", ".join(self._flows_executed) or "none"),
        ]
        if captured:
            lines.append("Variables:")
            for name, value in captured.items():
                shown = MASK if self.blueprint.is_sensitive(name) else value
                lines.append(f"  {name}: {shown}")
        return "\n".join(lines)


def execute_blueprint(
    blueprint: Blueprint,
    prompter: Optional[Prompter] = None,
    correlation_id: Optional[str] = None,
    **kwargs,
) -> RunResult:
    """Convenience function to run a Blueprint.

    Args:
        blueprint: Blueprint to run.
        prompter: UI collaborator. Defaults to a console prompter.
        correlation_id: Optional correlation ID for tracing.
        **kwargs: Passed to FlowExecutor (registry, stores, dev_mode, ...).

    Returns:
        RunResult with the final status and context.
    """
    if prompter is None:
        from flowsmith.ui import ConsolePrompter
        prompter = ConsolePrompter()
    executor = FlowExecutor(blueprint, prompter, **kwargs)
    return executor.run(correlation_id=correlation_id)
