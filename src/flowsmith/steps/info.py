"""Info step: show markdown text. No variables, always succeeds."""
from flowsmith.steps.base import StepResult, StepType


def execute_info(step, context, prompter, dev_mode=False) -> StepResult:
    prompter.show(step.title or "Info", step.markdown or "")
    return StepResult.ok()


INFO = StepType(
    type="info",
    execute=execute_info,
    required_fields=("markdown",),
    optional_fields=("title", "when"),
)
