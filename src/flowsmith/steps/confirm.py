"""Confirm step: a yes/no gate. "No" cancels the rest of the run."""
from flowsmith.steps.base import StepResult, StepType
from flowsmith.ui import is_cancelled


def execute_confirm(step, context, prompter, dev_mode=False) -> StepResult:
    if not dev_mode:
        answer = prompter.confirm(step.message or step.title or "Continue?", default=True)
        if is_cancelled(answer) or not answer:
            return StepResult.cancel()

    variables = {}
    if step.save_to:
        variables[step.save_to] = True
    return StepResult.ok(variables)


CONFIRM = StepType(
    type="confirm",
    execute=execute_confirm,
    optional_fields=("title", "message", "save_to", "when"),
)
