"""Choice step: pick one of a fixed list of options into ``save_to``."""
from flowsmith.steps.base import FieldError, StepResult, StepType
from flowsmith.ui import is_cancelled


def _check_choice(step) -> list[FieldError]:
    if step.options is not None and len(step.options) == 0:
        return [FieldError("options", "choice steps need at least one option")]
    return []


def execute_choice(step, context, prompter, dev_mode=False) -> StepResult:
    options = step.options or []
    if not step.save_to:
        return StepResult.fail("Choice step has no 'save_to'")
    if not options:
        return StepResult.fail("Choice step has no options")

    if dev_mode:
        return StepResult.ok({step.save_to: options[0]})

    selected = prompter.select(step.title or "Select an option", options)
    if is_cancelled(selected):
        return StepResult.cancel()
    return StepResult.ok({step.save_to: selected})


CHOICE = StepType(
    type="choice",
    execute=execute_choice,
    required_fields=("options", "save_to"),
    optional_fields=("title", "when"),
    check=_check_choice,
)
