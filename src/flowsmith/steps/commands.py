"""Show-commands step: list shell commands for the user to run by hand."""
from flowsmith.steps.base import StepResult, StepType
from flowsmith.ui import is_cancelled


def execute_show_commands(step, context, prompter, dev_mode=False) -> StepResult:
    commands = step.commands or []
    prompter.show(step.title or "Run Commands", "\n".join(f"  $ {command}" for command in commands))

    if not dev_mode:
        ready = prompter.confirm("Ready to proceed?", default=True)
        if is_cancelled(ready) or not ready:
            return StepResult.cancel()

    variables = {}
    if step.save_to:
        variables[step.save_to] = list(commands)
    return StepResult.ok(variables)


SHOW_COMMANDS = StepType(
    type="show_commands",
    execute=execute_show_commands,
    required_fields=("commands",),
    optional_fields=("title", "save_to", "when"),
)
