"""Navigate step: point the user at a URL and wait until they are done.

Whether a navigate step runs at all is decided by the executor's skip
rules (``captures``, then the look-ahead fallback), not here.
"""
from flowsmith.steps.base import StepResult, StepType
from flowsmith.ui import is_cancelled


def render_navigation(url: str, instructions: list[str]) -> str:
    lines = [f"Open: {url}"]
    if instructions:
        lines.append("")
        lines.append("Next steps:")
        for index, instruction in enumerate(instructions, start=1):
            lines.append(f"  {index}. {instruction}")
    return "\n".join(lines)


def execute_navigate(step, context, prompter, dev_mode=False) -> StepResult:
    url = step.url or ""
    prompter.show(step.title or "Navigate", render_navigation(url, step.instructions or []))

    if not dev_mode:
        done = prompter.confirm("Have you completed the steps above?", default=True)
        if is_cancelled(done) or not done:
            return StepResult.cancel()

    variables = {}
    if step.save_to:
        variables[step.save_to] = url
    return StepResult.ok(variables)


NAVIGATE = StepType(
    type="navigate",
    execute=execute_navigate,
    required_fields=("url",),
    optional_fields=("title", "instructions", "captures", "save_to", "when"),
)
