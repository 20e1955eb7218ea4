"""AI prompt step: render a prompt for an external assistant (display only)."""
from flowsmith.steps.base import StepResult, StepType


def execute_ai_prompt(step, context, prompter, dev_mode=False) -> StepResult:
    body = step.prompt_template or ""
    provider = step.provider
    if provider:
        body = f"Provider: {provider}\n\n{body}"
    prompter.show(step.title or "AI Prompt", body)
    return StepResult.ok()


AI_PROMPT = StepType(
    type="ai_prompt",
    execute=execute_ai_prompt,
    optional_fields=("title", "provider", "model", "prompt_template", "when"),
)
