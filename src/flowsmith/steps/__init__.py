"""Built-in step types.

``DEFAULT_REGISTRY`` knows every built-in type. Use ``default_registry()``
for a fresh copy that can be extended without affecting other callers.
"""
from flowsmith.steps.base import (
    FieldError,
    StepResult,
    StepType,
    StepTypeRegistry,
    StepValidationResult,
)
from flowsmith.steps.ai_prompt import AI_PROMPT
from flowsmith.steps.choice import CHOICE
from flowsmith.steps.commands import SHOW_COMMANDS
from flowsmith.steps.confirm import CONFIRM
from flowsmith.steps.info import INFO
from flowsmith.steps.input import INPUT
from flowsmith.steps.navigate import NAVIGATE

BUILTIN_STEP_TYPES = [INFO, NAVIGATE, INPUT, CHOICE, CONFIRM, SHOW_COMMANDS, AI_PROMPT]


def default_registry() -> StepTypeRegistry:
    return StepTypeRegistry(BUILTIN_STEP_TYPES)


DEFAULT_REGISTRY = default_registry()

__all__ = [
    "FieldError",
    "StepResult",
    "StepType",
    "StepTypeRegistry",
    "StepValidationResult",
    "BUILTIN_STEP_TYPES",
    "DEFAULT_REGISTRY",
    "default_registry",
]
