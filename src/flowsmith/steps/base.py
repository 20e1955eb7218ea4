"""Step type definitions and the registry that dispatches on them.

A step type is a plain record: its tag, the fields it requires, an
optional extra check, and an execute function. The registry maps tags to
these records; adding a step type means registering one, nothing else.

Execute functions receive the step with templates already resolved, a
read-only view of the context, the prompter and the dev-mode flag. They
never touch the context; they return the variables they produced.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from flowsmith.models import Step
from flowsmith.ui import Prompter


@dataclass
class StepResult:
    """Outcome of executing one step.

    ``cancelled`` means the user chose to stop; it is not a failure and
    stops the whole run, not only this step.
    """
    success: bool
    variables: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, variables: Optional[dict[str, Any]] = None) -> "StepResult":
        return cls(success=True, variables=variables or {})

    @classmethod
    def cancel(cls) -> "StepResult":
        return cls(success=False, cancelled=True)

    @classmethod
    def fail(cls, error: str) -> "StepResult":
        return cls(success=False, error=error)


@dataclass
class FieldError:
    """A problem with one field of a step."""
    field: str
    message: str
    code: str = "INVALID_STEP"

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass
class StepValidationResult:
    valid: bool
    errors: list[FieldError] = field(default_factory=list)


ExecuteFn = Callable[[Step, Mapping[str, Any], Prompter, bool], StepResult]
CheckFn = Callable[[Step], list[FieldError]]


@dataclass(frozen=True)
class StepType:
    """Definition of one step type."""
    type: str
    execute: ExecuteFn
    required_fields: tuple[str, ...] = ()
    optional_fields: tuple[str, ...] = ()
    check: Optional[CheckFn] = None

    def validate(self, step: Step) -> StepValidationResult:
        errors = [
            FieldError(name, f"{self.type} steps require a '{name}' field", code="MISSING_FIELD")
            for name in self.required_fields
            if not step.has(name)
        ]
        if self.check is not None:
            errors.extend(self.check(step))
        return StepValidationResult(valid=not errors, errors=errors)


class StepTypeRegistry:
    """Maps step type tags to their definitions."""

    def __init__(self, definitions: Optional[list[StepType]] = None):
        self._types: dict[str, StepType] = {}
        if definitions:
            self.register_all(definitions)

    def register(self, definition: StepType) -> None:
        self._types[definition.type] = definition

    def register_all(self, definitions: list[StepType]) -> None:
        for definition in definitions:
            self.register(definition)

    def get(self, step_type: str) -> Optional[StepType]:
        return self._types.get(step_type)

    def has(self, step_type: str) -> bool:
        return step_type in self._types

    def types(self) -> list[str]:
        return list(self._types)

    def validate(self, step: Step) -> StepValidationResult:
        definition = self._types.get(step.type)
        if definition is None:
            return StepValidationResult(
                valid=False,
                errors=[FieldError("type", f"Unknown step type: {step.type}", code="UNKNOWN_STEP_TYPE")],
            )
        return definition.validate(step)

    def execute(
        self,
        step: Step,
        context: Mapping[str, Any],
        prompter: Prompter,
        dev_mode: bool = False,
    ) -> StepResult:
        definition = self._types.get(step.type)
        if definition is None:
            return StepResult.fail(f"Unknown step type: {step.type}")
        view = context if isinstance(context, MappingProxyType) else MappingProxyType(dict(context))
        return definition.execute(step, view, prompter, dev_mode)
