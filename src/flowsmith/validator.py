"""Blueprint validator - pre-flight checks before execution.

Collects every structural problem in one pass so the author can fix them
all at once. Per-step field requirements come from the step type
registry, so each step type owns its own contract.
"""
import re
from dataclasses import dataclass, field
from typing import Optional

from flowsmith.models import Blueprint, Flow
from flowsmith.steps import DEFAULT_REGISTRY, StepTypeRegistry


@dataclass
class ValidationError:
    """A single validation error."""
    code: str
    message: str
    field: str = ""
    flow_id: Optional[str] = None
    step_id: Optional[str] = None
    severity: str = "error"  # error, warning

    def __str__(self) -> str:
        location = self.field or ".".join(p for p in (self.flow_id, self.step_id) if p)
        if location:
            return f"[{self.code}] {location}: {self.message}"
        return f"[{self.code}] {self.message}"


@dataclass
class ValidationResult:
    """Result of blueprint validation."""
    passed: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def summary(self) -> str:
        if self.passed:
            if self.warnings:
                return f"Valid with {self.warning_count} warning(s)"
            return "Valid"
        return f"Invalid: {self.error_count} error(s), {self.warning_count} warning(s)"


def validate(blueprint: Blueprint, registry: Optional[StepTypeRegistry] = None) -> ValidationResult:
    """Validate a blueprint for correctness.

    Checks:
    - At least one flow (warning)
    - Unique flow IDs, unique step IDs within a flow
    - Non-empty flows (warning)
    - Compilable validation patterns on variables and steps
    - Per-step-type required fields and custom rules

    Args:
        blueprint: Blueprint to validate
        registry: Step type registry; defaults to the built-in types

    Returns:
        ValidationResult with pass/fail and error details
    """
    registry = registry or DEFAULT_REGISTRY
    errors: list[ValidationError] = []
    warnings: list[ValidationError] = []

    # Check 1: Flows present
    if not blueprint.flows:
        warnings.append(ValidationError(
            code="NO_FLOWS",
            message="Blueprint has no executable flows",
            field="flows",
            severity="warning",
        ))

    # Check 2: Unique flow IDs
    seen_flows: set[str] = set()
    for flow in blueprint.flows:
        if flow.id in seen_flows:
            errors.append(ValidationError(
                code="DUPLICATE_FLOW",
                message=f"Duplicate flow ID: {flow.id}",
                field=f"flows.{flow.id}",
                flow_id=flow.id,
            ))
        seen_flows.add(flow.id)

    # Check 3: Variable declaration patterns
    for name, declaration in blueprint.variables.items():
        if declaration.validation and not _compiles(declaration.validation):
            errors.append(ValidationError(
                code="INVALID_PATTERN",
                message=f"Validation pattern does not compile: {declaration.validation}",
                field=f"variables.{name}.validation",
            ))

    # Check 4: Steps
    for flow in blueprint.flows:
        errors.extend(_validate_flow(flow, registry, warnings))

    return ValidationResult(passed=not errors, errors=errors, warnings=warnings)


def _validate_flow(
    flow: Flow,
    registry: StepTypeRegistry,
    warnings: list[ValidationError],
) -> list[ValidationError]:
    errors: list[ValidationError] = []

    if not flow.steps:
        warnings.append(ValidationError(
            code="EMPTY_FLOW",
            message="Flow has no steps",
            field=f"flows.{flow.id}",
            flow_id=flow.id,
            severity="warning",
        ))

    seen_steps: set[str] = set()
    for step in flow.steps:
        location = f"flows.{flow.id}.steps.{step.id}"

        if step.id in seen_steps:
            errors.append(ValidationError(
                code="DUPLICATE_STEP",
                message=f"Duplicate step ID: {step.id}",
                field=location,
                flow_id=flow.id,
                step_id=step.id,
            ))
        seen_steps.add(step.id)

        result = registry.validate(step)
        for problem in result.errors:
            errors.append(ValidationError(
                code=problem.code,
                message=problem.message,
                field=f"{location}.{problem.field}",
                flow_id=flow.id,
                step_id=step.id,
            ))

        patterns = []
        if step.validation and step.validation.pattern:
            patterns.append(("validate.pattern", step.validation.pattern))
        for item in step.inputs or []:
            if item.validation and item.validation.pattern:
                patterns.append((f"inputs.{item.name}.validate.pattern", item.validation.pattern))
        for path, pattern in patterns:
            if not _compiles(pattern):
                errors.append(ValidationError(
                    code="INVALID_PATTERN",
                    message=f"Validation pattern does not compile: {pattern}",
                    field=f"{location}.{path}",
                    flow_id=flow.id,
                    step_id=step.id,
                ))

    return errors


def _compiles(pattern: str) -> bool:
    try:
        re.compile(pattern)
    except re.error:
        return False
    return True


def validate_file(filepath: str) -> ValidationResult:
    """Convenience function to validate a blueprint file.

    Args:
        filepath: Path to a blueprint file (.toml, .yaml, .json)

    Returns:
        ValidationResult
    """
    from flowsmith.parser import parse_file
    blueprint = parse_file(filepath)
    return validate(blueprint)
