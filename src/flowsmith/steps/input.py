"""Input step: capture one value (``save_to``) or several (``inputs``).

Values are checked against the optional ``validate.pattern``; the
prompter keeps asking until the value matches. Dev mode fills in the
default or placeholder text instead of asking.
"""
from flowsmith.steps.base import FieldError, StepResult, StepType
from flowsmith.ui import is_cancelled, validate_pattern


def _dev_value(default, placeholder) -> str:
    return default or placeholder or ""


def _check_input(step) -> list[FieldError]:
    errors = []
    if not step.save_to and not step.inputs:
        errors.append(FieldError(
            "save_to", "Input steps require either 'save_to' or 'inputs' field", code="MISSING_FIELD"
        ))
    names = [item.name for item in step.inputs or []]
    for name in sorted({n for n in names if names.count(n) > 1}):
        errors.append(FieldError("inputs", f"Duplicate input name: {name}"))
    return errors


def execute_input(step, context, prompter, dev_mode=False) -> StepResult:
    variables = {}

    if step.inputs:
        for item in step.inputs:
            if dev_mode:
                variables[item.name] = _dev_value(item.default, item.placeholder)
                continue
            rule = item.validation
            value = prompter.text(
                item.label or item.name,
                placeholder=item.placeholder,
                default=item.default,
                validate=validate_pattern(rule.pattern, rule.message) if rule else None,
                sensitive=item.sensitive,
            )
            if is_cancelled(value):
                return StepResult.cancel()
            variables[item.name] = value
        return StepResult.ok(variables)

    if step.save_to:
        if dev_mode:
            return StepResult.ok({step.save_to: _dev_value(step.default, step.placeholder)})
        rule = step.validation
        value = prompter.text(
            step.title or "Enter value",
            placeholder=step.placeholder,
            default=step.default,
            validate=validate_pattern(rule.pattern, rule.message) if rule else None,
            sensitive=bool(step.get("sensitive", False)),
        )
        if is_cancelled(value):
            return StepResult.cancel()
        return StepResult.ok({step.save_to: value})

    return StepResult.fail("Input step has neither 'save_to' nor 'inputs'")


INPUT = StepType(
    type="input",
    execute=execute_input,
    optional_fields=("title", "save_to", "placeholder", "default", "validate", "inputs", "when"),
    check=_check_input,
)
