"""Template interpolation and step guard evaluation.

Templates reference context values with ``{{ path.to.value }}``. Unresolved
references are left in place so that missing data stays visible.

Guards (the ``when`` field of a step) support exactly three forms, tried
in order:

    path == "literal"
    path != "literal"
    path                  (truthiness)

There are no boolean combinators. Anything that does not resolve evaluates
to False, so a malformed guard skips its step instead of running it.
"""
import json
import re
from typing import Any, Mapping, Optional

MAX_INTERPOLATION_PASSES = 10

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")
_EQUALS_PATTERN = re.compile(r"""^(.+?)\s*==\s*(["'])(.+?)\2$""")
_NOT_EQUALS_PATTERN = re.compile(r"""^(.+?)\s*!=\s*(["'])(.+?)\2$""")
_PATH_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+(\.[A-Za-z0-9_\-]+)*$")

_MISSING = object()


def render_value(value: Any) -> str:
    """Render a context value the way it appears inside a string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def get_nested_value(context: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Look up a dotted path, e.g. ``user.name`` in ``{"user": {"name": "Ada"}}``."""
    current: Any = context
    for key in path.split("."):
        if isinstance(current, Mapping) and key in current:
            current = current[key]
        elif isinstance(current, (list, tuple)) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return default
    return current


def has_path(context: Mapping[str, Any], path: str) -> bool:
    return get_nested_value(context, path, _MISSING) is not _MISSING


def set_nested_value(context: dict, path: str, value: Any) -> None:
    """Set a dotted path, creating intermediate mappings as needed."""
    keys = path.split(".")
    target = context
    for key in keys[:-1]:
        if not isinstance(target.get(key), dict):
            target[key] = {}
        target = target[key]
    target[keys[-1]] = value


def interpolate(template: str, context: Mapping[str, Any]) -> str:
    """Replace every ``{{ path }}`` in ``template`` with its context value.

    Substitution is repeated so that values which themselves contain
    templates get resolved, up to MAX_INTERPOLATION_PASSES passes. A
    template that never stabilizes (``a`` resolving to ``"{{ a }}"``)
    simply stops after the last pass.
    """
    def substitute(match: re.Match) -> str:
        value = get_nested_value(context, match.group(1).strip(), _MISSING)
        if value is _MISSING:
            return match.group(0)
        return render_value(value)

    result = template
    for _ in range(MAX_INTERPOLATION_PASSES):
        updated = TEMPLATE_PATTERN.sub(substitute, result)
        if updated == result:
            break
        result = updated
    return result


def interpolate_object(obj: Any, context: Mapping[str, Any]) -> Any:
    """Return a deep copy of ``obj`` with every string interpolated."""
    if isinstance(obj, str):
        return interpolate(obj, context)
    if isinstance(obj, list):
        return [interpolate_object(item, context) for item in obj]
    if isinstance(obj, tuple):
        return tuple(interpolate_object(item, context) for item in obj)
    if isinstance(obj, Mapping):
        return {key: interpolate_object(value, context) for key, value in obj.items()}
    return obj


def evaluate_condition(condition: Optional[str], context: Mapping[str, Any]) -> bool:
    """Evaluate a step guard. Never raises; anything unresolvable is False."""
    if not condition or not isinstance(condition, str):
        return False
    try:
        expression = interpolate(condition, context).strip()

        match = _EQUALS_PATTERN.match(expression)
        if match:
            value = _lookup(context, match.group(1))
            return value is not _MISSING and render_value(value) == match.group(3)

        match = _NOT_EQUALS_PATTERN.match(expression)
        if match:
            value = _lookup(context, match.group(1))
            return value is not _MISSING and render_value(value) != match.group(3)

        value = _lookup(context, expression)
        return value is not _MISSING and bool(value)
    except Exception:
        return False


def _lookup(context: Mapping[str, Any], path: str) -> Any:
    path = path.strip()
    if not _PATH_PATTERN.match(path):
        return _MISSING
    return get_nested_value(context, path, _MISSING)


def extract_variables(template: str) -> list[str]:
    """List the paths referenced by a template, in order of appearance."""
    return [match.group(1).strip() for match in TEMPLATE_PATTERN.finditer(template)]


def merge_contexts(*contexts: Mapping[str, Any]) -> dict:
    """Merge contexts left to right; later keys replace earlier ones whole."""
    merged: dict = {}
    for context in contexts:
        merged.update(context)
    return merged
