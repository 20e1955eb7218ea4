"""Blueprint parser - reads blueprint documents into structured objects.

Blueprints are usually TOML, but YAML and JSON documents with the same
structure are accepted too. Fetching documents over HTTP or from a
repository is left to the caller; this module starts at text or a dict.
"""
import json
import tomllib
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from flowsmith.models import Blueprint


class ParseError(Exception):
    """Raised when a blueprint document cannot be parsed."""
    def __init__(self, message: str, line: Optional[int] = None, context: Optional[str] = None):
        self.message = message
        self.line = line
        self.context = context
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.line:
            msg = f"Line {self.line}: {msg}"
        if self.context:
            msg = msg + "\n  Context: " + self.context
        return msg


def parse_file(filepath: Union[str, Path]) -> Blueprint:
    """Parse a blueprint from a file, choosing the format by suffix."""
    path = Path(filepath)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ParseError(f"File not found: {filepath}")
    except OSError as e:
        raise ParseError(f"Cannot read {filepath}: {e}")

    suffix = path.suffix.lower()
    if suffix == ".json":
        return parse_json(content)
    if suffix in (".yaml", ".yml"):
        return parse_yaml(content)
    return parse_toml(content)


def parse_toml(content: str) -> Blueprint:
    """Parse a blueprint from a TOML string."""
    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise ParseError(f"Invalid TOML: {e}")
    return parse_dict(data)


def parse_yaml(content: str) -> Blueprint:
    """Parse a blueprint from a YAML string."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        line = None
        mark = getattr(e, "problem_mark", None)
        if mark is not None:
            line = mark.line + 1
        raise ParseError(f"Invalid YAML: {getattr(e, 'problem', None) or e}", line=line)
    return parse_dict(data)


def parse_json(content: str) -> Blueprint:
    """Parse a blueprint from a JSON string."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e.msg}", line=e.lineno)
    return parse_dict(data)


def parse_dict(data: Any) -> Blueprint:
    """Build a Blueprint from an already-decoded document."""
    if not isinstance(data, dict):
        raise ParseError(f"Blueprint document must be a mapping, got {type(data).__name__}")

    try:
        return Blueprint.model_validate(data)
    except PydanticValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ParseError(
            f"Blueprint structure is invalid ({len(problems)} problem(s))",
            context="; ".join(problems),
        )
