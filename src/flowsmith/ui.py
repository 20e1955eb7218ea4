"""Prompt surface used by step types.

The engine only needs four interactions: show something, ask for text,
ask to pick one option, ask yes/no. Each asking method returns either a
value or ``CANCELLED`` when the user aborts (Ctrl+C, end of input).
Rendering and the re-prompt loop for invalid text belong to the prompter.
"""
import re
from typing import Any, Callable, Optional, Protocol

import click
import typer

Validator = Callable[[str], Optional[str]]


class _Cancelled:
    """Sentinel for a prompt the user aborted."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CANCELLED"

    def __bool__(self) -> bool:
        return False


CANCELLED = _Cancelled()


def is_cancelled(value: Any) -> bool:
    return value is CANCELLED


def validate_pattern(pattern: Optional[str], message: Optional[str] = None) -> Optional[Validator]:
    """Build a predicate returning an error message, or None when valid."""
    if not pattern:
        return None

    def check(value: str) -> Optional[str]:
        try:
            if re.search(pattern, value) is None:
                return message or f"Value does not match pattern: {pattern}"
        except re.error:
            return "Invalid validation pattern"
        return None

    return check


class Prompter(Protocol):
    """What the engine needs from a user interface."""

    def show(self, title: str, body: str) -> None:
        ...

    def text(
        self,
        message: str,
        placeholder: Optional[str] = None,
        default: Optional[str] = None,
        validate: Optional[Validator] = None,
        sensitive: bool = False,
    ) -> Any:
        ...

    def select(self, message: str, options: list[Any]) -> Any:
        ...

    def confirm(self, message: str, default: bool = True) -> Any:
        ...


class ConsolePrompter:
    """Terminal prompter used by the CLI, built on typer prompts.

    With ``err=True`` every prompt and message goes to stderr, leaving
    stdout free for machine-readable output.
    """

    def __init__(self, err: bool = False):
        self.err = err

    def _echo(self, text: str = "") -> None:
        typer.echo(text, err=self.err)

    def show(self, title: str, body: str) -> None:
        self._echo()
        self._echo(f"== {title} ==")
        if body:
            self._echo(body)
        self._echo()

    def text(self, message, placeholder=None, default=None, validate=None, sensitive=False):
        label = f"{message} ({placeholder})" if placeholder and not default else message
        while True:
            try:
                value = typer.prompt(
                    label,
                    default=default or "",
                    show_default=bool(default),
                    hide_input=sensitive,
                    err=self.err,
                )
            except typer.Abort:
                self._echo()
                return CANCELLED
            error = validate(value) if validate else None
            if error is None:
                return value
            self._echo(f"  ! {error}")

    def select(self, message, options):
        self._echo(message)
        for index, option in enumerate(options, start=1):
            self._echo(f"  {index}. {option}")
        try:
            choice = typer.prompt(
                f"Choose 1-{len(options)}",
                type=click.IntRange(1, len(options)),
                err=self.err,
            )
        except typer.Abort:
            self._echo()
            return CANCELLED
        return options[choice - 1]

    def confirm(self, message, default=True):
        try:
            return typer.confirm(message, default=default, err=self.err)
        except typer.Abort:
            self._echo()
            return CANCELLED
