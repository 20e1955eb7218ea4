"""Shared fixtures: a scripted prompter, a fake clock and in-memory stores."""
from datetime import datetime, timedelta, timezone

import pytest

from flowsmith.models import Blueprint
from flowsmith.session import SessionTracker
from flowsmith.storage import MemoryStore, VariableStore
from flowsmith.ui import is_cancelled


class ScriptedPrompter:
    """Prompter that answers from prepared lists and records every call.

    ``answers`` feed ``text`` and ``select`` in order. ``confirms`` feed
    ``confirm``; once exhausted, ``confirm`` returns its default.
    """

    def __init__(self, answers=None, confirms=None):
        self.answers = list(answers or [])
        self.confirms = list(confirms or [])
        self.calls = []
        self.shown = []
        self.rejected = []

    def show(self, title, body):
        self.shown.append((title, body))

    def text(self, message, placeholder=None, default=None, validate=None, sensitive=False):
        self.calls.append(("text", message))
        if not self.answers:
            raise AssertionError(f"Unexpected text prompt: {message}")
        value = self.answers.pop(0)
        while validate is not None and not is_cancelled(value) and validate(value) is not None:
            self.rejected.append(value)
            if not self.answers:
                raise AssertionError(f"No valid answer left for: {message}")
            value = self.answers.pop(0)
        return value

    def select(self, message, options):
        self.calls.append(("select", message))
        if not self.answers:
            raise AssertionError(f"Unexpected select prompt: {message}")
        return self.answers.pop(0)

    def confirm(self, message, default=True):
        self.calls.append(("confirm", message))
        if self.confirms:
            return self.confirms.pop(0)
        return default

    def asked(self, kind):
        return [message for k, message in self.calls if k == kind]


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def scripted():
    return ScriptedPrompter


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def variable_store(clock):
    return VariableStore(MemoryStore(), clock=clock)


@pytest.fixture
def tracker(variable_store, clock):
    return SessionTracker(MemoryStore(), variable_store=variable_store, clock=clock)


@pytest.fixture
def ada_blueprint():
    """One flow: ask a name, confirm once it is set, then show info."""
    return Blueprint.model_validate({
        "smith": "ada-demo",
        "schema_version": "1.0.0",
        "flows": [{
            "id": "setup",
            "title": "Setup",
            "steps": [
                {"id": "ask-name", "type": "input", "title": "Your name", "save_to": "name"},
                {"id": "check", "type": "confirm", "when": "name", "message": "Hello {{ name }}?"},
                {"id": "done", "type": "info", "markdown": "All set, {{ name }}."},
            ],
        }],
    })


@pytest.fixture
def three_flow_blueprint():
    """Three flows; each captures one value."""
    return Blueprint.model_validate({
        "smith": "three-flows",
        "flows": [
            {"id": "f1", "steps": [{"id": "a", "type": "input", "save_to": "a"}]},
            {"id": "f2", "steps": [
                {"id": "b", "type": "input", "save_to": "b"},
                {"id": "gate", "type": "confirm", "message": "Go on?"},
            ]},
            {"id": "f3", "steps": [{"id": "c", "type": "input", "save_to": "c"}]},
        ],
    })
