"""Session tracking - resume an interrupted run where it stopped.

A session records which flow a run is in and the index of the next step
to execute. There is at most one session per project. On start the
tracker decides whether the stored session can be resumed:

- no session, or a completed one: start fresh
- session of another blueprint: discard, start fresh
- session older than ``max_age``: discard, start fresh
- a different flow was requested: offer to switch (start fresh)
- otherwise ask resume-or-restart; non-interactive runs resume

Restarting is a full reset: the session and the stored variables of the
blueprint are both removed.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from flowsmith.backup import VARIABLES_RECORD, BackupError, BackupStore
from flowsmith.config import DEFAULT_SESSION_MAX_AGE_HOURS
from flowsmith.logging import get_logger
from flowsmith.models import Blueprint
from flowsmith.storage import RecordStore, VariableStore, utcnow
from flowsmith.ui import Prompter, is_cancelled

logger = get_logger("flowsmith.session")

SESSION_KEY = "session"


class SessionState(BaseModel):
    """Persisted progress marker of one run."""
    blueprint_id: str
    blueprint_name: Optional[str] = None
    flow_id: Optional[str] = None
    step_index: int = 0
    started_at: datetime
    last_updated: datetime
    completed: bool = False

    model_config = {"extra": "ignore"}


@dataclass
class ResumeDecision:
    """Outcome of ``SessionTracker.check_for_resume``."""
    resume: bool
    session: Optional[SessionState] = None
    cancelled: bool = False
    reason: str = ""


def time_ago(moment: datetime, now: datetime) -> str:
    seconds = max(0, int((now - moment).total_seconds()))
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


class SessionTracker:
    """Owns the session record of a project."""

    def __init__(
        self,
        store: RecordStore,
        variable_store: Optional[VariableStore] = None,
        backup: Optional[BackupStore] = None,
        max_age: timedelta = timedelta(hours=DEFAULT_SESSION_MAX_AGE_HOURS),
        clock: Optional[Callable[[], datetime]] = None,
        metadata_store: Optional[RecordStore] = None,
    ):
        self.store = store
        self.variable_store = variable_store
        self.backup = backup
        self.max_age = max_age
        self.metadata_store = metadata_store
        self._clock = clock or utcnow

    def current(self) -> Optional[SessionState]:
        data = self.store.load(SESSION_KEY)
        if data is None:
            return None
        try:
            return SessionState.model_validate(data)
        except PydanticValidationError:
            logger.warning("Ignoring malformed session record", component="session")
            return None

    def is_stale(self, session: SessionState) -> bool:
        return self._clock() - session.last_updated > self.max_age

    def check_for_resume(
        self,
        blueprint: Blueprint,
        prompter: Optional[Prompter] = None,
        interactive: bool = True,
        target_flow: Optional[str] = None,
    ) -> ResumeDecision:
        """Decide whether a run of ``blueprint`` continues the stored session."""
        session = self.current()
        if session is None:
            return ResumeDecision(resume=False, reason="no session")
        if session.completed:
            return ResumeDecision(resume=False, reason="session completed")

        if session.blueprint_id != blueprint.identity:
            logger.info(
                f"Discarding session of another blueprint ({session.blueprint_id})",
                component="session",
            )
            self.clear()
            return ResumeDecision(resume=False, reason="different blueprint")

        if self.is_stale(session):
            logger.info(
                f"Discarding stale session (last active {time_ago(session.last_updated, self._clock())})",
                component="session",
            )
            self.clear()
            return ResumeDecision(resume=False, reason="stale")

        ask = interactive and prompter is not None

        if target_flow and session.flow_id and target_flow != session.flow_id:
            if ask:
                answer = prompter.confirm(
                    f"A session is in progress on flow '{session.flow_id}'. Start '{target_flow}' instead?",
                    default=True,
                )
                if is_cancelled(answer) or not answer:
                    return ResumeDecision(resume=False, session=session, cancelled=True, reason="kept session")
            self.clear()
            return ResumeDecision(resume=False, reason="switched flow")

        if not ask:
            return ResumeDecision(resume=True, session=session, reason="resumed")

        answer = prompter.confirm(
            f"Resume {session.blueprint_name or session.blueprint_id} at flow '{session.flow_id}', "
            f"step {session.step_index + 1} (last active {time_ago(session.last_updated, self._clock())})?",
            default=True,
        )
        if is_cancelled(answer):
            return ResumeDecision(resume=False, session=session, cancelled=True, reason="cancelled")
        if answer:
            return ResumeDecision(resume=True, session=session, reason="resumed")

        self.reset(blueprint.identity)
        return ResumeDecision(resume=False, reason="restart")

    def start(self, blueprint: Blueprint, flow_id: str, step_index: int = 0) -> SessionState:
        """Enter ``flow_id``; keeps ``started_at`` of an open session of the same blueprint."""
        now = self._clock()
        session = self.current()
        if session is None or session.completed or session.blueprint_id != blueprint.identity:
            session = SessionState(
                blueprint_id=blueprint.identity,
                blueprint_name=blueprint.display_name,
                started_at=now,
                last_updated=now,
            )
        session.flow_id = flow_id
        session.step_index = step_index
        session.last_updated = now
        self._save(session)
        logger.debug("Session started", flow_id=flow_id, component="session", extra={"step_index": step_index})
        return session

    def update_progress(self, flow_id: str, step_index: int) -> Optional[SessionState]:
        session = self.current()
        if session is None:
            return None
        session.flow_id = flow_id
        session.step_index = step_index
        session.last_updated = self._clock()
        self._save(session)
        return session

    def complete(
        self,
        project_key: Optional[Union[str, Path]] = None,
        metadata: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> bool:
        """Mark the session completed, back it up, then clear it.

        The session is only cleared once the backup has been written.
        Returns False when the backup failed (the completed session is
        left on disk).
        """
        session = self.current()
        if session is None:
            return True
        session.completed = True
        session.last_updated = self._clock()
        self._save(session)

        if self.backup is not None:
            records = self._backup_records(session, metadata)
            try:
                self.backup.backup(
                    project_key or Path.cwd(),
                    records,
                    display_name=session.blueprint_name,
                )
            except BackupError as e:
                logger.error(f"Session kept after failed backup: {e}", component="session")
                return False

        self.clear()
        logger.info("Session completed", component="session", extra={"blueprint_id": session.blueprint_id})
        return True

    def clear(self) -> None:
        self.store.delete(SESSION_KEY)

    def reset(self, blueprint_id: str) -> None:
        """Remove the session and the stored variables of ``blueprint_id``."""
        self.clear()
        if self.variable_store is not None:
            self.variable_store.delete(blueprint_id)
        logger.info("Session and stored variables reset", component="session", extra={"blueprint_id": blueprint_id})

    def status_lines(self) -> list[str]:
        session = self.current()
        if session is None:
            return ["No active session"]
        now = self._clock()
        lines = [
            f"Blueprint: {session.blueprint_name or session.blueprint_id}",
            f"Flow: {session.flow_id or '-'}",
            f"Next step: {session.step_index + 1}",
            f"Started: {time_ago(session.started_at, now)}",
            f"Last active: {time_ago(session.last_updated, now)}",
        ]
        if session.completed:
            lines.append("Status: completed, backup failed")
        elif self.is_stale(session):
            lines.append("Status: stale, will be discarded on next run")
        else:
            lines.append("Status: in progress")
        return lines

    def _save(self, session: SessionState) -> None:
        self.store.save(SESSION_KEY, session.model_dump(mode="json"))

    def _backup_records(
        self,
        session: SessionState,
        metadata: Optional[Mapping[str, Mapping[str, Any]]],
    ) -> dict[str, Mapping[str, Any]]:
        records: dict[str, Mapping[str, Any]] = {}
        if self.metadata_store is not None:
            for key in self.metadata_store.keys():
                record = self.metadata_store.load(key)
                if record is not None:
                    records[key] = record
        records.update(metadata or {})
        if self.variable_store is not None:
            stored = self.variable_store.load_record(session.blueprint_id)
            if stored is not None:
                records[VARIABLES_RECORD] = {
                    "blueprint_id": session.blueprint_id,
                    "record": stored.model_dump(mode="json"),
                }
        return records
