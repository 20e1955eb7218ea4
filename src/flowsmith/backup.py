"""Durable backups of completed runs.

When a run completes, its variable record (plus any metadata records the
caller collected) is copied out of the project into a per-user store:

    <root>/project-registry.json
    <root>/projects/<project-hash>/<record>.json

The registry keeps the most recently used projects first. Only the newest
``max_projects`` are kept; older project directories are removed.

Writes are retried with exponential backoff, and the session tracker only
clears the session once ``backup()`` has returned.
"""
import hashlib
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from flowsmith.config import DEFAULT_MAX_BACKUPS
from flowsmith.logging import get_logger
from flowsmith.storage import JsonDirectoryStore, PersistenceError, RecordStore, VariableStore, utcnow

logger = get_logger("flowsmith.backup")

# Retry configuration
MAX_RETRIES = 3
RETRY_MIN_WAIT = 0.1  # seconds
RETRY_MAX_WAIT = 2  # seconds

REGISTRY_KEY = "project-registry"
VARIABLES_RECORD = "variables"


class BackupError(Exception):
    """Raised when a backup cannot be written after retries."""
    pass


def project_hash(path: Union[str, Path]) -> str:
    """Stable short hash of a project directory."""
    resolved = str(Path(path).expanduser().resolve())
    return hashlib.sha256(resolved.encode("utf-8")).hexdigest()[:16]


class BackupEntry(BaseModel):
    """One project in the backup registry."""
    project_hash: str
    original_path: str
    display_name: Optional[str] = None
    last_accessed: datetime
    backup_count: int = 0
    records: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class BackupStore:
    """Per-user store of completed-run backups, one directory per project."""

    def __init__(
        self,
        root: Union[str, Path],
        max_projects: int = DEFAULT_MAX_BACKUPS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.root = Path(root)
        self.max_projects = max_projects
        self._clock = clock or utcnow
        self._registry_store = JsonDirectoryStore(self.root)

    def project_dir(self, hash_: str) -> Path:
        return self.root / "projects" / hash_

    def backup(
        self,
        project_root: Union[str, Path],
        records: Mapping[str, Mapping[str, Any]],
        display_name: Optional[str] = None,
    ) -> BackupEntry:
        """Copy ``records`` into the project's backup directory.

        Raises:
            BackupError: If any write still fails after retries
        """
        hash_ = project_hash(project_root)
        store = JsonDirectoryStore(self.project_dir(hash_))
        try:
            for name, record in records.items():
                self._write(store, name, record)
            entry = self._touch(hash_, project_root, display_name, list(records))
        except PersistenceError as e:
            logger.error(f"Backup failed: {e}", component="backup", extra={"project": hash_})
            raise BackupError(f"Backup of {project_root} failed: {e}") from e

        logger.info(
            f"Backed up {len(records)} record(s)",
            component="backup",
            extra={"project": hash_, "records": sorted(records)},
        )
        return entry

    def list_backups(self) -> list[BackupEntry]:
        """Registry entries, most recently used first."""
        entries = self._load_registry()
        return sorted(entries.values(), key=lambda e: e.last_accessed, reverse=True)

    def get(self, hash_: str) -> Optional[BackupEntry]:
        return self._load_registry().get(hash_)

    def load_records(self, hash_: str) -> dict[str, dict]:
        store = JsonDirectoryStore(self.project_dir(hash_))
        records = {}
        for key in store.keys():
            record = store.load(key)
            if record is not None:
                records[key] = record
        return records

    def variables_fallback(self, project_root: Union[str, Path]) -> Callable[[str], Optional[dict]]:
        """Reader for ``VariableStore(fallback=...)`` backed by this project's backup."""
        hash_ = project_hash(project_root)
        store = JsonDirectoryStore(self.project_dir(hash_))

        def load(blueprint_id: str) -> Optional[dict]:
            backup = store.load(VARIABLES_RECORD)
            if not backup or backup.get("blueprint_id") != blueprint_id:
                return None
            logger.info("Falling back to backed-up variables", component="backup", extra={"project": hash_})
            return backup.get("record")

        return load

    def restore(
        self,
        hash_: str,
        variable_store: VariableStore,
        metadata_store: Optional[RecordStore] = None,
    ) -> list[str]:
        """Write a project's backed-up records back into live stores.

        Returns:
            Names of the records restored

        Raises:
            BackupError: If no backup exists for ``hash_``
        """
        records = self.load_records(hash_)
        if not records:
            raise BackupError(f"No backup found for project {hash_}")

        restored = []
        for name, record in records.items():
            if name == VARIABLES_RECORD:
                blueprint_id = record.get("blueprint_id")
                if not blueprint_id:
                    logger.warning("Variable backup has no blueprint id, skipped", component="backup")
                    continue
                variable_store.write_record(blueprint_id, record.get("record") or {})
            elif metadata_store is not None:
                metadata_store.save(name, record)
            else:
                continue
            restored.append(name)

        logger.info(f"Restored {len(restored)} record(s)", component="backup", extra={"project": hash_})
        return restored

    @retry(
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=RETRY_MIN_WAIT, min=RETRY_MIN_WAIT, max=RETRY_MAX_WAIT),
        retry=retry_if_exception_type(PersistenceError),
        reraise=True,
    )
    def _write(self, store: RecordStore, key: str, record: Mapping[str, Any]) -> None:
        store.save(key, record)

    def _touch(
        self,
        hash_: str,
        project_root: Union[str, Path],
        display_name: Optional[str],
        names: list[str],
    ) -> BackupEntry:
        entries = self._load_registry()
        previous = entries.get(hash_)
        entry = BackupEntry(
            project_hash=hash_,
            original_path=str(Path(project_root).expanduser().resolve()),
            display_name=display_name or (previous.display_name if previous else None),
            last_accessed=self._clock(),
            backup_count=(previous.backup_count if previous else 0) + 1,
            records=sorted(set(names) | set(previous.records if previous else [])),
        )
        entries[hash_] = entry

        ordered = sorted(entries.values(), key=lambda e: e.last_accessed, reverse=True)
        for stale in ordered[self.max_projects:]:
            entries.pop(stale.project_hash, None)
            shutil.rmtree(self.project_dir(stale.project_hash), ignore_errors=True)
            logger.info("Evicted old project backup", component="backup", extra={"project": stale.project_hash})

        self._write(
            self._registry_store,
            REGISTRY_KEY,
            {"projects": {key: value.model_dump(mode="json") for key, value in entries.items()}},
        )
        return entry

    def _load_registry(self) -> dict[str, BackupEntry]:
        data = self._registry_store.load(REGISTRY_KEY) or {}
        entries = {}
        for key, raw in (data.get("projects") or {}).items():
            try:
                entries[key] = BackupEntry.model_validate(raw)
            except PydanticValidationError:
                logger.warning("Ignoring malformed registry entry", component="backup", extra={"project": key})
        return entries
