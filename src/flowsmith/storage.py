"""Record stores and the versioned variable store.

A record store is a small key/value surface (save, load, delete, keys)
holding JSON-compatible dicts. ``JsonDirectoryStore`` keeps one file per
key and replaces files atomically, so an interrupted write leaves the
previous record intact. ``MemoryStore`` is the same contract in memory.

``VariableStore`` sits on top and owns the captured-variable records:
one per blueprint identity, stamped with the normalized schema version.
"""
import hashlib
import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from flowsmith.logging import get_logger
from flowsmith.models import VariableDeclaration

logger = get_logger("flowsmith.storage")

_VERSION_PATTERN = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

# Blueprint ids removed on purpose; never recovered from a fallback
DELETED_KEY = "_deleted"


class PersistenceError(Exception):
    """Raised when a record cannot be written or removed."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_version(text: Any) -> str:
    """Coerce a version string to ``major.minor.patch``.

    The first ``N[.N[.N]]`` found is used, missing parts become 0:
    ``"v2"`` -> ``"2.0.0"``, ``"1.4"`` -> ``"1.4.0"``. No digits -> ``"0.0.0"``.
    """
    match = _VERSION_PATTERN.search(str(text or ""))
    if not match:
        return "0.0.0"
    major, minor, patch = (int(part or 0) for part in match.groups())
    return f"{major}.{minor}.{patch}"


def major_version(text: Any) -> int:
    return int(normalize_version(text).split(".")[0])


class RecordStore(ABC):
    """Key/value persistence for JSON-compatible records."""

    @abstractmethod
    def save(self, key: str, record: Mapping[str, Any]) -> None:
        ...

    @abstractmethod
    def load(self, key: str) -> Optional[dict]:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...


class MemoryStore(RecordStore):
    """In-memory record store (tests, dry runs)."""

    def __init__(self):
        self._records: dict[str, str] = {}

    def save(self, key, record):
        # Round-trip through JSON so callers get the same guarantees as on disk.
        self._records[key] = json.dumps(record, default=str)

    def load(self, key):
        raw = self._records.get(key)
        return None if raw is None else json.loads(raw)

    def delete(self, key):
        self._records.pop(key, None)

    def keys(self):
        return sorted(self._records)


class JsonDirectoryStore(RecordStore):
    """One pretty-printed JSON file per key inside ``root``."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        name = _UNSAFE_CHARS.sub("_", key)
        if name != key:
            name = f"{name}-{hashlib.sha256(key.encode('utf-8')).hexdigest()[:8]}"
        return self.root / f"{name}.json"

    def save(self, key, record):
        path = self.path_for(key)
        payload = json.dumps({"key": key, "record": record}, indent=2, ensure_ascii=False, default=str)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistenceError(f"Cannot write {path}: {e}") from e

    def load(self, key):
        path = self.path_for(key)
        data = self._read(path)
        if data is None:
            return None
        return data.get("record")

    def delete(self, key):
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot delete {path}: {e}") from e

    def keys(self):
        if not self.root.is_dir():
            return []
        found = []
        for path in sorted(self.root.glob("*.json")):
            if path.name.startswith(".tmp-"):
                continue
            data = self._read(path)
            if data is not None and "key" in data:
                found.append(data["key"])
        return found

    def _read(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable record {path}: {e}", component="storage")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed record {path}", component="storage")
            return None
        return data


class StoredVariableRecord(BaseModel):
    """Captured variables of one blueprint, stamped with its schema version."""
    schema_version: str
    saved_at: datetime
    variables: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}


class VariableStore:
    """Versioned persistence for captured variables, keyed by blueprint identity.

    ``fallback`` is consulted when no usable local record exists; it
    returns a raw record (typically the project's backup) or None. A
    recovered record is written back locally. Records removed through
    ``delete()`` are never recovered this way, until saved again.
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Optional[Callable[[], datetime]] = None,
        fallback: Optional[Callable[[str], Optional[dict]]] = None,
    ):
        self.store = store
        self.fallback = fallback
        self._clock = clock or utcnow

    def save(self, blueprint_id: str, schema_version: str, variables: Mapping[str, Any]) -> StoredVariableRecord:
        record = StoredVariableRecord(
            schema_version=normalize_version(schema_version),
            saved_at=self._clock(),
            variables=dict(variables),
        )
        self.write_record(blueprint_id, record.model_dump(mode="json"))
        logger.debug(
            f"Saved {len(record.variables)} variable(s)",
            component="storage",
            extra={"blueprint_id": blueprint_id, "schema_version": record.schema_version},
        )
        return record

    def write_record(self, blueprint_id: str, data: Mapping[str, Any]) -> None:
        """Store a raw record as is, undoing an earlier ``delete()``."""
        self.store.save(blueprint_id, data)
        deleted = self._deleted()
        if blueprint_id in deleted:
            deleted.discard(blueprint_id)
            self.store.save(DELETED_KEY, {"ids": sorted(deleted)})

    def load_record(self, blueprint_id: str) -> Optional[StoredVariableRecord]:
        data = self.store.load(blueprint_id)
        record = self._parse(blueprint_id, data) if data is not None else None
        if record is None:
            record = self._recover(blueprint_id)
        return record

    def _parse(self, blueprint_id: str, data: Any) -> Optional[StoredVariableRecord]:
        try:
            return StoredVariableRecord.model_validate(data)
        except PydanticValidationError as e:
            logger.warning(
                f"Discarding malformed variable record: {e.error_count()} problem(s)",
                component="storage",
                extra={"blueprint_id": blueprint_id},
            )
            return None

    def _recover(self, blueprint_id: str) -> Optional[StoredVariableRecord]:
        if self.fallback is None or blueprint_id in self._deleted():
            return None
        data = self.fallback(blueprint_id)
        if data is None:
            return None
        record = self._parse(blueprint_id, data)
        if record is None:
            return None

        try:
            self.store.save(blueprint_id, record.model_dump(mode="json"))
        except PersistenceError as e:
            logger.warning(
                f"Could not write recovered variables back: {e}",
                component="storage",
                extra={"blueprint_id": blueprint_id},
            )
        logger.info(
            f"Recovered {len(record.variables)} variable(s) from backup",
            component="storage",
            extra={"blueprint_id": blueprint_id},
        )
        return record

    def _deleted(self) -> set[str]:
        data = self.store.load(DELETED_KEY) or {}
        return set(data.get("ids") or [])

    def load_validated(
        self,
        blueprint_id: str,
        schema_version: str,
        declarations: Optional[Mapping[str, VariableDeclaration]] = None,
    ) -> Optional[dict[str, Any]]:
        """Stored variables that are still valid for the current blueprint.

        Returns None when nothing is stored or the major schema version
        changed. Otherwise drops variables that are no longer declared
        and string values that fail their declared pattern. Without any
        declarations the stored variables are returned as they are.
        """
        record = self.load_record(blueprint_id)
        if record is None:
            return None

        current = normalize_version(schema_version)
        if major_version(record.schema_version) != major_version(current):
            logger.info(
                f"Discarding variables saved under schema {record.schema_version} (now {current})",
                component="storage",
                extra={"blueprint_id": blueprint_id},
            )
            return None

        if not declarations:
            return dict(record.variables)

        validated = {}
        for name, value in record.variables.items():
            declaration = declarations.get(name)
            if declaration is None:
                continue
            if not declaration.accepts(value):
                logger.info(f"Dropping stored value for {name}: fails its pattern", component="storage")
                continue
            validated[name] = value
        return validated

    def delete(self, blueprint_id: str) -> None:
        self.store.delete(blueprint_id)
        if self.fallback is not None:
            self.store.save(DELETED_KEY, {"ids": sorted(self._deleted() | {blueprint_id})})

    def list_ids(self) -> list[str]:
        return [key for key in self.store.keys() if key != DELETED_KEY]
