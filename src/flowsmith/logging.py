"""Structured logging with correlation IDs for blueprint runs.

Every run of a blueprint is scoped by a correlation context so that the
log lines of one run can be told apart:
- Blueprint runs (identity of the blueprint being executed)
- Flow transitions
- Individual step execution, skips and failures
- Persistence (variable records, sessions, backups)
"""
import logging
import uuid
import json
from datetime import datetime, timezone
from contextvars import ContextVar
from typing import Optional, Dict, Any
from dataclasses import dataclass, asdict
from enum import Enum


class LogLevel(str, Enum):
    """Log levels for structured logging."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_LEVEL_MAP = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


@dataclass
class LogEntry:
    """A structured log entry."""
    timestamp: str
    level: LogLevel
    message: str
    correlation_id: Optional[str] = None
    blueprint_id: Optional[str] = None
    flow_id: Optional[str] = None
    step_id: Optional[str] = None
    component: Optional[str] = None
    duration_ms: Optional[float] = None
    extra: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        return {k: v for k, v in result.items() if v is not None}

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_blueprint_id: ContextVar[Optional[str]] = ContextVar("blueprint_id", default=None)

# Output settings shared by every StructuredLogger; see configure().
_settings: Dict[str, Any] = {"level": LogLevel.WARNING, "output_format": "text"}


class StructuredLogger:
    """Structured logger with correlation ID support."""

    def __init__(
        self,
        name: str = "flowsmith",
        level: Optional[LogLevel] = None,
        output_format: Optional[str] = None,  # "json" or "text"
    ):
        self.name = name
        self._level = level
        self._output_format = output_format
        self._logger = logging.getLogger(name)

        root = logging.getLogger("flowsmith")
        if not root.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            root.addHandler(handler)
            root.setLevel(logging.DEBUG)
            root.propagate = False

    @property
    def level(self) -> LogLevel:
        return self._level or _settings["level"]

    @property
    def output_format(self) -> str:
        return self._output_format or _settings["output_format"]

    def _log(
        self,
        level: LogLevel,
        message: str,
        flow_id: Optional[str] = None,
        step_id: Optional[str] = None,
        component: Optional[str] = None,
        duration_ms: Optional[float] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        """Internal logging method."""
        if _LEVEL_MAP[level] < _LEVEL_MAP[self.level]:
            return

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            message=message,
            correlation_id=_correlation_id.get(),
            blueprint_id=_blueprint_id.get(),
            flow_id=flow_id,
            step_id=step_id,
            component=component,
            duration_ms=duration_ms,
            extra=extra,
        )

        if self.output_format == "json":
            log_message = entry.to_json()
        else:
            parts = [
                f"[{entry.timestamp}]",
                f"{level.value}",
                f"corr={entry.correlation_id or 'N/A'}",
                f"bp={entry.blueprint_id or 'N/A'}",
            ]
            if flow_id:
                parts.append(f"flow={flow_id}")
            if step_id:
                parts.append(f"step={step_id}")
            if component:
                parts.append(f"comp={component}")
            if duration_ms is not None:
                parts.append(f"dur={duration_ms:.1f}ms")
            parts.append(message)
            log_message = " ".join(parts)

        self._logger.log(_LEVEL_MAP[level], log_message)

    def debug(self, message: str, **kwargs):
        self._log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log(LogLevel.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log(LogLevel.CRITICAL, message, **kwargs)


_logger = StructuredLogger()


def configure(level: Optional[str] = None, output_format: Optional[str] = None) -> None:
    """Set the default level and output format for all structured loggers."""
    if level:
        _settings["level"] = LogLevel(level.upper())
    if output_format:
        if output_format not in ("json", "text"):
            raise ValueError(f"Unknown log format: {output_format}")
        _settings["output_format"] = output_format


def get_logger(name: Optional[str] = None) -> StructuredLogger:
    """Get a structured logger instance."""
    if name:
        return StructuredLogger(name=name)
    return _logger


def set_correlation_id(cid: Optional[str]) -> None:
    """Set the current correlation ID."""
    _correlation_id.set(cid or None)


def set_blueprint_id(bid: Optional[str]) -> None:
    """Set the current blueprint ID."""
    _blueprint_id.set(bid or None)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID."""
    return _correlation_id.get()


def get_blueprint_id() -> Optional[str]:
    """Get the current blueprint ID."""
    return _blueprint_id.get()


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr_{uuid.uuid4().hex[:16]}"


class CorrelationContext:
    """Context manager for correlation ID scoping."""

    def __init__(
        self,
        correlation_id: Optional[str] = None,
        blueprint_id: Optional[str] = None,
    ):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.blueprint_id = blueprint_id
        self._prev_correlation_id: Optional[str] = None
        self._prev_blueprint_id: Optional[str] = None

    def __enter__(self):
        self._prev_correlation_id = get_correlation_id()
        self._prev_blueprint_id = get_blueprint_id()

        set_correlation_id(self.correlation_id)
        if self.blueprint_id:
            set_blueprint_id(self.blueprint_id)

        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_correlation_id(self._prev_correlation_id)
        set_blueprint_id(self._prev_blueprint_id)
