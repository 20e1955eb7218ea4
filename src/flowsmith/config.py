"""Runtime configuration.

Defaults live in module constants and can be overridden through
environment variables:

    FLOWSMITH_HOME                    Backups and project registry (~/.flowsmith)
    FLOWSMITH_STATE_DIR               Project-local records (<project>/.flowsmith)
    FLOWSMITH_SESSION_MAX_AGE_HOURS   Sessions older than this are discarded (24)
    FLOWSMITH_MAX_BACKUPS             Projects kept in the backup registry (10)
    FLOWSMITH_LOG_LEVEL               DEBUG, INFO, WARNING, ERROR (WARNING)
    FLOWSMITH_LOG_FORMAT              json or text (text)
"""
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional, Union

DEFAULT_HOME = Path.home() / ".flowsmith"
STATE_DIR_NAME = ".flowsmith"
DEFAULT_SESSION_MAX_AGE_HOURS = 24
DEFAULT_MAX_BACKUPS = 10
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_LOG_FORMAT = "text"
DEFAULT_SCHEMA_VERSION = "0.1.0"


class ConfigError(ValueError):
    """Raised when an environment override cannot be interpreted."""
    pass


@dataclass(frozen=True)
class Settings:
    """Resolved settings for one process."""
    home: Path
    state_dir: Path
    project_root: Path
    session_max_age: timedelta
    max_backups: int
    log_level: str
    log_format: str

    @classmethod
    def from_env(
        cls,
        project_root: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        env = os.environ if environ is None else environ
        root = Path(project_root or Path.cwd()).resolve()

        home = Path(env.get("FLOWSMITH_HOME") or DEFAULT_HOME).expanduser()
        state_dir = Path(env.get("FLOWSMITH_STATE_DIR") or root / STATE_DIR_NAME).expanduser()

        return cls(
            home=home,
            state_dir=state_dir,
            project_root=root,
            session_max_age=timedelta(
                hours=_positive_number(env, "FLOWSMITH_SESSION_MAX_AGE_HOURS", DEFAULT_SESSION_MAX_AGE_HOURS)
            ),
            max_backups=int(_positive_number(env, "FLOWSMITH_MAX_BACKUPS", DEFAULT_MAX_BACKUPS)),
            log_level=env.get("FLOWSMITH_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
            log_format=env.get("FLOWSMITH_LOG_FORMAT", DEFAULT_LOG_FORMAT).lower(),
        )

    @property
    def variables_dir(self) -> Path:
        return self.state_dir / "variables"

    @property
    def metadata_dir(self) -> Path:
        return self.state_dir / "metadata"

    @property
    def backup_dir(self) -> Path:
        return self.home / "backups"


def _positive_number(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive, got {raw!r}")
    return value
