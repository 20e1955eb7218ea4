"""flowsmith - Blueprint-driven integration procedures.

A blueprint describes an integration procedure as ordered flows of typed
steps (show information, ask for input, pick an option, open a URL, show
commands, confirm). flowsmith runs it against a growing variable context,
skips what is already captured, and resumes interrupted runs.

Example:
    >>> from flowsmith import parse_file, validate, FlowExecutor, ConsolePrompter
    >>> bp = parse_file("stripe.toml")
    >>> if validate(bp).passed:
    ...     result = FlowExecutor(bp, ConsolePrompter()).run()
    ...     print(result.status.value, sorted(result.variables))
"""
from flowsmith.models import (
    Blueprint,
    Flow,
    Step,
    StepInput,
    InputValidation,
    VariableDeclaration,
    Overview,
    AgentConfig,
)
from flowsmith.parser import parse_file, parse_toml, parse_yaml, parse_json, parse_dict, ParseError
from flowsmith.validator import validate, validate_file, ValidationResult, ValidationError
from flowsmith.template import interpolate, interpolate_object, evaluate_condition
from flowsmith.steps import StepResult, StepType, StepTypeRegistry, default_registry
from flowsmith.ui import Prompter, ConsolePrompter, CANCELLED, is_cancelled
from flowsmith.storage import (
    RecordStore,
    JsonDirectoryStore,
    MemoryStore,
    VariableStore,
    StoredVariableRecord,
    PersistenceError,
    normalize_version,
)
from flowsmith.session import SessionTracker, SessionState, ResumeDecision
from flowsmith.backup import BackupStore, BackupError, project_hash
from flowsmith.executor import FlowExecutor, RunResult, RunStatus, execute_blueprint

__version__ = "0.1.0"
__all__ = [
    # Models
    "Blueprint",
    "Flow",
    "Step",
    "StepInput",
    "InputValidation",
    "VariableDeclaration",
    "Overview",
    "AgentConfig",
    # Parser
    "parse_file",
    "parse_toml",
    "parse_yaml",
    "parse_json",
    "parse_dict",
    "ParseError",
    # Validator
    "validate",
    "validate_file",
    "ValidationResult",
    "ValidationError",
    # Templates
    "interpolate",
    "interpolate_object",
    "evaluate_condition",
    # Step types
    "StepResult",
    "StepType",
    "StepTypeRegistry",
    "default_registry",
    # UI
    "Prompter",
    "ConsolePrompter",
    "CANCELLED",
    "is_cancelled",
    # Persistence
    "RecordStore",
    "JsonDirectoryStore",
    "MemoryStore",
    "VariableStore",
    "StoredVariableRecord",
    "PersistenceError",
    "normalize_version",
    "SessionTracker",
    "SessionState",
    "ResumeDecision",
    "BackupStore",
    "BackupError",
    "project_hash",
    # Executor
    "FlowExecutor",
    "RunResult",
    "RunStatus",
    "execute_blueprint",
]
