"""flowsmith CLI - Command line interface for running blueprints.

Provides commands for inspecting, validating and running blueprints, and
for managing the state a run leaves behind.

Usage:
    flowsmith show <file>               Show flows and steps of a blueprint
    flowsmith validate <file>           Validate a blueprint for errors
    flowsmith run <file>                Run a blueprint interactively
    flowsmith reset <file>              Forget saved variables and session
    flowsmith session [status|clear]    Inspect or clear the current session
    flowsmith backups [list]            List backed-up projects
    flowsmith recover <project-hash>    Restore a project's backup
"""
import json
import sys
from typing import Optional

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


# Lazy imports to avoid loading heavy dependencies for --help
def get_parser():
    from flowsmith.parser import parse_file, ParseError
    return parse_file, ParseError


def get_settings():
    from flowsmith.config import Settings
    from flowsmith.logging import configure
    settings = Settings.from_env()
    configure(level=settings.log_level, output_format=settings.log_format)
    return settings


def build_stores(settings):
    """Variable store, session tracker and backup store for the current project."""
    from flowsmith.backup import BackupStore
    from flowsmith.session import SessionTracker
    from flowsmith.storage import JsonDirectoryStore, VariableStore

    backup = BackupStore(settings.backup_dir, max_projects=settings.max_backups)
    variable_store = VariableStore(
        JsonDirectoryStore(settings.variables_dir),
        fallback=backup.variables_fallback(settings.project_root),
    )
    tracker = SessionTracker(
        JsonDirectoryStore(settings.state_dir),
        variable_store=variable_store,
        backup=backup,
        max_age=settings.session_max_age,
        metadata_store=JsonDirectoryStore(settings.metadata_dir),
    )
    return variable_store, tracker, backup


def load_blueprint(filepath: str):
    """Parse a blueprint, printing the error and returning None on failure."""
    parse_file, ParseError = get_parser()
    try:
        return parse_file(filepath)
    except ParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return None


def cmd_show(filepath: str, verbose: bool = False) -> int:
    """Parse a blueprint and display its structure."""
    blueprint = load_blueprint(filepath)
    if blueprint is None:
        return EXIT_ERROR

    print(f"Blueprint: {blueprint.display_name}")
    print(f"Identity: {blueprint.identity}")
    print(f"Schema: {blueprint.schema_version}")
    print(f"Flows: {len(blueprint.flows)}")
    print(f"Total Steps: {blueprint.total_steps()}")
    print()

    for flow in blueprint.flows:
        print(f"▸ {flow.id}: {flow.title}")
        for step in flow.steps:
            guard = f" (when: {step.when})" if step.when else ""
            print(f"    [{step.type}] {step.id}: {step.label}{guard}")
            if verbose:
                produced = step.produced_variables()
                if produced:
                    print(f"        Saves: {', '.join(produced)}")
                if step.captures:
                    print(f"        Captures: {', '.join(step.captures)}")

    if verbose and blueprint.variables:
        print()
        print("Variables:")
        for name, declaration in blueprint.variables.items():
            flags = [f for f, on in (("required", declaration.required), ("sensitive", declaration.sensitive)) if on]
            suffix = f" ({', '.join(flags)})" if flags else ""
            print(f"    {name}{suffix}")
    return EXIT_OK


def cmd_validate(filepath: str, verbose: bool = False) -> int:
    """Validate a blueprint and report every problem."""
    from flowsmith.validator import validate

    blueprint = load_blueprint(filepath)
    if blueprint is None:
        return EXIT_ERROR

    result = validate(blueprint)

    if result.passed:
        print("✅ Blueprint is valid")
        print(f"   Flows: {len(blueprint.flows)}")
        print(f"   Steps: {blueprint.total_steps()}")
        if verbose or result.warnings:
            print(f"   Warnings: {len(result.warnings)}")
        if verbose:
            for warning in result.warnings:
                print(f"⚠️  {warning}")
        return EXIT_OK

    print("❌ Blueprint validation failed")
    print()
    for error in result.errors:
        print(f"❌ {error}")
    for warning in result.warnings:
        print(f"⚠️  {warning}")
    return EXIT_ERROR


def cmd_run(
    filepath: str,
    dev_mode: bool = False,
    interactive: bool = True,
    flow_id: Optional[str] = None,
    as_json: bool = False,
) -> int:
    """Run a blueprint and report the outcome."""
    from flowsmith.executor import FlowExecutor, RunStatus
    from flowsmith.ui import ConsolePrompter

    blueprint = load_blueprint(filepath)
    if blueprint is None:
        return EXIT_ERROR

    try:
        settings = get_settings()
        variable_store, tracker, _ = build_stores(settings)
        executor = FlowExecutor(
            blueprint,
            ConsolePrompter(err=as_json),
            variable_store=variable_store,
            session_tracker=tracker,
            dev_mode=dev_mode,
            interactive=interactive,
            flow_id=flow_id,
            project_root=settings.project_root,
        )
        result = executor.run()
    except Exception as e:
        print(f"Error running blueprint: {e}", file=sys.stderr)
        return EXIT_ERROR

    if as_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print()
        if result.status == RunStatus.COMPLETED:
            print(f"✅ {blueprint.display_name} complete")
        elif result.status == RunStatus.CANCELLED:
            print("Cancelled. Progress is saved; run again to resume.")
        else:
            print(f"❌ Run failed: {result.error}")
            if result.failed_step:
                print(f"   Step: {result.failed_flow}/{result.failed_step}")
            if result.validation is not None:
                for error in result.validation.errors:
                    print(f"   {error}")
        if result.status != RunStatus.FAILED:
            print()
            print(executor.summary())
        if result.backed_up is False:
            print("⚠️  Backup failed; the session was kept.", file=sys.stderr)

    if result.status == RunStatus.COMPLETED:
        return EXIT_OK
    if result.status == RunStatus.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_ERROR


def cmd_reset(filepath: str) -> int:
    """Forget the saved variables and session of a blueprint."""
    blueprint = load_blueprint(filepath)
    if blueprint is None:
        return EXIT_ERROR

    try:
        _, tracker, _ = build_stores(get_settings())
        tracker.reset(blueprint.identity)
    except Exception as e:
        print(f"Error resetting state: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(f"✅ Reset saved state for {blueprint.display_name}")
    return EXIT_OK


def cmd_session(action: str = "status") -> int:
    """Show or clear the current session."""
    _, tracker, _ = build_stores(get_settings())

    if action == "status":
        for line in tracker.status_lines():
            print(line)
        return EXIT_OK
    if action == "clear":
        tracker.clear()
        print("✅ Session cleared")
        return EXIT_OK

    print(f"Unknown session action: {action}", file=sys.stderr)
    return EXIT_ERROR


def cmd_backups(action: str = "list") -> int:
    """List backed-up projects, most recent first."""
    if action != "list":
        print(f"Unknown backups action: {action}", file=sys.stderr)
        return EXIT_ERROR

    _, _, backup = build_stores(get_settings())
    entries = backup.list_backups()
    if not entries:
        print("No backups")
        return EXIT_OK

    for entry in entries:
        name = f" ({entry.display_name})" if entry.display_name else ""
        print(f"{entry.project_hash}  {entry.original_path}{name}")
        print(f"    last backup: {entry.last_accessed:%Y-%m-%d %H:%M}, count: {entry.backup_count}")
    return EXIT_OK


def cmd_recover(hash_: str) -> int:
    """Restore a project's backup into the current project."""
    from flowsmith.backup import BackupError
    from flowsmith.storage import JsonDirectoryStore

    settings = get_settings()
    variable_store, _, backup = build_stores(settings)
    try:
        restored = backup.restore(hash_, variable_store, JsonDirectoryStore(settings.metadata_dir))
    except BackupError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(f"✅ Restored {len(restored)} record(s): {', '.join(restored) or 'none'}")
    return EXIT_OK


def print_usage():
    """Print usage information."""
    print(__doc__)
    print("Options:")
    print("  -h, --help            Show this help message")
    print("  -v, --verbose         Show detailed output (show, validate)")
    print("  --dev                 Development mode: fill inputs with defaults, no acknowledgements")
    print("  --yes                 Non-interactive: resume and skip without asking")
    print("  --flow <id>           Run only one flow")
    print("  --json                Print the run result as JSON")


def _option_value(args: list[str], name: str) -> tuple[Optional[str], list[str]]:
    """Pull ``name <value>`` out of ``args``."""
    if name not in args:
        return None, args
    i = args.index(name)
    if i + 1 >= len(args):
        raise ValueError(f"{name} requires a value")
    return args[i + 1], args[:i] + args[i + 2:]


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the flowsmith CLI."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] in ("-h", "--help"):
        print_usage()
        return EXIT_OK

    command = argv[0]
    args = argv[1:]

    # Parse common flags
    verbose = "-v" in args or "--verbose" in args
    args = [a for a in args if a not in ("-v", "--verbose")]

    if command in ("show", "validate", "run", "reset"):
        try:
            flow_id, args = _option_value(args, "--flow")
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_ERROR
        files = [a for a in args if not a.startswith("-")]
        if not files:
            print(f"Error: {command} requires a file argument", file=sys.stderr)
            return EXIT_ERROR
        filepath = files[0]

        if command == "show":
            return cmd_show(filepath, verbose=verbose)
        if command == "validate":
            return cmd_validate(filepath, verbose=verbose)
        if command == "reset":
            return cmd_reset(filepath)
        return cmd_run(
            filepath,
            dev_mode="--dev" in args,
            interactive="--yes" not in args,
            flow_id=flow_id,
            as_json="--json" in args,
        )

    elif command == "session":
        return cmd_session(args[0] if args else "status")

    elif command == "backups":
        return cmd_backups(args[0] if args else "list")

    elif command == "recover":
        if not args:
            print("Error: recover requires a project hash", file=sys.stderr)
            return EXIT_ERROR
        return cmd_recover(args[0])

    else:
        print(f"Unknown command: {command}", file=sys.stderr)
        print_usage()
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
