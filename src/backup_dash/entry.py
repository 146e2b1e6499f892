import sys
from typing import List

from .cli import app


SUBCOMMANDS = {
    "dash",
    "status",
    "start",
    "toggle",
    "logs",
    "doctor",
    "version",
}

UNIT_ACTIONS = {
    "status": "status",
    "start": "start",
    "run": "start",
    "toggle": "toggle",
    "logs": "logs",
    "log": "logs",
}


def main(argv: List[str] | None = None):
    if argv is None:
        argv = sys.argv[1:]

    # Handle version early so no logger or tool check runs
    if argv and argv[0] in {"--version", "-V"}:
        from . import __version__
        print(__version__)
        return

    # Shorthand: allow "backup-dash <unit> <action>" (unit-first)
    # Examples:
    #   backup-dash timer toggle
    #   backup-dash service logs
    #   backup-dash nightly-onedrive-backup.timer status
    if argv and not argv[0].startswith("-") and argv[0] not in SUBCOMMANDS:
        unit = argv[0]
        action = argv[1] if len(argv) > 1 else "status"
        rest = argv[2:]
        if action in UNIT_ACTIONS:
            return app(args=[UNIT_ACTIONS[action], unit] + rest, prog_name="backup-dash")
        # Unknown action after a unit name; fall through to app() which will print help

    # Otherwise, dispatch to Typer app (subcommands / flags)
    app(args=argv, prog_name="backup-dash")
