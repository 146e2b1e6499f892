import asyncio
import shutil
from pathlib import Path
from typing import Optional

import typer

from . import __version__
from .dash.commands import execute
from .dash.models import (
    JOURNALCTL,
    SYSTEMCTL,
    UNITS,
    Action,
    Completed,
    PendingOperation,
    Unit,
)
from .util import ToolNotFoundError, configure_logger, require_tool


app = typer.Typer(
    name="backup-dash",
    add_completion=False,
    invoke_without_command=True,
    help=(
        "Dashboard for the nightly OneDrive backup systemd units.\n\n"
        "Usage:\n"
        "  backup-dash                       Open the dashboard\n"
        "  backup-dash status|start <unit>   Show status / run now\n"
        "  backup-dash toggle <unit>         Enable or disable (with --now)\n"
        "  backup-dash logs <unit>           Show the last journal lines\n"
        "  backup-dash doctor                Check systemctl, journalctl and D-Bus\n\n"
        "Unit (<unit>): 'timer', 'service', or the full unit name."
    ),
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        is_eager=True,
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Write a debug log to this file", show_default=False
    ),
    no_bus: bool = typer.Option(
        False, "--no-bus", help="Do not query unit states over the system D-Bus"
    ),
):
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    configure_logger(log_file=log_file)
    ctx.obj = {"use_bus": not no_bus}
    if ctx.invoked_subcommand is None:
        _run_dash(use_bus=not no_bus)


def _ensure_systemctl() -> None:
    try:
        require_tool(SYSTEMCTL)
    except ToolNotFoundError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=1)


def _run_dash(use_bus: bool) -> None:
    _ensure_systemctl()
    # Lazy import to avoid importing Textual for one-shot commands
    try:
        from .dash.app import run_dash

        code = run_dash(use_bus=use_bus)
    except Exception as e:
        typer.echo(f"Failed to start dashboard: {e}", err=True)
        raise typer.Exit(code=1)
    if code:
        raise typer.Exit(code=1)


def resolve_unit(ident: str) -> Unit:
    """Accept 'timer', 'service' or a full unit name."""
    for unit in UNITS:
        if ident in (unit.name, unit.kind.value):
            return unit
    raise KeyError(ident)


def _one_shot(action: Action, ident: str) -> None:
    try:
        unit = resolve_unit(ident)
    except KeyError:
        names = ", ".join(u.name for u in UNITS)
        typer.echo(f"Unknown unit '{ident}'. Expected timer, service, or one of: {names}", err=True)
        raise typer.Exit(code=2)
    _ensure_systemctl()

    result = asyncio.run(execute(PendingOperation(op_id=0, action=action, unit=unit)))
    if result.output:
        typer.echo(result.output.rstrip("\n"))
    if not isinstance(result, Completed):
        typer.echo(f"{action.tag} {unit.name}: {result.error}", err=True)
        raise typer.Exit(code=1)


@app.command()
def dash(ctx: typer.Context):
    """Open the dashboard (same as running without a command)."""
    _run_dash(use_bus=(ctx.obj or {}).get("use_bus", True))


@app.command()
def status(unit: str = typer.Argument(..., help="timer, service, or unit name")):
    """Show `systemctl status` for a unit."""
    _one_shot(Action.STATUS, unit)


@app.command()
def start(unit: str = typer.Argument(..., help="timer, service, or unit name")):
    """Start a unit now."""
    _one_shot(Action.RUN_NOW, unit)


@app.command()
def toggle(unit: str = typer.Argument("timer", help="timer, service, or unit name")):
    """Enable --now a disabled unit, or disable --now an enabled one."""
    _one_shot(Action.TOGGLE, unit)


@app.command()
def logs(unit: str = typer.Argument("service", help="timer, service, or unit name")):
    """Show the last journal lines of a unit."""
    _one_shot(Action.LOGS, unit)


@app.command()
def doctor():
    """Check that systemctl, journalctl and the system D-Bus are usable."""
    from .systemd_bus import system_bus_ok

    ok_systemctl = shutil.which(SYSTEMCTL) is not None
    ok_journal = shutil.which(JOURNALCTL) is not None
    ok_dbus = asyncio.run(system_bus_ok())

    typer.echo(f"{SYSTEMCTL}: {'ok' if ok_systemctl else 'FAIL'}")
    typer.echo(f"{JOURNALCTL}: {'ok' if ok_journal else 'FAIL'}")
    typer.echo(f"system D-Bus: {'ok' if ok_dbus else 'FAIL (unit states will show as unknown)'}")
    if not ok_systemctl:
        raise typer.Exit(code=1)


@app.command()
def version():
    """Show CLI version (semver)."""
    typer.echo(__version__)
