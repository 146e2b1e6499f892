import asyncio
import os
import time
from types import SimpleNamespace

import pytest

from backup_dash.dash import commands
from backup_dash.dash.commands import (
    UnknownActionError,
    dispatch,
    execute,
    query_enablement,
    run_command,
)
from backup_dash.dash.models import (
    CANCELLED,
    SERVICE_NAME,
    TIMER_NAME,
    UNITS,
    Action,
    Completed,
    Failed,
    PendingOperation,
)


TIMER, SERVICE = UNITS


# ---------------------------------------------------------------------------
# dispatch


def test_dispatch_static_forms():
    assert dispatch(Action.STATUS, TIMER) == ["systemctl", "status", "--no-pager", TIMER_NAME]
    assert dispatch(Action.RUN_NOW, SERVICE) == ["systemctl", "start", SERVICE_NAME]
    assert dispatch(Action.LOGS, SERVICE) == ["journalctl", "-u", SERVICE_NAME, "-n", "50", "--no-pager"]


def test_toggle_enabled_unit_disables():
    argv = dispatch(Action.TOGGLE, TIMER, query=lambda unit: "enabled")
    assert argv == ["systemctl", "disable", "--now", TIMER_NAME]


@pytest.mark.parametrize("reported", ["disabled", "static", "enabled-runtime", "masked", ""])
def test_toggle_anything_else_enables(reported):
    argv = dispatch(Action.TOGGLE, TIMER, query=lambda unit: reported)
    assert argv == ["systemctl", "enable", "--now", TIMER_NAME]


def test_static_actions_never_query_enablement():
    def query(unit):
        raise AssertionError("enablement must not be queried")

    for action in (Action.STATUS, Action.RUN_NOW, Action.LOGS):
        dispatch(action, TIMER, query=query)


def test_dispatch_unknown_action():
    with pytest.raises(UnknownActionError):
        dispatch("restart", TIMER)  # type: ignore[arg-type]


def test_query_enablement_trims_output(monkeypatch):
    seen = {}

    def fake_run(argv, **kwargs):
        seen["argv"] = argv
        return SimpleNamespace(stdout="enabled\n", returncode=0)

    monkeypatch.setattr(commands.subprocess, "run", fake_run)
    assert query_enablement(TIMER) == "enabled"
    assert seen["argv"] == ["systemctl", "is-enabled", TIMER_NAME]


def test_query_enablement_ignores_exit_status(monkeypatch):
    monkeypatch.setattr(
        commands.subprocess, "run", lambda argv, **kw: SimpleNamespace(stdout="disabled\n", returncode=1)
    )
    assert query_enablement(TIMER) == "disabled"


def test_query_enablement_missing_binary(monkeypatch):
    def fake_run(argv, **kwargs):
        raise FileNotFoundError("systemctl")

    monkeypatch.setattr(commands.subprocess, "run", fake_run)
    assert query_enablement(TIMER) == ""


# ---------------------------------------------------------------------------
# run_command (real processes)


def test_run_command_merges_stdout_and_stderr():
    result = asyncio.run(run_command(["sh", "-c", "echo out; echo err 1>&2"]))
    assert isinstance(result, Completed)
    assert "out" in result.output
    assert "err" in result.output


def test_run_command_nonzero_exit_keeps_output():
    result = asyncio.run(run_command(["sh", "-c", "echo boom; exit 3"]))
    assert result == Failed("exit status 3", "boom\n")


def test_run_command_spawn_failure():
    result = asyncio.run(run_command(["/nonexistent/backup-dash-no-such-tool"]))
    assert isinstance(result, Failed)
    assert result.output == ""


def test_run_command_cancel_before_start_spawns_nothing():
    async def scenario():
        cancel = asyncio.Event()
        cancel.set()
        return await run_command(["/nonexistent/would-fail-if-spawned"], cancel)

    assert asyncio.run(scenario()) == Failed(CANCELLED)


def test_run_command_cancel_terminates_process():
    async def scenario():
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        loop.call_later(0.1, cancel.set)
        started = time.monotonic()
        result = await run_command(["sleep", "30"], cancel)
        return result, time.monotonic() - started

    result, elapsed = asyncio.run(scenario())
    assert result == Failed(CANCELLED)
    assert elapsed < 10


@pytest.mark.filterwarnings("error::pytest.PytestUnraisableExceptionWarning")
def test_run_command_task_cancellation_reaps_process(tmp_path):
    pidfile = tmp_path / "pid"

    async def scenario():
        argv = ["sh", "-c", f"echo $$ > {pidfile}; exec sleep 30"]
        task = asyncio.create_task(run_command(argv, asyncio.Event()))
        while not pidfile.exists() or not pidfile.read_text().strip():
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    with pytest.raises(ProcessLookupError):
        os.kill(int(pidfile.read_text()), 0)


def test_run_command_kills_process_ignoring_sigterm(monkeypatch):
    monkeypatch.setattr(commands, "TERMINATE_GRACE", 0.2)

    async def scenario():
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.3, cancel.set)
        started = time.monotonic()
        result = await run_command(["sh", "-c", "trap '' TERM; exec sleep 30"], cancel)
        return result, time.monotonic() - started

    result, elapsed = asyncio.run(scenario())
    assert result == Failed(CANCELLED)
    assert elapsed < 5

# ---------------------------------------------------------------------------
# execute


def test_execute_unknown_action_spawns_nothing():
    async def runner(argv, cancel=None):
        raise AssertionError("runner must not be called")

    op = PendingOperation(op_id=1, action="bogus", unit=TIMER)  # type: ignore[arg-type]
    result = asyncio.run(execute(op, runner=runner))
    assert isinstance(result, Failed)
    assert result.error.startswith("unknown action")


def test_execute_passes_cancel_handle_to_runner():
    seen = {}

    async def runner(argv, cancel=None):
        seen["argv"] = argv
        seen["cancel"] = cancel
        return Completed("ok\n")

    op = PendingOperation(op_id=7, action=Action.TOGGLE, unit=TIMER)
    result = asyncio.run(execute(op, query=lambda unit: "disabled", runner=runner))
    assert result == Completed("ok\n")
    assert seen["argv"] == ["systemctl", "enable", "--now", TIMER_NAME]
    assert seen["cancel"] is op.cancel
