from __future__ import annotations

import asyncio
import logging
import subprocess
from asyncio.subprocess import PIPE, STDOUT
from contextlib import suppress
from typing import Awaitable, Callable

from .models import (
    CANCELLED,
    JOURNALCTL,
    LOG_LINES,
    SYSTEMCTL,
    Action,
    CommandResult,
    Completed,
    Failed,
    PendingOperation,
    Unit,
)


log = logging.getLogger(__name__)

# Seconds a cancelled process gets between SIGTERM and SIGKILL.
TERMINATE_GRACE = 2.0

EnablementQuery = Callable[[Unit], str]


class UnknownActionError(ValueError):
    def __init__(self, action: object) -> None:
        super().__init__(f"unknown action: {action!r}")
        self.action = action


def status_argv(unit: Unit) -> list[str]:
    return [SYSTEMCTL, "status", "--no-pager", unit.name]


def start_argv(unit: Unit) -> list[str]:
    return [SYSTEMCTL, "start", unit.name]


def enable_argv(unit: Unit) -> list[str]:
    return [SYSTEMCTL, "enable", "--now", unit.name]


def disable_argv(unit: Unit) -> list[str]:
    return [SYSTEMCTL, "disable", "--now", unit.name]


def logs_argv(unit: Unit, last: int = LOG_LINES) -> list[str]:
    return [JOURNALCTL, "-u", unit.name, "-n", str(last), "--no-pager"]


def query_enablement(unit: Unit) -> str:
    """Return the trimmed output of `systemctl is-enabled <unit>`.

    Exit status is ignored: disabled units exit non-zero but still print
    their state. A missing binary yields an empty string.
    """
    try:
        proc = subprocess.run(
            [SYSTEMCTL, "is-enabled", unit.name],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        log.warning("is-enabled query for %s failed: %s", unit.name, e)
        return ""
    state = proc.stdout.strip()
    log.debug("is-enabled %s -> %r (rc=%s)", unit.name, state, proc.returncode)
    return state


def dispatch(action: Action, unit: Unit, query: EnablementQuery = query_enablement) -> list[str]:
    """Map an (action, unit) pair to the argv to run.

    TOGGLE queries the current enablement first. Query and act are two
    separate systemctl calls, so an external change in between can make the
    decision stale; systemctl offers nothing atomic to close that gap.
    """
    if action is Action.STATUS:
        return status_argv(unit)
    if action is Action.RUN_NOW:
        return start_argv(unit)
    if action is Action.LOGS:
        return logs_argv(unit)
    if action is Action.TOGGLE:
        if query(unit) == "enabled":
            return disable_argv(unit)
        return enable_argv(unit)
    raise UnknownActionError(action)


async def _reap(proc: asyncio.subprocess.Process, communicate: asyncio.Future) -> None:
    """Terminate `proc`, escalate to SIGKILL after the grace period, drain its pipe."""
    if proc.returncode is None:
        with suppress(ProcessLookupError):
            proc.terminate()
    try:
        await asyncio.wait_for(asyncio.shield(proc.wait()), TERMINATE_GRACE)
    except asyncio.TimeoutError:
        log.warning("pid=%s still alive after SIGTERM, killing", proc.pid)
        with suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
    # The pipe transport has to close before the event loop does.
    try:
        await asyncio.wait_for(asyncio.shield(communicate), TERMINATE_GRACE)
    except asyncio.TimeoutError:
        communicate.cancel()


async def run_command(argv: list[str], cancel: asyncio.Event | None = None) -> CommandResult:
    """Run one command, capturing stdout and stderr as a single stream.

    Setting `cancel` terminates the process and yields Failed("cancelled").
    Cancelling the calling task terminates and reaps the process, then
    re-raises.
    """
    if cancel is not None and cancel.is_set():
        return Failed(CANCELLED)
    try:
        proc = await asyncio.create_subprocess_exec(*argv, stdout=PIPE, stderr=STDOUT)
    except OSError as e:
        log.warning("spawn failed for %s: %s", argv, e)
        return Failed(str(e))
    log.debug("spawned pid=%s: %s", proc.pid, " ".join(argv))

    communicate = asyncio.ensure_future(proc.communicate())
    waiters: set[asyncio.Future] = {communicate}
    cancel_wait: asyncio.Future | None = None
    if cancel is not None:
        cancel_wait = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_wait)

    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        if not communicate.done():
            log.info("cancelling pid=%s: %s", proc.pid, " ".join(argv))
            await _reap(proc, communicate)
            return Failed(CANCELLED)
    except asyncio.CancelledError:
        if cancel_wait is not None:
            cancel_wait.cancel()
        await _reap(proc, communicate)
        raise

    if cancel_wait is not None:
        cancel_wait.cancel()
    out, _ = communicate.result()
    text = (out or b"").decode(errors="replace")
    log.debug("pid=%s exited rc=%s", proc.pid, proc.returncode)
    if proc.returncode != 0:
        return Failed(f"exit status {proc.returncode}", text)
    return Completed(text)


async def execute(
    op: PendingOperation,
    query: EnablementQuery = query_enablement,
    runner: Callable[..., Awaitable[CommandResult]] = run_command,
) -> CommandResult:
    """Resolve and run the command for one pending operation."""
    try:
        # The enablement query blocks; keep it off the event loop.
        argv = await asyncio.to_thread(dispatch, op.action, op.unit, query)
    except UnknownActionError as e:
        return Failed(str(e))
    return await runner(argv, op.cancel)
