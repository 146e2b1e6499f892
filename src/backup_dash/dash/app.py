from __future__ import annotations

import asyncio
import logging
from asyncio import Task
from contextlib import suppress
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Mapping

from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.message import Message
from textual.timer import Timer
from textual.widgets import Input, Static

from .commands import EnablementQuery, execute, query_enablement, run_command
from .models import (
    TICK_INTERVAL,
    AppState,
    CancelOperation,
    CommandResult,
    Effect,
    Event,
    Exit,
    Failed,
    FilterChanged,
    KeyPressed,
    OperationFinished,
    PendingOperation,
    RefreshUnitStates,
    StartOperation,
    StartTicks,
    StopTicks,
    Tick,
    UnitState,
    UnitStatesRefreshed,
)
from .render import render
from .state import reduce


log = logging.getLogger(__name__)

Runner = Callable[..., Awaitable[CommandResult]]
StateSource = Callable[[Iterable[str]], Awaitable[Mapping[str, UnitState]]]


class DashEvent(Message):
    """Carries a state-machine event from a background task to the app."""

    def __init__(self, event: Event) -> None:
        super().__init__()
        self.event = event


class BackupDashApp(App):
    CSS_PATH = Path(__file__).with_name("app.tcss")
    AUTO_FOCUS = None
    BINDINGS = [
        Binding("up", "dash_key('up')", "Up", show=False),
        Binding("down", "dash_key('down')", "Down", show=False),
        Binding("k", "dash_key('k')", "Up", show=False),
        Binding("j", "dash_key('j')", "Down", show=False),
        Binding("space", "dash_key('space')", "Toggle"),
        Binding("r", "dash_key('r')", "Run"),
        Binding("enter", "dash_key('enter')", "Status"),
        Binding("l", "dash_key('l')", "Logs"),
        Binding("slash", "focus_filter", "Filter"),
        Binding("escape", "clear_filter", "Clear filter", show=False),
        Binding("q", "dash_key('q')", "Quit"),
        Binding("ctrl+c", "dash_key('ctrl+c')", "Quit", show=False, priority=True),
    ]

    def __init__(
        self,
        state: AppState | None = None,
        query: EnablementQuery = query_enablement,
        runner: Runner = run_command,
        state_source: StateSource | None = None,
    ) -> None:
        super().__init__()
        self.state = state or AppState()
        self._enablement_query = query
        self._command_runner = runner
        self._state_source = state_source
        self._spinner_timer: Timer | None = None
        # Background tasks still running: operations and state refreshes.
        self._background: set[Task] = set()
        self._cancel_handles: dict[int, PendingOperation] = {}

    def compose(self) -> ComposeResult:
        yield Static(render(self.state), id="frame")
        yield Input(placeholder="Filter units…", id="filter")

    async def on_mount(self) -> None:
        self._apply_effects((RefreshUnitStates(),))

    async def on_unmount(self) -> None:
        for op in list(self._cancel_handles.values()):
            op.cancel.set()
        self._cancel_handles.clear()
        self._stop_ticks()
        for task in list(self._background):
            if not task.done():
                task.cancel()
                with suppress(BaseException):
                    await task
        self._background.clear()

    # Event loop: every state change funnels through here.

    def _apply(self, event: Event) -> None:
        transition = reduce(self.state, event)
        if transition.state is not self.state:
            self.state = transition.state
            self.query_one("#frame", Static).update(render(self.state))
        self._apply_effects(transition.effects)

    def _apply_effects(self, effects: Iterable[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, StartOperation):
                self._start_operation(effect.op)
            elif isinstance(effect, CancelOperation):
                effect.op.cancel.set()
                self._cancel_handles.pop(effect.op.op_id, None)
            elif isinstance(effect, StartTicks):
                self._start_ticks()
            elif isinstance(effect, StopTicks):
                self._stop_ticks()
            elif isinstance(effect, RefreshUnitStates):
                self._refresh_unit_states()
            elif isinstance(effect, Exit):
                self.exit()

    def _track(self, task: Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _start_operation(self, op: PendingOperation) -> None:
        log.info("start op=%s %s %s", op.op_id, op.action.tag, op.unit.name)
        self._cancel_handles[op.op_id] = op

        async def _run() -> None:
            try:
                result = await execute(op, query=self._enablement_query, runner=self._command_runner)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.exception("op=%s failed", op.op_id)
                result = Failed(str(e))
            log.info("finish op=%s %s", op.op_id, type(result).__name__)
            self.post_message(DashEvent(OperationFinished(op.op_id, result)))

        self._track(asyncio.create_task(_run()))

    def _refresh_unit_states(self) -> None:
        if self._state_source is None:
            return
        source = self._state_source
        names = [u.name for u in self.state.units]

        async def _refresh() -> None:
            states = await source(names)
            self.post_message(DashEvent(UnitStatesRefreshed(states)))

        self._track(asyncio.create_task(_refresh()))

    def _start_ticks(self) -> None:
        if self._spinner_timer is None:
            self._spinner_timer = self.set_interval(TICK_INTERVAL, lambda: self._apply(Tick()))

    def _stop_ticks(self) -> None:
        if self._spinner_timer is not None:
            self._spinner_timer.stop()
        self._spinner_timer = None

    # Inputs

    @on(DashEvent)
    def _on_dash_event(self, message: DashEvent) -> None:
        if isinstance(message.event, OperationFinished):
            pending = self.state.pending
            if pending is None or pending.op_id != message.event.op_id:
                log.debug("discarding result of abandoned op=%s", message.event.op_id)
        self._apply(message.event)

    def action_dash_key(self, key: str) -> None:
        self._apply(KeyPressed(key))

    def action_focus_filter(self) -> None:
        search = self.query_one("#filter", Input)
        search.display = True
        search.focus()

    def action_clear_filter(self) -> None:
        search = self.query_one("#filter", Input)
        search.value = ""
        search.display = False
        self.set_focus(None)
        self._apply(FilterChanged(""))

    @on(Input.Changed, "#filter")
    def _on_filter_changed(self, event: Input.Changed) -> None:
        self._apply(FilterChanged(event.value))

    @on(Input.Submitted, "#filter")
    def _on_filter_submitted(self, event: Input.Submitted) -> None:
        # Keep the filter, hand the keys back to the unit list.
        event.input.display = bool(event.value)
        self.set_focus(None)


def run_dash(use_bus: bool = True) -> int:
    state_source: StateSource | None = None
    if use_bus:
        from ..systemd_bus import fetch_unit_states

        state_source = fetch_unit_states
    app = BackupDashApp(state_source=state_source)
    app.run()
    return app.return_code or 0
