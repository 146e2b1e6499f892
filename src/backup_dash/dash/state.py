"""Dashboard state machine.

`reduce` is the only way an `AppState` changes. It never performs I/O: it
returns the next state together with the effects the event loop must carry
out (spawning or cancelling a background command, starting or stopping the
spinner ticks, exiting).
"""
from __future__ import annotations

from dataclasses import replace

from ..util import first_line
from .models import (
    Action,
    AppState,
    CancelOperation,
    Completed,
    Effect,
    Event,
    Exit,
    FilterChanged,
    KeyPressed,
    OperationFinished,
    PendingOperation,
    RefreshUnitStates,
    StartOperation,
    StartTicks,
    StopTicks,
    Tick,
    Transition,
    Unit,
    UnitKind,
    UnitStatesRefreshed,
)


QUIT_KEYS = frozenset({"q", "ctrl+c"})
UP_KEYS = frozenset({"up", "k"})
DOWN_KEYS = frozenset({"down", "j"})

ACTION_KEYS: dict[str, Action] = {
    "enter": Action.STATUS,
    "r": Action.RUN_NOW,
    "l": Action.LOGS,
}


def action_for_key(key: str, unit: Unit) -> Action | None:
    if key == "space":
        # Timers toggle enablement; a bare service can only be run.
        return Action.TOGGLE if unit.kind is UnitKind.TIMER else Action.RUN_NOW
    return ACTION_KEYS.get(key)


def _move(state: AppState, delta: int) -> AppState:
    count = len(state.visible_units())
    if count == 0:
        return replace(state, selected=0)
    return replace(state, selected=max(0, min(state.selected + delta, count - 1)))


def _begin(state: AppState, action: Action, unit: Unit) -> Transition:
    op = PendingOperation(op_id=state.next_op_id, action=action, unit=unit)
    effects: list[Effect] = []
    if state.pending is not None:
        # Re-entrant: abandon the outstanding command rather than wait for it.
        effects.append(CancelOperation(state.pending))
    else:
        effects.append(StartTicks())
    effects.append(StartOperation(op))
    new = replace(
        state,
        loading=True,
        status=f"{action.tag} {unit.name}",
        pending=op,
        next_op_id=state.next_op_id + 1,
    )
    return Transition(new, tuple(effects))


def _on_key(state: AppState, key: str) -> Transition:
    if key in QUIT_KEYS:
        effects: tuple[Effect, ...] = (Exit(),)
        if state.pending is not None:
            effects = (CancelOperation(state.pending), Exit())
        return Transition(replace(state, pending=None, loading=False), effects)
    if key in UP_KEYS:
        return Transition(_move(state, -1))
    if key in DOWN_KEYS:
        return Transition(_move(state, 1))

    unit = state.selected_unit()
    if unit is None:
        # A running operation keeps its status line.
        if state.pending is None and (key == "space" or key in ACTION_KEYS):
            return Transition(replace(state, status="No unit selected"))
        return Transition(state)
    action = action_for_key(key, unit)
    if action is None:
        return Transition(state)
    return _begin(state, action, unit)


def _on_finished(state: AppState, event: OperationFinished) -> Transition:
    op = state.pending
    if op is None or op.op_id != event.op_id:
        # Result of an abandoned operation.
        return Transition(state)

    result = event.result
    if isinstance(result, Completed):
        status = first_line(result.output) or f"{op.action.tag} {op.unit.name}: done"
        error = None
    else:
        status = f"Error: {result.error}"
        error = result.error
    new = replace(
        state,
        loading=False,
        pending=None,
        status=status,
        last_output=result.output,
        last_error=error,
        spinner_frame=0,
    )
    return Transition(new, (CancelOperation(op), StopTicks(), RefreshUnitStates()))


def reduce(state: AppState, event: Event) -> Transition:
    if isinstance(event, KeyPressed):
        return _on_key(state, event.key)
    if isinstance(event, OperationFinished):
        return _on_finished(state, event)
    if isinstance(event, Tick):
        if not state.loading:
            return Transition(state)
        return Transition(replace(state, spinner_frame=state.spinner_frame + 1))
    if isinstance(event, FilterChanged):
        return Transition(replace(state, filter_text=event.text, selected=0))
    if isinstance(event, UnitStatesRefreshed):
        return Transition(replace(state, unit_states=dict(event.states)))
    return Transition(state)
