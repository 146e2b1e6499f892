from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Mapping, Union


SYSTEMCTL = "systemctl"
JOURNALCTL = "journalctl"

SERVICE_NAME = "nightly-onedrive-backup.service"
TIMER_NAME = "nightly-onedrive-backup.timer"

LOG_LINES = 50  # lines requested from journalctl
OUTPUT_WINDOW = 20  # lines of the last output shown on screen
TICK_INTERVAL = 0.1  # seconds between spinner frames

TITLE = "OneDrive Backup – systemd units"
HELP_LINE = "[↑/↓] navigate • [space] toggle/run • [r] run • [enter] status • [l] logs • [/] filter • [q] quit"


class UnitKind(enum.Enum):
    SERVICE = "service"
    TIMER = "timer"


@dataclass(frozen=True, slots=True)
class Unit:
    name: str
    kind: UnitKind
    description: str


UNITS: tuple[Unit, ...] = (
    Unit(TIMER_NAME, UnitKind.TIMER, "Enable/Disable, View status, Run Now"),
    Unit(SERVICE_NAME, UnitKind.SERVICE, "Run Now, View logs"),
)


class Action(enum.Enum):
    STATUS = "status"
    RUN_NOW = "start"
    TOGGLE = "toggle"
    LOGS = "logs"

    @property
    def tag(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class UnitState:
    active_state: str = "unknown"
    sub_state: str = "unknown"
    unit_file_state: str = "unknown"

    def summary(self) -> str:
        return f"{self.active_state} ({self.sub_state}) · {self.unit_file_state}"


# Command results


@dataclass(frozen=True, slots=True)
class Completed:
    output: str


@dataclass(frozen=True, slots=True)
class Failed:
    error: str
    output: str = ""


CommandResult = Union[Completed, Failed]

CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class PendingOperation:
    op_id: int
    action: Action
    unit: Unit
    # Cancellation handle; setting it asks the runner to terminate its process.
    cancel: asyncio.Event = field(default_factory=asyncio.Event, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class AppState:
    units: tuple[Unit, ...] = UNITS
    selected: int = 0
    filter_text: str = ""
    loading: bool = False
    status: str = "Ready"
    last_output: str = ""
    last_error: str | None = None
    pending: PendingOperation | None = None
    spinner_frame: int = 0
    unit_states: Mapping[str, UnitState] = field(default_factory=dict)
    next_op_id: int = 1

    @property
    def busy(self) -> bool:
        return self.pending is not None

    def visible_units(self) -> list[Unit]:
        q = self.filter_text.strip().lower()
        if not q:
            return list(self.units)
        return [u for u in self.units if q in u.name.lower()]

    def selected_unit(self) -> Unit | None:
        visible = self.visible_units()
        if not visible:
            return None
        return visible[max(0, min(self.selected, len(visible) - 1))]


# Events consumed by the state machine


@dataclass(frozen=True, slots=True)
class KeyPressed:
    key: str


@dataclass(frozen=True, slots=True)
class FilterChanged:
    text: str


@dataclass(frozen=True, slots=True)
class Tick:
    pass


@dataclass(frozen=True, slots=True)
class OperationFinished:
    op_id: int
    result: CommandResult


@dataclass(frozen=True, slots=True)
class UnitStatesRefreshed:
    states: Mapping[str, UnitState]


Event = Union[KeyPressed, FilterChanged, Tick, OperationFinished, UnitStatesRefreshed]


# Effects requested by the state machine, carried out by the event loop


@dataclass(frozen=True, slots=True)
class StartOperation:
    op: PendingOperation


@dataclass(frozen=True, slots=True)
class CancelOperation:
    op: PendingOperation


@dataclass(frozen=True, slots=True)
class StartTicks:
    pass


@dataclass(frozen=True, slots=True)
class StopTicks:
    pass


@dataclass(frozen=True, slots=True)
class RefreshUnitStates:
    pass


@dataclass(frozen=True, slots=True)
class Exit:
    pass


Effect = Union[StartOperation, CancelOperation, StartTicks, StopTicks, RefreshUnitStates, Exit]


@dataclass(frozen=True, slots=True)
class Transition:
    state: AppState
    effects: tuple[Effect, ...] = ()
