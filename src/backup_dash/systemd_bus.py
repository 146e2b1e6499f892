import logging
from typing import Any, Iterable

from dbus_next import BusType, Variant
from dbus_next.aio import MessageBus

from .dash.models import UnitState


SYSTEMD_DEST = "org.freedesktop.systemd1"
SYSTEMD_PATH = "/org/freedesktop/systemd1"
IFACE_MANAGER = "org.freedesktop.systemd1.Manager"
IFACE_PROPERTIES = "org.freedesktop.DBus.Properties"
IFACE_UNIT = "org.freedesktop.systemd1.Unit"

log = logging.getLogger(__name__)


async def connect_system_bus() -> MessageBus:
    bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
    return bus


async def get_manager(bus: MessageBus):
    intro = await bus.introspect(SYSTEMD_DEST, SYSTEMD_PATH)
    obj = bus.get_proxy_object(SYSTEMD_DEST, SYSTEMD_PATH, intro)
    return obj.get_interface(IFACE_MANAGER)


async def load_unit_path(bus: MessageBus, unit_name: str) -> str:
    # LoadUnit (unlike GetUnit) also resolves units that are not loaded yet,
    # e.g. a service that only runs when its timer fires.
    mgr = await get_manager(bus)
    return await mgr.call_load_unit(unit_name)


def _val(v: Any) -> Any:
    return v.value if isinstance(v, Variant) else v


async def get_unit_state(bus: MessageBus, unit_path: str) -> UnitState:
    """Fetch ActiveState, SubState and UnitFileState of one unit."""
    intro = await bus.introspect(SYSTEMD_DEST, unit_path)
    obj = bus.get_proxy_object(SYSTEMD_DEST, unit_path, intro)
    props = obj.get_interface(IFACE_PROPERTIES)
    values: dict[str, str] = {}
    for key in ("ActiveState", "SubState", "UnitFileState"):
        try:
            values[key] = str(_val(await props.call_get(IFACE_UNIT, key))) or "unknown"
        except Exception as e:
            log.debug("property %s unavailable on %s: %s", key, unit_path, e)
            values[key] = "unknown"
    return UnitState(
        active_state=values["ActiveState"],
        sub_state=values["SubState"],
        unit_file_state=values["UnitFileState"],
    )


async def fetch_unit_states(unit_names: Iterable[str]) -> dict[str, UnitState]:
    """Best-effort snapshot of unit states; units that fail are left out."""
    try:
        bus = await connect_system_bus()
    except Exception as e:
        log.warning("system bus unavailable: %s", e)
        return {}
    states: dict[str, UnitState] = {}
    try:
        for name in unit_names:
            try:
                path = await load_unit_path(bus, name)
                states[name] = await get_unit_state(bus, path)
            except Exception as e:
                log.warning("unit state for %s unavailable: %s", name, e)
    finally:
        bus.disconnect()
    return states


async def system_bus_ok() -> bool:
    try:
        bus = await connect_system_bus()
    except Exception:
        return False
    try:
        await get_manager(bus)
        return True
    except Exception:
        return False
    finally:
        bus.disconnect()
