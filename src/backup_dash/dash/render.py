from __future__ import annotations

from rich.style import Style
from rich.text import Text

from ..util import trim_lines
from .models import HELP_LINE, OUTPUT_WINDOW, TITLE, AppState


SPINNER_FRAMES = ("⣾", "⣽", "⣻", "⢿", "⡿", "⣟", "⣯", "⣷")

TITLE_STYLE = Style(color="#00afff", bold=True)
SELECTED_STYLE = Style(color="#ee6ff8", bold=True)
DESC_STYLE = Style(color="#777777")
STATUS_STYLE = Style(color="#5fafd7")
OUTPUT_STYLE = Style(dim=True)


def spinner_glyph(frame: int) -> str:
    return SPINNER_FRAMES[frame % len(SPINNER_FRAMES)]


def render(state: AppState) -> Text:
    """Build one frame of the dashboard from `state`."""
    out = Text()
    out.append(TITLE, TITLE_STYLE)
    out.append("\n")
    if state.filter_text:
        out.append(f"Filter: {state.filter_text}\n", DESC_STYLE)
    out.append("\n")

    visible = state.visible_units()
    if not visible:
        out.append("  No units match the filter.\n", DESC_STYLE)
    selected = state.selected_unit()
    for unit in visible:
        is_sel = unit == selected
        out.append("> " if is_sel else "  ", SELECTED_STYLE if is_sel else None)
        out.append(unit.name, SELECTED_STYLE if is_sel else None)
        out.append("\n")
        desc = unit.description
        unit_state = state.unit_states.get(unit.name)
        if unit_state is not None:
            desc = f"{desc} | {unit_state.summary()}"
        out.append(f"  {desc}\n", DESC_STYLE)

    out.append("\n")
    if state.loading:
        out.append(f"{spinner_glyph(state.spinner_frame)} {state.status}")
    else:
        out.append(state.status, STATUS_STYLE)

    if state.last_output:
        out.append("\n\n")
        out.append(trim_lines(state.last_output, OUTPUT_WINDOW), OUTPUT_STYLE)

    out.append(f"\n\n{HELP_LINE}\n")
    return out
