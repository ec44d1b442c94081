"""Themed terminal display: console, semantic styles, display helpers."""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from outfit_tracker.config import settings
from outfit_tracker.slots import ACCESSORY_SLOTS, CLOTHING_SLOTS, NONE, format_slot_name

# -- Theme palettes (keyed by theme name) ------------------------------------

_THEMES: dict[str, dict[str, str]] = {
    "dark":  {"status": "yellow",      "info": "cyan", "accent": "bold cyan", "error": "bold red", "success": "green", "warning": "orange3", "hint": "dim", "empty": "dim italic"},
    "light": {"status": "dark_orange", "info": "blue", "accent": "bold blue", "error": "bold red", "success": "green", "warning": "orange3", "hint": "dim", "empty": "dim italic"},
}

# -- Console (single instance, themed) --------------------------------------

console = Console(theme=Theme(_THEMES.get(settings.theme, _THEMES["light"])))

# -- Indicators ------------------------------------------------------------

BULLET  = "▸"
SUCCESS = "✦"
ERROR   = "✖"
INFO    = "◈"


def set_theme(name: str) -> None:
    """Switch the console theme at runtime (e.g. from --theme flag)."""
    console.push_theme(Theme(_THEMES.get(name, _THEMES["light"])))


# -- Display helpers -------------------------------------------------------


def display_status(message: str, style: str | None = None) -> None:
    """Themed bullet + message."""
    s = style or "status"
    console.print(f"[{s}]{BULLET} {escape(message)}[/{s}]")


def display_error(message: str, hint: str | None = None) -> None:
    """Red-bordered panel with optional recovery hint."""
    body = f"[bold red]{ERROR} {escape(message)}[/bold red]"
    if hint:
        body += f"\n[dim]{escape(hint)}[/dim]"
    console.print(Panel(body, border_style="red", title="Error", title_align="left"))


def display_info(message: str) -> None:
    """Themed info message."""
    console.print(f"[info]{INFO} {escape(message)}[/info]")


def render_outfit_table(title: str, outfit: dict[str, str | None]) -> Table:
    """Slot/value table, clothing first then accessories."""
    table = Table(title=title)
    table.add_column("Slot", style="accent")
    table.add_column("Value", style="success")
    for slot in [*CLOTHING_SLOTS, *ACCESSORY_SLOTS]:
        value = outfit.get(slot)
        if value is None or value == NONE:
            table.add_row(format_slot_name(slot), f"[empty]{NONE}[/empty]")
        else:
            table.add_row(format_slot_name(slot), escape(value))
    return table


def render_presets_table(title: str, presets: dict[str, dict[str, str]], default_name: str | None) -> Table:
    table = Table(title=title)
    table.add_column("Preset", style="accent")
    table.add_column("Items", style="info")
    for name, slots in sorted(presets.items()):
        worn = [f"{format_slot_name(s)}: {escape(v)}" for s, v in slots.items() if v and v != NONE]
        marker = f" {SUCCESS}" if name == default_name else ""
        table.add_row(f"{escape(name)}{marker}", ", ".join(worn) or f"[empty]nothing[/empty]")
    return table
