import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import typer
import yaml
from rich.logging import RichHandler

from outfit_tracker._errors import is_system_message
from outfit_tracker.config import settings
from outfit_tracker.deps import OutfitDeps
from outfit_tracker.display import (
    console,
    display_error,
    display_info,
    display_status,
    render_outfit_table,
    render_presets_table,
    set_theme,
)
from outfit_tracker.events import EventBus, OutfitEvent
from outfit_tracker.host import InMemoryHost, load_transcript, save_transcript
from outfit_tracker.identity import InstanceIdentityResolver
from outfit_tracker.macros import MacroResolver
from outfit_tracker.managers import BotOutfitManager, OutfitManager, UserOutfitManager
from outfit_tracker.persistence import DataManager, JsonFileStorage, MemoryStorage, StorageAdapter
from outfit_tracker.slots import ALL_SLOTS
from outfit_tracker.status import get_status, render_status_table
from outfit_tracker.store import OutfitStore
from outfit_tracker.tracker import OutfitTracker


app = typer.Typer(
    help="Outfit Tracker - per-conversation outfit state for chat characters",
    context_settings={"help_option_names": ["--help", "-h"]},
)

PRESET_ACTIONS = ("list", "save", "load", "delete", "overwrite", "default", "clear-default")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


async def create_deps(host: InMemoryHost, storage: StorageAdapter | None = None) -> OutfitDeps:
    """Wire store, persistence, managers and macros around host."""
    bus = EventBus()
    store = OutfitStore(bus)
    data_manager = DataManager(storage or JsonFileStorage(settings.data_file))
    migrated = await data_manager.initialize()
    store.set_data_manager(data_manager)
    store.load_state()
    if migrated:
        store.save_state()
        bus.emit(OutfitEvent.MIGRATION_COMPLETED, {"version": data_manager.version})

    if store.get_setting("debug_mode"):
        logging.getLogger("outfit_tracker").setLevel(logging.DEBUG)

    bot_manager = BotOutfitManager(store, bus, host)
    user_manager = UserOutfitManager(store, bus, host)
    store.set_manager("bot", bot_manager)
    store.set_manager("user", user_manager)

    macros = MacroResolver(store, host, ttl_seconds=settings.macro_cache_ttl_seconds)
    macros.register_macros(host)

    return OutfitDeps(
        store=store,
        bus=bus,
        host=host,
        data_manager=data_manager,
        macros=macros,
        resolver=InstanceIdentityResolver(),
        bot_manager=bot_manager,
        user_manager=user_manager,
    )


def _load_host(transcript: Path) -> InMemoryHost:
    try:
        return load_transcript(transcript)
    except FileNotFoundError:
        display_error(f"Transcript not found: {transcript}")
    except (ValueError, KeyError, json.JSONDecodeError, yaml.YAMLError) as e:
        display_error(f"Could not read transcript {transcript}: {e}", hint="Expected keys: characters, current, messages")
    raise typer.Exit(code=1)


@asynccontextmanager
async def _session(transcript: Path) -> AsyncIterator[OutfitTracker]:
    """Tracker bound to a transcript; state and new character ids are written back on exit."""
    host = _load_host(transcript)
    deps = await create_deps(host)
    tracker = OutfitTracker(deps)
    await tracker.handle_chat_changed()
    try:
        yield tracker
    finally:
        deps.store.save_state()
        await deps.data_manager.flush()
        if host.dirty:
            save_transcript(host, transcript)


def _manager(tracker: OutfitTracker, user: bool) -> OutfitManager:
    return tracker.deps.user_manager if user else tracker.deps.bot_manager


def _report(message: str | None) -> None:
    if message is None:
        return
    if is_system_message(message):
        display_error(message)
        raise typer.Exit(code=1)
    if message:
        display_status(message)
    else:
        display_info("Done.")


def _check_slot(slot: str) -> None:
    if slot not in ALL_SLOTS:
        display_error(f"Unknown slot: {slot}", hint=f"Known slots: {', '.join(ALL_SLOTS)}")
        raise typer.Exit(code=1)


@app.callback()
def main(
    data_file: str = typer.Option(None, "--data-file", "-d", help="Outfit data file (JSON)"),
    theme: str = typer.Option(None, "--theme", "-t", help="Color theme: dark or light"),
):
    if data_file:
        settings.data_file = data_file
    if theme:
        settings.theme = theme
        set_theme(theme)
    _setup_logging(settings.log_level)


@app.command()
def status():
    """Show data file, schema and store statistics."""

    async def _run() -> None:
        storage = JsonFileStorage(settings.data_file)
        raw = storage.load()
        stored_version = raw.get("version") if isinstance(raw, dict) else None
        deps = await create_deps(InMemoryHost(), MemoryStorage(raw))
        console.print(render_status_table(get_status(deps.store, stored_version)))

    asyncio.run(_run())


@app.command("instance-id")
def instance_id(transcript: Path = typer.Argument(..., help="Transcript file (JSON or YAML)")):
    """Print the instance id derived from the conversation."""

    async def _run() -> None:
        async with _session(transcript) as tracker:
            current = tracker.deps.store.get_current_instance_id()
            if current is None:
                display_info("No character message yet; no instance id.")
                return
            bot = tracker.deps.bot_manager
            display_status(f"{bot.character} ({bot.character_id}) instance {current}")

    asyncio.run(_run())


@app.command()
def show(
    transcript: Path = typer.Argument(..., help="Transcript file (JSON or YAML)"),
    user: bool = typer.Option(False, "--user", "-u", help="Show the user persona instead of the character"),
):
    """Show the current outfit."""

    async def _run() -> None:
        async with _session(transcript) as tracker:
            manager = _manager(tracker, user)
            title = "Your Outfit" if user else f"{manager.character}'s Outfit"
            console.print(render_outfit_table(f"{title} ({manager.instance_id or 'no instance'})", manager.get_current_outfit()))

    asyncio.run(_run())


@app.command()
def wear(
    transcript: Path = typer.Argument(..., help="Transcript file (JSON or YAML)"),
    slot: str = typer.Argument(..., help="Slot name, e.g. headwear"),
    value: str = typer.Argument(..., help="Item to put on"),
    user: bool = typer.Option(False, "--user", "-u", help="Dress the user persona"),
):
    """Put an item on a slot."""
    _check_slot(slot)

    async def _run() -> None:
        async with _session(transcript) as tracker:
            _report(_manager(tracker, user).set_outfit_item(slot, value))

    asyncio.run(_run())


@app.command()
def remove(
    transcript: Path = typer.Argument(..., help="Transcript file (JSON or YAML)"),
    slot: str = typer.Argument(..., help="Slot name, e.g. headwear"),
    user: bool = typer.Option(False, "--user", "-u", help="Undress the user persona"),
):
    """Take off whatever is on a slot."""
    _check_slot(slot)

    async def _run() -> None:
        async with _session(transcript) as tracker:
            _report(_manager(tracker, user).remove_outfit_item(slot))

    asyncio.run(_run())


@app.command()
def preset(
    action: str = typer.Argument(..., help=f"One of: {', '.join(PRESET_ACTIONS)}"),
    transcript: Path = typer.Argument(..., help="Transcript file (JSON or YAML)"),
    name: str = typer.Argument(None, help="Preset name"),
    user: bool = typer.Option(False, "--user", "-u", help="User persona presets"),
):
    """Manage saved outfits."""
    if action not in PRESET_ACTIONS:
        display_error(f"Unknown preset action: {action}", hint=f"Use one of: {', '.join(PRESET_ACTIONS)}")
        raise typer.Exit(code=1)
    if action not in ("list", "clear-default") and not name:
        display_error(f"preset {action} needs a preset name")
        raise typer.Exit(code=1)

    async def _run() -> None:
        async with _session(transcript) as tracker:
            manager = _manager(tracker, user)
            if action == "list":
                presets = manager.get_all_presets()
                if not presets:
                    display_info("No presets saved for this instance.")
                    return
                console.print(render_presets_table("Presets", presets, manager.get_default_preset_name()))
                return
            handlers = {
                "save": manager.save_preset,
                "load": manager.load_preset,
                "delete": manager.delete_preset,
                "overwrite": manager.overwrite_preset,
                "default": manager.set_preset_as_default,
            }
            if action == "clear-default":
                _report(manager.clear_default_preset())
            else:
                _report(handlers[action](name))

    asyncio.run(_run())


@app.command()
def render(
    transcript: Path = typer.Argument(..., help="Transcript file (JSON or YAML)"),
    text: str = typer.Argument(None, help="Text with {{char_<slot>}} / {{user_<slot>}} macros"),
    prompt: bool = typer.Option(False, "--prompt", "-p", help="Render the outfit summary used for prompt injection"),
):
    """Substitute outfit macros in text."""
    if text is None and not prompt:
        display_error("Nothing to render", hint="Pass TEXT or --prompt")
        raise typer.Exit(code=1)

    async def _run() -> None:
        async with _session(transcript) as tracker:
            source = tracker.outfit_prompt() if prompt else text
            console.print(await tracker.render(source), markup=False, highlight=False)

    asyncio.run(_run())


@app.command()
def wipe(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")):
    """Delete every outfit instance and preset."""
    if not yes and not typer.confirm("Delete all outfit instances and presets?"):
        raise typer.Exit(code=1)

    async def _run() -> None:
        deps = await create_deps(InMemoryHost())
        deps.store.wipe_all_outfit_data()
        deps.store.save_state()
        await deps.data_manager.flush()

    asyncio.run(_run())
    display_status("All outfit data wiped.", style="success")


if __name__ == "__main__":
    app()
