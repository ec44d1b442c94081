"""Data-file / configuration checks and status table rendering."""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path

from rich.table import Table

from outfit_tracker.config import find_project_config, settings
from outfit_tracker.persistence import CURRENT_VERSION, parse_version
from outfit_tracker.store import OutfitStore


_PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def get_version() -> str:
    if not _PYPROJECT.exists():
        return "unknown"
    return tomllib.loads(_PYPROJECT.read_text())["project"]["version"]


@dataclass
class StatusInfo:
    version: str
    data_file: str
    data_size: str  # "1.2 KB" | "missing"
    schema_version: str
    characters: int
    bot_instances: int
    user_instances: int
    presets: int
    cache_ttl_seconds: int
    log_level: str
    project_config: str | None  # path to .outfit-tracker/settings.json or None


def get_status(store: OutfitStore, schema_version: str | None = None) -> StatusInfo:
    """Gather status into a plain dataclass (no display side-effects)."""
    data_path = Path(settings.data_file).expanduser()
    data_size = f"{os.path.getsize(data_path) / 1024:.1f} KB" if data_path.exists() else "missing"

    state = store.state
    presets = sum(len(group) for kind in ("bot", "user") for group in state.presets[kind].values())
    project_config = find_project_config()

    return StatusInfo(
        version=get_version(),
        data_file=str(data_path),
        data_size=data_size,
        schema_version=schema_version or CURRENT_VERSION,
        characters=len(state.bot_instances),
        bot_instances=sum(len(v) for v in state.bot_instances.values()),
        user_instances=len(state.user_instances),
        presets=presets,
        cache_ttl_seconds=settings.macro_cache_ttl_seconds,
        log_level=settings.log_level,
        project_config=str(project_config) if project_config else None,
    )


def render_status_table(info: StatusInfo) -> Table:
    """Build a Rich Table from StatusInfo using semantic styles."""
    table = Table(title=f"Outfit Tracker Status (v{info.version})")
    table.add_column("Component", style="accent")
    table.add_column("Status", style="info")
    table.add_column("Details", style="success")

    stale = parse_version(info.schema_version) < parse_version(CURRENT_VERSION)
    table.add_row("Data File", "Missing" if info.data_size == "missing" else "Active", f"{info.data_file} ({info.data_size})")
    table.add_row("Schema", "Needs migration" if stale else "Current", info.schema_version)
    table.add_row("Characters", str(info.characters), f"{info.bot_instances} bot instances")
    table.add_row("User Instances", str(info.user_instances), "-")
    table.add_row("Presets", str(info.presets), "bot + user")
    table.add_row("Macro Cache", "Active", f"{info.cache_ttl_seconds}s expiry")
    table.add_row("Log Level", info.log_level, "-")
    if info.project_config:
        table.add_row("Project Config", "Active", info.project_config)

    return table
