"""Versioned outfit document: load, save, migrate.

The document on disk has the shape

    {
      "botInstances":  {characterId: {instanceId: {"bot": {...}, "user": {...}, "promptInjectionEnabled"?}}},
      "userInstances": {instanceId: {...slots, "promptInjectionEnabled"?}},
      "presets":       {"bot": {"<characterId>_<instanceId>": {name: {...}}}, "user": {instanceId: {name: {...}}}},
      "settings":      {...},
      "version":       "1.0.0"
    }

Storage itself is delegated to a StorageAdapter, which may be sync or async.
Loading never fails: a missing or malformed document becomes an empty one.
Saving is best effort: errors are logged and the in-memory state stays
authoritative.
"""

import asyncio
import copy
import inspect
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Protocol

from outfit_tracker.config import OutfitSettings

logger = logging.getLogger(__name__)

CURRENT_VERSION = "1.0.0"

SECTIONS = ("botInstances", "userInstances", "presets", "settings")


def empty_document() -> dict[str, Any]:
    return {
        "botInstances": {},
        "userInstances": {},
        "presets": {"bot": {}, "user": {}},
        "settings": OutfitSettings().to_document(),
        "version": CURRENT_VERSION,
    }


def parse_version(version: Any) -> tuple[int, ...]:
    """'1.0.0' -> (1, 0, 0). Missing or malformed versions sort before everything."""
    if not isinstance(version, str) or not version.strip():
        return ()
    try:
        return tuple(int(part) for part in version.strip().split("."))
    except ValueError:
        return ()


# ---------------------------------------------------------------------------
# Storage adapters
# ---------------------------------------------------------------------------


class StorageAdapter(Protocol):
    def save(self, document: dict) -> None | Awaitable[None]: ...

    def load(self) -> dict | None | Awaitable[dict | None]: ...


class JsonFileStorage:
    """Stores the document as a JSON file, replaced atomically on save."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def load(self) -> dict | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read outfit data from {self.path}: {e}")
            return None

    def save(self, document: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class MemoryStorage:
    """In-process adapter; keeps a deep copy of the last saved document."""

    def __init__(self, document: dict | None = None):
        self.document = copy.deepcopy(document)
        self.save_count = 0

    def load(self) -> dict | None:
        return copy.deepcopy(self.document)

    def save(self, document: dict) -> None:
        self.document = copy.deepcopy(document)
        self.save_count += 1


# ---------------------------------------------------------------------------
# Data manager
# ---------------------------------------------------------------------------


class DataManager:
    def __init__(self, storage: StorageAdapter):
        self.storage = storage
        self.version = CURRENT_VERSION
        self.data: dict[str, Any] | None = None
        self._pending: set[asyncio.Task] = set()

    async def initialize(self) -> bool:
        """Load the stored document (or an empty one) and migrate it.

        Returns:
            True when a migration ran.
        """
        try:
            loaded = self.storage.load()
            if inspect.isawaitable(loaded):
                loaded = await loaded
        except Exception as e:
            logger.warning(f"Loading outfit data failed ({e}); starting empty")
            loaded = None

        if not isinstance(loaded, dict):
            if loaded is not None:
                logger.warning(f"Ignoring malformed outfit document of type {type(loaded).__name__}")
            self.data = empty_document()
        else:
            self.data = self._complete(loaded)
        return self.migrate()

    @staticmethod
    def _complete(document: dict) -> dict:
        """Fill in any missing or mistyped sections with empty defaults."""
        data = copy.deepcopy(document)
        defaults = empty_document()
        for section in ("botInstances", "userInstances"):
            if not isinstance(data.get(section), dict):
                data[section] = defaults[section]
        presets = data.get("presets")
        if not isinstance(presets, dict):
            presets = {}
        for kind in ("bot", "user"):
            if not isinstance(presets.get(kind), dict):
                presets[kind] = {}
        data["presets"] = presets
        if not isinstance(data.get("settings"), dict):
            data["settings"] = defaults["settings"]
        # version is left as found so migrate() can see it
        return data

    def migrate(self) -> bool:
        """Single transition: anything older than CURRENT_VERSION becomes CURRENT_VERSION.

        Presets literally named "default" become explicit default-preset
        pointers in settings. The preset entries themselves are kept.
        """
        if self.data is None:
            return False
        stored = self.data.get("version")
        if parse_version(stored) >= parse_version(self.version):
            return False

        logger.info(f"Migrating outfit data from version {stored} to {self.version}")
        settings = self.data["settings"]
        for pointer_map in ("defaultBotPresets", "defaultUserPresets"):
            if not isinstance(settings.get(pointer_map), dict):
                settings[pointer_map] = {}
        bot_pointers = settings["defaultBotPresets"]
        user_pointers = settings["defaultUserPresets"]

        for key, group in self.data["presets"]["bot"].items():
            if not isinstance(group, dict) or "default" not in group:
                continue
            character_id, sep, instance_id = key.rpartition("_")
            if not sep or not character_id or not instance_id:
                logger.warning(f"Skipping bot preset group with unrecognised key {key!r}")
                continue
            bot_pointers.setdefault(character_id, {})[instance_id] = "default"

        for instance_id, group in self.data["presets"]["user"].items():
            if isinstance(group, dict) and "default" in group:
                user_pointers[instance_id] = "default"

        self.data["version"] = self.version
        return True

    def load(self) -> dict | None:
        return self.data

    def save(self, partial: dict) -> None:
        """Replace the given top-level sections and hand the whole document to storage."""
        if self.data is None:
            logger.warning("save called before initialize; ignoring")
            return
        for key, value in partial.items():
            self.data[key] = copy.deepcopy(value)
        self._write(copy.deepcopy(self.data))

    def _write(self, document: dict) -> None:
        try:
            result = self.storage.save(document)
        except Exception as e:
            logger.error(f"Saving outfit data failed: {e}")
            return
        if not inspect.isawaitable(result):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is None:
            try:
                asyncio.run(self._await_save(result))
            except Exception as e:
                logger.error(f"Saving outfit data failed: {e}")
            return
        task = loop.create_task(self._await_save(result))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _await_save(result: Awaitable) -> None:
        try:
            await result
        except Exception as e:
            logger.error(f"Saving outfit data failed: {e}")

    async def flush(self) -> None:
        """Write the current document and wait for every scheduled save."""
        if self.data is not None:
            self._write(copy.deepcopy(self.data))
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def save_outfit_data(self, outfit_data: dict) -> None:
        self.save({
            "botInstances": outfit_data.get("botInstances") or {},
            "userInstances": outfit_data.get("userInstances") or {},
            "presets": outfit_data.get("presets") or {"bot": {}, "user": {}},
        })

    def load_outfit_data(self) -> dict:
        data = self.data or {}
        return {
            "botInstances": data.get("botInstances") or {},
            "userInstances": data.get("userInstances") or {},
            "presets": data.get("presets") or {"bot": {}, "user": {}},
        }

    def save_settings(self, settings: dict) -> None:
        self.save({"settings": settings})

    def load_settings(self) -> dict:
        data = self.data or {}
        return data.get("settings") or OutfitSettings().to_document()
