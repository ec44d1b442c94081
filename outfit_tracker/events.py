"""Outfit notification bus.

Named events flow from the core (store, managers, persistence) to panels,
loggers and anything else that wants to observe outfit activity. The core
never depends on what subscribers do: a failing callback is logged and the
remaining callbacks still run.
"""

import enum
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict[str, Any]], None]


class OutfitEvent(str, enum.Enum):
    INSTANCE_CREATED       = "outfit-tracker-instance-created"
    INSTANCE_DELETED       = "outfit-tracker-instance-deleted"
    OUTFIT_CHANGED         = "outfit-tracker-outfit-changed"
    PRESET_SAVED           = "outfit-tracker-preset-saved"
    PRESET_LOADED          = "outfit-tracker-preset-loaded"
    PRESET_DELETED         = "outfit-tracker-preset-deleted"
    PRESET_OVERWRITTEN     = "outfit-tracker-preset-overwritten"
    DEFAULT_OUTFIT_SET     = "outfit-tracker-default-outfit-set"
    DEFAULT_OUTFIT_CLEARED = "outfit-tracker-default-outfit-cleared"
    DEFAULT_OUTFIT_LOADED  = "outfit-tracker-default-outfit-loaded"
    SETTINGS_CHANGED       = "outfit-tracker-settings-changed"
    OUTFIT_DATA_LOADED     = "outfit-tracker-data-loaded"
    MIGRATION_COMPLETED    = "outfit-tracker-migration-completed"
    CHAT_CLEARED           = "outfit-tracker-chat-cleared"


class EventBus:
    """Synchronous in-process pub/sub keyed by OutfitEvent."""

    def __init__(self) -> None:
        self._listeners: dict[OutfitEvent, list[EventCallback]] = {}

    def on(self, event: OutfitEvent, callback: EventCallback) -> Callable[[], None]:
        """Register callback; returns a function that unregisters it."""
        self._listeners.setdefault(event, []).append(callback)
        return lambda: self.off(event, callback)

    def off(self, event: OutfitEvent, callback: EventCallback) -> None:
        callbacks = self._listeners.get(event)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: OutfitEvent, payload: dict[str, Any] | None = None) -> None:
        # Snapshot: callbacks may subscribe/unsubscribe or emit while we iterate
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(dict(payload or {}))
            except Exception as e:
                logger.error(f"Error in event listener for {event.value}: {e}", exc_info=True)

    def listener_count(self, event: OutfitEvent) -> int:
        return len(self._listeners.get(event, ()))
