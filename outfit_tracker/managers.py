"""Bot and user outfit managers.

A manager holds the working copy of one side's outfit (the active
character's, or the user persona's) for the current instance, and owns
every slot write for that side. Values are ``str | None`` here; the store
keeps the "None" sentinel.

User-facing results are plain strings: success messages are only produced
when system messages are enabled, failures always come back prefixed with
"[Outfit System]".
"""

import logging
from typing import Any, ClassVar

from outfit_tracker._errors import (
    EMBEDDED_DEFAULT_MARKER,
    RESERVED_PRESET_NAME,
    OutfitErrorKind,
    outfit_error,
)
from outfit_tracker.characters import (
    find_character_by_id,
    get_character_default_outfit,
    set_character_default_outfit,
)
from outfit_tracker.events import EventBus, OutfitEvent
from outfit_tracker.host import HostContext
from outfit_tracker.slots import ALL_SLOTS, from_sentinel, to_sentinel
from outfit_tracker.store import DEFAULT_USER_PRESET_KEY, OutfitKind, OutfitStore

logger = logging.getLogger(__name__)

MAX_VALUE_LENGTH = 1000


class OutfitManager:
    kind: ClassVar[OutfitKind]

    def __init__(
        self,
        store: OutfitStore,
        bus: EventBus | None = None,
        host: HostContext | None = None,
        slots: list[str] | None = None,
    ):
        self.store = store
        self.bus = bus or store.bus
        self.host = host
        self.slots = list(slots or ALL_SLOTS)
        self.character = "Unknown"
        self.character_id: str | None = None
        self.instance_id: str | None = None
        self.current_values: dict[str, str | None] = {slot: None for slot in self.slots}

    # -- hooks --------------------------------------------------------------

    @property
    def subject(self) -> str:
        """Who the messages talk about."""
        return self.character

    @property
    def owner(self) -> str:
        return self.character

    @property
    def was(self) -> str:
        return "was"

    def has_target(self, instance_id: str | None = None) -> bool:
        raise NotImplementedError

    def _read_record(self) -> dict[str, str]:
        raise NotImplementedError

    def _write_record(self, values: dict[str, str]) -> None:
        raise NotImplementedError

    def _preset_owner(self) -> str | None:
        raise NotImplementedError

    # -- identity -----------------------------------------------------------

    def set_character(self, name: str | None, character_id: str | None = None) -> None:
        if not name:
            logger.warning(f"{type(self).__name__}: no character name given, using 'Unknown'")
            name = "Unknown"
        if name == self.character and character_id == self.character_id:
            return
        if character_id != self.character_id:
            # An instance belongs to one character; the caller points us at the new one
            self.instance_id = None
        self.character = name
        self.character_id = character_id
        self.load_outfit()

    def set_outfit_instance_id(self, instance_id: str | None) -> None:
        if instance_id == self.instance_id:
            return
        if self.has_target():
            self.save_outfit()
        self.instance_id = instance_id
        self.load_outfit()

    # -- slot values --------------------------------------------------------

    def load_outfit(self) -> None:
        if not self.has_target():
            logger.debug(f"{type(self).__name__}: nothing to load (character_id={self.character_id}, instance_id={self.instance_id})")
            self.current_values = {slot: None for slot in self.slots}
            return
        record = self._read_record()
        self.current_values = {slot: from_sentinel(record.get(slot)) for slot in self.slots}

    def save_outfit(self) -> None:
        if not self.has_target():
            logger.warning(f"{type(self).__name__}: cannot save outfit without a target instance")
            return
        self._write_record({slot: to_sentinel(self.current_values.get(slot)) for slot in self.slots})
        self.store.save_state()

    def get_current_outfit(self) -> dict[str, str | None]:
        return dict(self.current_values)

    def get_outfit_data(self, slots: list[str] | None = None) -> list[dict[str, str]]:
        return [
            {"name": slot, "value": to_sentinel(self.current_values.get(slot))}
            for slot in (slots or self.slots)
            if slot in self.slots
        ]

    def set_outfit_item(self, slot: str, value: str | None) -> str | None:
        """Put value on slot (None or "" takes it off). Returns a narration, or None for an unknown slot."""
        if slot not in self.slots:
            logger.error(f"{type(self).__name__}: invalid slot {slot!r}")
            return None
        value = from_sentinel(value if value is None else str(value))
        if value is not None and len(value) > MAX_VALUE_LENGTH:
            logger.warning(f"Value truncated to {MAX_VALUE_LENGTH} characters for slot {slot}")
            value = value[:MAX_VALUE_LENGTH]

        previous = self.current_values.get(slot)
        self.current_values[slot] = value

        if self.has_target():
            self.save_outfit()
            self.bus.emit(OutfitEvent.OUTFIT_CHANGED, {
                "character_id": self.character_id,
                "instance_id": self.instance_id,
                "slot": slot,
                "previous_value": previous,
                "new_value": value,
                "character_name": self.character,
                "manager_type": self.kind,
            })

        if previous is None and value is not None:
            return f"{self.subject} put on {value}."
        if value is None:
            return f"{self.subject} removed {to_sentinel(previous)}."
        return f"{self.subject} changed from {previous} to {value}."

    def remove_outfit_item(self, slot: str) -> str | None:
        return self.set_outfit_item(slot, None)

    def _apply_outfit(self, outfit: dict[str, str], clear_missing: bool) -> bool:
        changed = False
        for slot in self.slots:
            if slot not in outfit and not clear_missing:
                continue
            target = from_sentinel(outfit.get(slot))
            if self.current_values.get(slot) != target:
                self.set_outfit_item(slot, target)
                changed = True
        return changed

    # -- messages -----------------------------------------------------------

    def _sys_messages(self) -> bool:
        return bool(self.store.get_setting("enable_sys_messages"))

    def _ok(self, message: str) -> str:
        return message if self._sys_messages() else ""

    def _payload(self, instance_id: str, **extra: Any) -> dict[str, Any]:
        return {
            "character_id": self.character_id if self.kind == "bot" else "user",
            "instance_id": instance_id,
            "character_name": self.character,
            "manager_type": self.kind,
            **extra,
        }

    # -- presets ------------------------------------------------------------

    def _target_instance(self, instance_id: str | None) -> str:
        return instance_id or self.instance_id or DEFAULT_USER_PRESET_KEY

    def _invalid_ids(self, instance_id: str) -> str:
        return outfit_error(
            OutfitErrorKind.INVALID_ARGUMENT,
            f"Invalid character or instance ID: character_id={self.character_id}, instance_id={instance_id}",
        )

    def _check_name(self, name: str | None) -> str | None:
        if not name or not name.strip():
            return outfit_error(OutfitErrorKind.INVALID_ARGUMENT, "Invalid preset name provided.")
        if name.strip().lower() == RESERVED_PRESET_NAME:
            return outfit_error(OutfitErrorKind.RESERVED_NAME, "Please choose a different preset name.")
        return None

    def _snapshot(self) -> dict[str, str]:
        return {slot: to_sentinel(self.current_values.get(slot)) for slot in self.slots}

    def get_all_presets(self, instance_id: str | None = None) -> dict[str, dict[str, str]]:
        target = self._target_instance(instance_id)
        if not self.has_target(target):
            return {}
        return self.store.get_all_presets(self._preset_owner(), target, self.kind)

    def get_presets(self, instance_id: str | None = None) -> list[str]:
        return list(self.get_all_presets(instance_id))

    def save_preset(self, name: str, instance_id: str | None = None) -> str:
        error = self._check_name(name)
        if error:
            return error
        target = self._target_instance(instance_id)
        if not self.has_target(target):
            return self._invalid_ids(target)
        data = self._snapshot()
        self.store.save_preset(self._preset_owner(), target, name, data, self.kind)
        self.store.save_state()
        self.bus.emit(OutfitEvent.PRESET_SAVED, self._payload(target, preset_name=name, preset_data=data))
        return self._ok(f'Saved "{name}" outfit for {self.owner} (instance: {target}).')

    def overwrite_preset(self, name: str, instance_id: str | None = None) -> str:
        error = self._check_name(name)
        if error:
            return error
        target = self._target_instance(instance_id)
        if name not in self.get_all_presets(target):
            return outfit_error(
                OutfitErrorKind.NOT_FOUND,
                f'Preset "{name}" does not exist for instance {target}. Cannot overwrite.',
            )
        data = self._snapshot()
        self.store.save_preset(self._preset_owner(), target, name, data, self.kind)
        self.store.save_state()
        self.bus.emit(OutfitEvent.PRESET_OVERWRITTEN, self._payload(target, preset_name=name, preset_data=data))
        return self._ok(f'Overwrote "{name}" outfit for {self.owner} (instance: {target}).')

    def load_preset(self, name: str, instance_id: str | None = None) -> str:
        if not name:
            return outfit_error(OutfitErrorKind.INVALID_ARGUMENT, f"Invalid preset name: {name}")
        target = self._target_instance(instance_id)
        if not self.has_target(target):
            return self._invalid_ids(target)
        preset = self.get_all_presets(target).get(name)
        if preset is None:
            return outfit_error(OutfitErrorKind.NOT_FOUND, f'Preset "{name}" not found for instance {target}.')

        if self._apply_outfit(preset, clear_missing=False):
            self.bus.emit(OutfitEvent.PRESET_LOADED, self._payload(target, preset_name=name, changed=True))
            return f'{self.subject} changed into the "{name}" outfit (instance: {target}).'
        return f'{self.subject} {self.was} already wearing the "{name}" outfit (instance: {target}).'

    def delete_preset(self, name: str, instance_id: str | None = None) -> str:
        if not name:
            return outfit_error(OutfitErrorKind.INVALID_ARGUMENT, f"Invalid preset name: {name}")
        target = self._target_instance(instance_id)
        if name not in self.get_all_presets(target):
            return outfit_error(OutfitErrorKind.NOT_FOUND, f'Preset "{name}" not found for instance {target}.')
        self.store.delete_preset(self._preset_owner(), target, name, self.kind)
        if self.store.get_default_preset_name(self.kind, self.character_id, target) == name:
            self.store.set_default_preset_name(self.kind, self.character_id, target, None)
        self.store.save_state()
        self.bus.emit(OutfitEvent.PRESET_DELETED, self._payload(target, preset_name=name))
        return self._ok(f'Deleted "{name}" outfit for instance {target}.')

    # -- default outfit -----------------------------------------------------

    def _embedded_default(self) -> dict[str, str] | None:
        return None

    def _embed_default(self, preset: dict[str, str] | None) -> bool:
        return False

    def get_default_preset_name(self, instance_id: str | None = None) -> str | None:
        target = self._target_instance(instance_id)
        if not self.has_target(target):
            logger.warning(f"{type(self).__name__}.get_default_preset_name: invalid ids")
            return None
        if self._embedded_default():
            return EMBEDDED_DEFAULT_MARKER
        return self.store.get_default_preset_name(self.kind, self.character_id, target)

    def has_default_outfit(self, instance_id: str | None = None) -> bool:
        return self.get_default_preset_name(instance_id) is not None

    def set_preset_as_default(self, name: str, instance_id: str | None = None) -> str:
        target = self._target_instance(instance_id)
        if not self.has_target(target):
            return self._invalid_ids(target)
        preset = self.get_all_presets(target).get(name)
        if preset is None:
            return outfit_error(
                OutfitErrorKind.NOT_FOUND,
                f'Preset "{name}" does not exist for instance {target}. Cannot set as default.',
            )
        embedded = self._embed_default(preset)
        if not embedded:
            self.store.set_default_preset_name(self.kind, self.character_id, target, name)
            self.store.save_state()
        self.bus.emit(OutfitEvent.DEFAULT_OUTFIT_SET, self._payload(target, preset_name=name, embedded=embedded))
        return self._ok(f'Set "{name}" as the default outfit for {self.owner} (instance: {target}).')

    def clear_default_preset(self, instance_id: str | None = None) -> str:
        target = self._target_instance(instance_id)
        if not self.has_target(target):
            return self._invalid_ids(target)
        had_embedded = self._embedded_default() is not None
        if had_embedded:
            self._embed_default(None)
        had_legacy = self.store.get_default_preset_name(self.kind, self.character_id, target) is not None
        if had_legacy:
            self.store.set_default_preset_name(self.kind, self.character_id, target, None)
            self.store.save_state()
        if not (had_embedded or had_legacy):
            return outfit_error(
                OutfitErrorKind.NOT_FOUND, f"No default outfit set for {self.owner} (instance: {target})."
            )
        self.bus.emit(OutfitEvent.DEFAULT_OUTFIT_CLEARED, self._payload(target))
        return self._ok(f"Default outfit cleared for {self.owner} (instance: {target}).")

    def load_default_outfit(self, instance_id: str | None = None) -> str:
        """Wear the default outfit; slots the default leaves out are taken off."""
        target = self._target_instance(instance_id)
        if not self.has_target(target):
            return self._invalid_ids(target)

        outfit = self._embedded_default()
        source = "embedded"
        if outfit is None:
            source = "legacy"
            name = self.store.get_default_preset_name(self.kind, self.character_id, target)
            if not name:
                return outfit_error(
                    OutfitErrorKind.NOT_FOUND, f"No default outfit set for {self.owner} (instance: {target})."
                )
            outfit = self.get_all_presets(target).get(name)
            if outfit is None:
                return outfit_error(
                    OutfitErrorKind.NOT_FOUND,
                    f'Default preset "{name}" not found for {self.owner} (instance: {target}).',
                )

        if self._apply_outfit(outfit, clear_missing=True):
            self.bus.emit(OutfitEvent.DEFAULT_OUTFIT_LOADED, self._payload(target, source=source, changed=True))
            return f"{self.subject} changed into the default outfit (instance: {target})."
        return f"{self.subject} {self.was} already wearing the default outfit (instance: {target})."

    def apply_default_outfit_after_reset(self, instance_id: str | None = None) -> bool:
        target = self._target_instance(instance_id)
        if self.has_default_outfit(target):
            self.load_default_outfit(target)
            return True
        if target != DEFAULT_USER_PRESET_KEY and self.has_default_outfit(DEFAULT_USER_PRESET_KEY):
            self.load_default_outfit(DEFAULT_USER_PRESET_KEY)
            return True
        return False

    # -- prompt injection ---------------------------------------------------

    def get_prompt_injection_enabled(self, instance_id: str | None = None) -> bool:
        target = instance_id or self.instance_id
        if not self.has_target(target):
            return True
        return self.store.get_prompt_injection_enabled(self.kind, self.character_id, target)

    def set_prompt_injection_enabled(self, enabled: bool, instance_id: str | None = None) -> None:
        target = instance_id or self.instance_id
        if not self.has_target(target):
            logger.warning(f"{type(self).__name__}: cannot set prompt injection without a target instance")
            return
        self.store.set_prompt_injection_enabled(self.kind, self.character_id, target, enabled)
        self.store.save_state()


class BotOutfitManager(OutfitManager):
    kind = "bot"

    def has_target(self, instance_id: str | None = None) -> bool:
        return bool(self.character_id and (instance_id or self.instance_id))

    def _read_record(self) -> dict[str, str]:
        return self.store.get_bot_outfit(self.character_id, self.instance_id)

    def _write_record(self, values: dict[str, str]) -> None:
        self.store.set_bot_outfit(self.character_id, self.instance_id, values)

    def _preset_owner(self) -> str | None:
        return self.character_id

    def _embedded_default(self) -> dict[str, str] | None:
        if self.host is None:
            return None
        return get_character_default_outfit(find_character_by_id(self.host, self.character_id))

    def _embed_default(self, preset: dict[str, str] | None) -> bool:
        if self.host is None:
            return False
        character = find_character_by_id(self.host, self.character_id)
        if character is None:
            logger.warning(f"Character {self.character_id} not found; default outfit kept in settings")
            return False
        return set_character_default_outfit(self.host, character, preset)


class UserOutfitManager(OutfitManager):
    kind = "user"

    def __init__(self, store: OutfitStore, bus: EventBus | None = None, host: HostContext | None = None, slots=None):
        super().__init__(store, bus, host, slots)
        self.character = "User"

    @property
    def subject(self) -> str:
        return "You"

    @property
    def owner(self) -> str:
        return "you"

    @property
    def was(self) -> str:
        return "were"

    def has_target(self, instance_id: str | None = None) -> bool:
        return bool(instance_id or self.instance_id)

    def _read_record(self) -> dict[str, str]:
        return self.store.get_user_outfit(self.instance_id)

    def _write_record(self, values: dict[str, str]) -> None:
        self.store.set_user_outfit(self.instance_id, values)

    def _preset_owner(self) -> str | None:
        return None

