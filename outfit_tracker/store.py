"""Outfit state store.

One mutable container per process, constructed explicitly and handed to
every component that reads or writes outfit state. Mutations notify
subscribers synchronously, in registration order, after the change is made.

Layout of the durable part:

    bot_instances[character_id][instance_id] = {"bot": {slot: value}, "user": {}, "promptInjectionEnabled"?: bool}
    user_instances[instance_id]              = {slot: value, "promptInjectionEnabled"?: bool}
    presets["bot"]["<character_id>_<instance_id>"][name] = {slot: value}
    presets["user"][instance_id or "default"][name]      = {slot: value}

Slot values are stored with the "None" sentinel; callers may pass None.
"""

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any, Literal

from outfit_tracker._errors import RESERVED_PRESET_NAME
from outfit_tracker.config import OutfitSettings, load_outfit_settings
from outfit_tracker.events import EventBus, OutfitEvent
from outfit_tracker.slots import ALL_SLOTS, NONE, to_sentinel

if TYPE_CHECKING:
    from outfit_tracker.persistence import DataManager

logger = logging.getLogger(__name__)

OutfitKind = Literal["bot", "user"]

PROMPT_INJECTION_KEY = "promptInjectionEnabled"
DEFAULT_USER_PRESET_KEY = "default"


def _empty_presets() -> dict[str, dict]:
    return {"bot": {}, "user": {}}


@dataclass
class StoreState:
    """Everything the store holds except listeners and attached managers."""

    bot_instances: dict[str, dict[str, dict]] = field(default_factory=dict)
    user_instances: dict[str, dict] = field(default_factory=dict)
    presets: dict[str, dict] = field(default_factory=_empty_presets)
    settings: OutfitSettings = field(default_factory=OutfitSettings)
    current_character_id: str | None = None
    current_chat_id: str | None = None
    current_instance_id: str | None = None


StoreListener = Callable[[StoreState], None]


def reconcile_slots(slot_values: dict[str, str | None] | None) -> dict[str, str]:
    """Every known slot gets an explicit entry; unknown keys are kept."""
    values = dict(slot_values or {})
    reconciled = {slot: to_sentinel(values.pop(slot, None)) for slot in ALL_SLOTS}
    for key, value in values.items():
        if key != PROMPT_INJECTION_KEY:
            reconciled[key] = to_sentinel(value)
    return reconciled


def bot_preset_key(character_id: str | None, instance_id: str | None) -> str:
    if not character_id:
        raise ValueError("Character ID is required for generating bot preset key")
    if not instance_id:
        raise ValueError("Instance ID is required for generating bot preset key")
    return f"{character_id}_{instance_id}"


class OutfitStore:
    def __init__(self, bus: EventBus | None = None):
        self.bus = bus or EventBus()
        self.state = StoreState()
        self.data_manager: "DataManager | None" = None
        self._listeners: list[StoreListener] = []
        self._managers: dict[str, Any] = {"bot": None, "user": None}

    # -- subscription -------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register listener; returns the matching unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify_listeners(self) -> None:
        # Snapshot: a listener may subscribe, unsubscribe or mutate the store
        listeners = list(self._listeners)
        if not listeners:
            return
        snapshot = self.get_state()
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Error in store listener: {e}", exc_info=True)

    def get_state(self) -> StoreState:
        """Deep, independent copy of the current state."""
        return copy.deepcopy(self.state)

    def update_state(self, **changes: Any) -> None:
        known = {f.name for f in fields(StoreState)}
        unknown = set(changes) - known
        if unknown:
            raise AttributeError(f"Unknown store fields: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            setattr(self.state, name, value)
        self.notify_listeners()

    # -- outfit records -----------------------------------------------------

    def _ensure_bot_record(self, character_id: str, instance_id: str) -> dict:
        instances = self.state.bot_instances.setdefault(character_id, {})
        record = instances.get(instance_id)
        if record is None:
            record = {"bot": reconcile_slots(None), "user": {}}
            instances[instance_id] = record
            self.bus.emit(OutfitEvent.INSTANCE_CREATED, {
                "instance_id": instance_id,
                "instance_type": "bot",
                "character_id": character_id,
            })
        return record

    def _ensure_user_record(self, instance_id: str) -> dict:
        record = self.state.user_instances.get(instance_id)
        if record is None:
            record = reconcile_slots(None)
            self.state.user_instances[instance_id] = record
            self.bus.emit(OutfitEvent.INSTANCE_CREATED, {
                "instance_id": instance_id,
                "instance_type": "user",
                "character_id": "user",
            })
        return record

    def get_bot_outfit(self, character_id: str, instance_id: str) -> dict[str, str]:
        record = self.state.bot_instances.get(character_id, {}).get(instance_id)
        if not record:
            return {}
        return dict(record.get("bot") or {})

    def set_bot_outfit(self, character_id: str, instance_id: str, slot_values: dict[str, str | None]) -> None:
        """Replace the slot map of a bot record, creating the record if needed."""
        record = self._ensure_bot_record(character_id, instance_id)
        record["bot"] = reconcile_slots(slot_values)
        self.notify_listeners()

    def get_user_outfit(self, instance_id: str) -> dict[str, str]:
        record = self.state.user_instances.get(instance_id)
        if not record:
            return {}
        return {k: v for k, v in record.items() if k != PROMPT_INJECTION_KEY}

    def set_user_outfit(self, instance_id: str, slot_values: dict[str, str | None]) -> None:
        record = self._ensure_user_record(instance_id)
        flag = record.get(PROMPT_INJECTION_KEY)
        record.clear()
        record.update(reconcile_slots(slot_values))
        if flag is not None:
            record[PROMPT_INJECTION_KEY] = flag
        self.notify_listeners()

    # -- presets ------------------------------------------------------------

    def _preset_group_key(self, kind: OutfitKind, character_id: str | None, instance_id: str | None) -> str | None:
        if kind == "bot":
            if not character_id or not instance_id:
                logger.warning(
                    f"Bot preset operation with invalid ids: character_id={character_id!r}, instance_id={instance_id!r}"
                )
                return None
            return bot_preset_key(character_id, instance_id)
        return instance_id or DEFAULT_USER_PRESET_KEY

    def get_presets(self, character_id: str | None, instance_id: str | None) -> dict[str, dict]:
        """Both preset groups visible from a (character, instance) pair."""
        user_key = instance_id or DEFAULT_USER_PRESET_KEY
        bot: dict = {}
        if character_id and instance_id:
            bot = self.state.presets["bot"].get(bot_preset_key(character_id, instance_id), {})
        else:
            logger.warning(f"get_presets called with invalid ids: character_id={character_id!r}, instance_id={instance_id!r}")
        return {
            "bot": copy.deepcopy(bot),
            "user": copy.deepcopy(self.state.presets["user"].get(user_key, {})),
        }

    def save_preset(
        self,
        character_id: str | None,
        instance_id: str | None,
        name: str,
        slot_values: dict[str, str | None],
        kind: OutfitKind = "bot",
    ) -> bool:
        """Store a named snapshot. Returns False when rejected."""
        if not name or not name.strip():
            logger.warning("save_preset called without a preset name")
            return False
        if name.strip().lower() == RESERVED_PRESET_NAME:
            logger.warning(f'Refusing to save a preset named "{RESERVED_PRESET_NAME}"')
            return False
        key = self._preset_group_key(kind, character_id, instance_id)
        if key is None:
            return False
        group = self.state.presets[kind].setdefault(key, {})
        group[name] = {slot: to_sentinel(value) for slot, value in slot_values.items()}
        self.notify_listeners()
        return True

    def delete_preset(self, character_id: str | None, instance_id: str | None, name: str, kind: OutfitKind = "bot") -> bool:
        key = self._preset_group_key(kind, character_id, instance_id)
        if key is None:
            return False
        groups = self.state.presets[kind]
        if name not in groups.get(key, {}):
            return False
        del groups[key][name]
        if not groups[key]:
            del groups[key]
        self.notify_listeners()
        return True

    def delete_all_presets_for_character(
        self, character_id: str | None, instance_id: str | None, kind: OutfitKind = "bot"
    ) -> bool:
        """Drop the whole preset group of an instance. Returns False when there was none."""
        key = self._preset_group_key(kind, character_id, instance_id)
        if key is None or key not in self.state.presets[kind]:
            return False
        del self.state.presets[kind][key]
        self.notify_listeners()
        return True

    def get_all_presets(self, character_id: str | None, instance_id: str | None, kind: OutfitKind = "bot") -> dict[str, dict]:
        key = self._preset_group_key(kind, character_id, instance_id)
        if key is None:
            return {}
        return copy.deepcopy(self.state.presets[kind].get(key, {}))

    # -- default-preset pointer (legacy tier, inside settings) ---------------

    def get_default_preset_name(self, kind: OutfitKind, character_id: str | None, instance_id: str | None) -> str | None:
        settings = self.state.settings
        if kind == "bot":
            if not character_id or not instance_id:
                return None
            return settings.default_bot_presets.get(character_id, {}).get(instance_id)
        return settings.default_user_presets.get(instance_id or DEFAULT_USER_PRESET_KEY)

    def set_default_preset_name(
        self, kind: OutfitKind, character_id: str | None, instance_id: str | None, name: str | None
    ) -> None:
        """Point (or with name=None, un-point) the legacy default tier."""
        settings = self.state.settings
        if kind == "bot":
            if not character_id or not instance_id:
                logger.warning("set_default_preset_name needs both character and instance ids")
                return
            pointers = copy.deepcopy(settings.default_bot_presets)
            per_character = pointers.setdefault(character_id, {})
            if name is None:
                per_character.pop(instance_id, None)
                if not per_character:
                    del pointers[character_id]
            else:
                per_character[instance_id] = name
            self.set_setting("default_bot_presets", pointers)
        else:
            pointers = dict(settings.default_user_presets)
            key = instance_id or DEFAULT_USER_PRESET_KEY
            if name is None:
                pointers.pop(key, None)
            else:
                pointers[key] = name
            self.set_setting("default_user_presets", pointers)

    # -- settings -----------------------------------------------------------

    @staticmethod
    def _setting_field(key: str) -> str:
        """Field name for a snake_case or camelCase settings key."""
        if key in OutfitSettings.model_fields:
            return key
        for name, info in OutfitSettings.model_fields.items():
            if info.alias == key:
                return name
        return key

    def get_setting(self, key: str) -> Any:
        settings = self.state.settings
        name = self._setting_field(key)
        if name in OutfitSettings.model_fields:
            return getattr(settings, name)
        return (settings.model_extra or {}).get(key)

    def set_setting(self, key: str, value: Any) -> None:
        old_value = copy.deepcopy(self.get_setting(key))
        setattr(self.state.settings, self._setting_field(key), value)
        self.notify_listeners()
        self.bus.emit(OutfitEvent.SETTINGS_CHANGED, {
            "key": key,
            "old_value": old_value,
            "new_value": value,
        })

    def replace_settings(self, settings: OutfitSettings | dict | None) -> None:
        if not isinstance(settings, OutfitSettings):
            settings = load_outfit_settings(settings)
        self.state.settings = settings
        self.notify_listeners()

    # -- current pointers ---------------------------------------------------

    def get_current_instance_id(self) -> str | None:
        return self.state.current_instance_id

    def set_current_instance_id(self, instance_id: str | None) -> None:
        # Re-setting the same id is a no-op and does not notify
        if instance_id == self.state.current_instance_id:
            return
        self.state.current_instance_id = instance_id
        self.notify_listeners()

    def get_current_character(self) -> str | None:
        return self.state.current_character_id

    def set_current_character(self, character_id: str | None) -> None:
        self.state.current_character_id = character_id
        self.notify_listeners()

    def get_current_chat(self) -> str | None:
        return self.state.current_chat_id

    def set_current_chat(self, chat_id: str | None) -> None:
        self.state.current_chat_id = chat_id
        self.notify_listeners()

    # -- attached managers --------------------------------------------------

    def set_manager(self, kind: OutfitKind, manager: Any) -> None:
        self._managers[kind] = manager

    def get_manager(self, kind: OutfitKind) -> Any:
        return self._managers.get(kind)

    # -- prompt injection ---------------------------------------------------

    def get_prompt_injection_enabled(self, kind: OutfitKind, character_id: str | None, instance_id: str | None) -> bool:
        if kind == "bot":
            record = self.state.bot_instances.get(character_id or "", {}).get(instance_id or "")
        else:
            record = self.state.user_instances.get(instance_id or "")
        if not record:
            return True
        return record.get(PROMPT_INJECTION_KEY, True) is not False

    def set_prompt_injection_enabled(
        self, kind: OutfitKind, character_id: str | None, instance_id: str | None, enabled: bool
    ) -> None:
        if not instance_id or (kind == "bot" and not character_id):
            logger.warning(f"Cannot set prompt injection for {kind} without ids")
            return
        if kind == "bot":
            record = self._ensure_bot_record(character_id, instance_id)
        else:
            record = self._ensure_user_record(instance_id)
        record[PROMPT_INJECTION_KEY] = bool(enabled)
        self.notify_listeners()

    # -- queries ------------------------------------------------------------

    def collect_outfit_values(self, character_id: str | None) -> list[str]:
        """Every real value the character has worn or saved, for identity normalization."""
        if not character_id:
            return []
        values: set[str] = set()
        for record in self.state.bot_instances.get(character_id, {}).values():
            values.update(v for v in (record.get("bot") or {}).values() if isinstance(v, str))
        prefix = f"{character_id}_"
        for key, group in self.state.presets["bot"].items():
            if key.startswith(prefix):
                for preset in group.values():
                    values.update(v for v in preset.values() if isinstance(v, str))
        values.discard(NONE)
        values.discard("")
        return sorted(values)

    def get_character_instances(self, character_id: str) -> list[str]:
        return list(self.state.bot_instances.get(character_id, {}))

    # -- instance lifecycle -------------------------------------------------

    def cleanup_unused_instances(self, character_id: str, valid_instance_ids) -> None:
        """Drop bot instances of character_id not in valid_instance_ids."""
        instances = self.state.bot_instances.get(character_id) if character_id else None
        if instances is None:
            return
        valid = set(valid_instance_ids or ())
        for instance_id in list(instances):
            if instance_id not in valid:
                del instances[instance_id]
        if not instances:
            del self.state.bot_instances[character_id]
        self.notify_listeners()

    def clear_character_outfits(self, character_id: str) -> None:
        self.state.bot_instances.pop(character_id, None)
        prefix = f"{character_id}_"
        bot_presets = self.state.presets["bot"]
        for key in [k for k in bot_presets if k.startswith(prefix)]:
            del bot_presets[key]
        self.notify_listeners()

    def delete_instance(self, instance_id: str, kind: OutfitKind, character_id: str | None = None) -> bool:
        deleted = False
        if kind == "bot" and character_id:
            instances = self.state.bot_instances.get(character_id, {})
            if instance_id in instances:
                del instances[instance_id]
                if not instances:
                    del self.state.bot_instances[character_id]
                deleted = True
        elif kind == "user" and instance_id in self.state.user_instances:
            del self.state.user_instances[instance_id]
            character_id = "user"
            deleted = True
        if deleted:
            self.bus.emit(OutfitEvent.INSTANCE_DELETED, {
                "instance_id": instance_id,
                "instance_type": kind,
                "character_id": character_id,
            })
        self.notify_listeners()
        return deleted

    def wipe_all_outfit_data(self) -> None:
        """Clear instances and presets in one step; listeners are notified once."""
        self.state.bot_instances = {}
        self.state.user_instances = {}
        self.state.presets = _empty_presets()
        self.notify_listeners()

    # -- persistence --------------------------------------------------------

    def set_data_manager(self, data_manager: "DataManager") -> None:
        self.data_manager = data_manager

    def save_state(self) -> None:
        if self.data_manager is None:
            return
        self.data_manager.save_outfit_data({
            "botInstances": copy.deepcopy(self.state.bot_instances),
            "userInstances": copy.deepcopy(self.state.user_instances),
            "presets": copy.deepcopy(self.state.presets),
        })
        self.data_manager.save_settings(self.state.settings.to_document())

    def load_state(self) -> None:
        if self.data_manager is None:
            return
        data = self.data_manager.load_outfit_data()
        presets = _empty_presets()
        presets.update({k: v for k, v in (data.get("presets") or {}).items() if isinstance(v, dict)})
        self.state.bot_instances = copy.deepcopy(data.get("botInstances") or {})
        self.state.user_instances = copy.deepcopy(data.get("userInstances") or {})
        self.state.presets = copy.deepcopy(presets)
        self.state.settings = load_outfit_settings(self.data_manager.load_settings())
        self.notify_listeners()
        self.bus.emit(OutfitEvent.OUTFIT_DATA_LOADED)
