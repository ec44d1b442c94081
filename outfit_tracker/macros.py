"""Outfit macros: {{char_headwear}}, {{user_topwear}}, {{Alice_footwear}}, ...

MacroResolver turns a (type, slot) reference into the value currently stored
for the active character/instance, with a short-lived cache in front of the
store. Two rules keep the cache honest:

- the "None" sentinel is never cached, so a lookup made before state has
  loaded cannot mask the real value that arrives a moment later;
- every store mutation clears the whole cache.

Lookups are refused (sentinel, no cache write) until the system is ready:
both outfit managers attached, a current instance id, and at least one
character known to the host.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING

from outfit_tracker._normalize import normalize
from outfit_tracker.characters import character_id_of, find_character_by_name
from outfit_tracker.config import DEFAULT_CACHE_TTL
from outfit_tracker.host import HostContext, MacroRegistry
from outfit_tracker.identity import first_character_message, instance_id_from_text
from outfit_tracker.slots import ACCESSORY_SLOTS, ALL_SLOTS, CLOTHING_SLOTS, NONE, format_slot_name
from outfit_tracker.store import OutfitStore

if TYPE_CHECKING:
    from outfit_tracker.managers import OutfitManager

logger = logging.getLogger(__name__)

CHARACTER_TYPES = ("char", "bot")
USER_TYPE = "user"
_RESERVED_TYPES = (*CHARACTER_TYPES, USER_TYPE)


@dataclass
class MacroCacheEntry:
    value: str
    timestamp_ms: int


@dataclass(frozen=True)
class MacroMatch:
    full_match: str
    macro_type: str
    slot: str
    start: int

    @property
    def explicit_name(self) -> str | None:
        return None if self.macro_type in _RESERVED_TYPES else self.macro_type


def classify_macro(content: str) -> tuple[str, str] | None:
    """Split macro content into (type, slot), or None if it names no slot.

    "headwear" -> ("char", "headwear"); "user_topwear" -> ("user", "topwear");
    "Mary_Jane_ears-accessory" -> ("Mary_Jane", "ears-accessory").
    """
    parts = content.split("_")
    if len(parts) == 1:
        return ("char", content) if content in ALL_SLOTS else None
    for i in range(1, len(parts)):
        suffix = "_".join(parts[i:])
        if suffix in ALL_SLOTS:
            return "_".join(parts[:i]), suffix
    return None


def extract_macros(text: str | None) -> list[MacroMatch]:
    """Every {{...}} span in text that names a slot, in order of appearance."""
    if not text:
        return []
    found: list[MacroMatch] = []
    index = 0
    while True:
        start = text.find("{{", index)
        if start == -1:
            break
        end = text.find("}}", start)
        if end == -1:
            break
        # "{{ {{char_headwear}}": the span opens at the innermost "{{"
        start = text.rfind("{{", start, end)
        content = text[start + 2:end]
        classified = classify_macro(content)
        if classified:
            found.append(MacroMatch(f"{{{{{content}}}}}", classified[0], classified[1], start))
        index = end + 2
    return found


class MacroResolver:
    def __init__(
        self,
        store: OutfitStore,
        host: HostContext,
        ttl_seconds: int = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.host = host
        self.ttl_ms = int(ttl_seconds * 1000)
        self.clock = clock
        self.cache: dict[str, MacroCacheEntry] = {}
        self.registered: set[str] = set()
        self._last_sweep_ms = self._now_ms()
        self._unsubscribe = store.subscribe(lambda _state: self.clear_cache())

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def close(self) -> None:
        self._unsubscribe()

    # -- cache --------------------------------------------------------------

    def clear_cache(self) -> None:
        if self.cache:
            logger.debug(f"Clearing {len(self.cache)} macro cache entries")
        self.cache.clear()

    def invalidate_for(self, character_id: str | None, instance_id: str | None) -> None:
        """Drop entries whose key mentions both character_id and instance_id."""
        if not character_id or not instance_id:
            return
        for key in [k for k in self.cache if character_id in k and instance_id in k]:
            del self.cache[key]

    def _sweep_expired(self) -> None:
        now = self._now_ms()
        if now - self._last_sweep_ms <= self.ttl_ms:
            return
        self._last_sweep_ms = now
        for key in [k for k, e in self.cache.items() if now - e.timestamp_ms >= self.ttl_ms]:
            del self.cache[key]

    def _cache_get(self, key: str) -> str | None:
        entry = self.cache.get(key)
        if entry is None or entry.value == NONE:
            return None
        if self._now_ms() - entry.timestamp_ms >= self.ttl_ms:
            return None
        return entry.value

    def _cache_put(self, key: str, value: str) -> None:
        if value != NONE:
            self.cache[key] = MacroCacheEntry(value, self._now_ms())

    # -- context ------------------------------------------------------------

    def is_ready(self) -> bool:
        if self.store.get_manager("bot") is None or self.store.get_manager("user") is None:
            return False
        if not self.store.get_current_instance_id():
            return False
        return bool(self.host.characters())

    def _active_character_id(self) -> str | None:
        bot_manager = self.store.get_manager("bot")
        if bot_manager is not None and getattr(bot_manager, "character_id", None):
            return bot_manager.character_id
        return character_id_of(self.host.current_character())

    def cache_key(self, macro_type: str, slot: str, explicit_name: str | None = None) -> str:
        character_id = self._active_character_id() or "unknown"
        instance_id = self.store.get_current_instance_id() or "unknown"
        return f"{macro_type}_{slot}_{explicit_name or 'null'}_{character_id}_{instance_id}"

    # -- resolution ---------------------------------------------------------

    def resolve_slot(self, macro_type: str, slot: str, explicit_name: str | None = None) -> str:
        """Current value of slot for macro_type, or the "None" sentinel."""
        if slot not in ALL_SLOTS:
            return NONE
        if not self.is_ready():
            logger.debug(f"Macro system not ready, deferring {macro_type}_{slot}")
            return NONE

        self._sweep_expired()
        key = self.cache_key(macro_type, slot, explicit_name)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        instance_id = self.store.get_current_instance_id()
        name = explicit_name or (macro_type if macro_type not in _RESERVED_TYPES else None)

        if macro_type == USER_TYPE and name is None:
            if not self.store.get_prompt_injection_enabled("user", None, instance_id):
                return NONE
            value = self.store.get_user_outfit(instance_id).get(slot) or NONE
        else:
            if name is not None:
                character_id = character_id_of(find_character_by_name(self.host, name))
            else:
                character_id = self._active_character_id()
            if not character_id:
                return NONE
            if not self.store.get_prompt_injection_enabled("bot", character_id, instance_id):
                return NONE
            value = self.store.get_bot_outfit(character_id, instance_id).get(slot) or NONE

        self._cache_put(key, value)
        return value

    def substitute_all(self, text: str | None) -> str | None:
        """Replace slot macros that have real data; the rest stay as written."""
        if not text:
            return text
        result = text
        for match in reversed(extract_macros(text)):
            value = self.resolve_slot(match.macro_type, match.slot, match.explicit_name)
            if value == NONE:
                continue
            result = result[:match.start] + value + result[match.start + len(match.full_match):]
        return result

    # -- pointer macros -----------------------------------------------------

    def instance_id_for_current_context(self) -> str | None:
        """Current instance id, derived from the conversation when the store has none."""
        current = self.store.get_current_instance_id()
        if current:
            return current
        message = first_character_message(self.host.messages())
        if message is None:
            return None
        values = self.store.collect_outfit_values(self._active_character_id())
        return instance_id_from_text(normalize(message.text, values))

    def pointer_value(self, macro_type: str, slot: str) -> str:
        """Value for {{char_<slot>}} / {{user_<slot>}} as registered with the host."""
        instance_id = self.instance_id_for_current_context()
        if not instance_id:
            return NONE
        if macro_type == USER_TYPE:
            return self.store.get_user_outfit(instance_id).get(slot) or NONE
        character_id = self._active_character_id()
        if not character_id:
            return NONE
        return self.store.get_bot_outfit(character_id, instance_id).get(slot) or NONE

    def register_macros(self, registry: MacroRegistry) -> None:
        for slot in ALL_SLOTS:
            for macro_type in ("char", USER_TYPE):
                name = f"{macro_type}_{slot}"
                if name in self.registered:
                    continue
                registry.register_macro(name, partial(self.pointer_value, macro_type, slot))
                self.registered.add(name)

    def deregister_macros(self, registry: MacroRegistry) -> None:
        for name in sorted(self.registered):
            registry.unregister_macro(name)
        self.registered.clear()

    # -- prompt text --------------------------------------------------------

    def build_outfit_prompt(self, bot_manager: "OutfitManager | None", user_manager: "OutfitManager | None") -> str:
        """Outfit summary for prompt injection, written with slot macros."""
        bot_data = bot_manager.get_outfit_data(ALL_SLOTS) if bot_manager else []
        user_data = user_manager.get_outfit_data(ALL_SLOTS) if user_manager else []
        return "".join([
            _format_section("{{char}}", "Outfit", CLOTHING_SLOTS, bot_data, "char"),
            _format_section("{{char}}", "Accessories", ACCESSORY_SLOTS, bot_data, "char"),
            _format_section("{{user}}", "Outfit", CLOTHING_SLOTS, user_data, "user"),
            _format_section("{{user}}", "Accessories", ACCESSORY_SLOTS, user_data, "user"),
        ])


def _format_section(entity: str, title: str, slots: list[str], outfit_data: list[dict], prefix: str) -> str:
    worn = {d["name"]: d["value"] for d in outfit_data if d["name"] in slots and d["value"] not in (NONE, "")}
    if not worn:
        return ""
    lines = [f"\n**{entity}'s Current {title}**\n"]
    for slot in slots:
        if slot in worn:
            lines.append(f"**{format_slot_name(slot)}:** {{{{{prefix}_{slot}}}}}\n")
    return "".join(lines)
