"""Host application boundary.

The tracker runs inside a chat host that owns characters and conversations.
Everything it needs from that host goes through one injected HostContext;
InMemoryHost is the adapter used by the CLI and the tests, fed from a
transcript file.

Transcript format (JSON or YAML):

    characters:
      - name: Alice
        extensions: {character_id: "...", outfit-tracker: {...}}
    current: Alice
    messages:
      - {name: Alice, text: "Hello!", is_user: false, is_system: false}
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    name: str
    text: str
    is_user: bool = False
    is_system: bool = False


@dataclass
class Character:
    name: str
    extensions: dict[str, Any] = field(default_factory=dict)


class HostContext(Protocol):
    def characters(self) -> list[Character]: ...

    def current_character(self) -> Character | None: ...

    def messages(self) -> list[ChatMessage]: ...

    def write_extension_field(self, character: Character, key: str, value: Any) -> bool: ...


class MacroRegistry(Protocol):
    def register_macro(self, name: str, handler: Callable[[], str]) -> None: ...

    def unregister_macro(self, name: str) -> None: ...


class InMemoryHost:
    """HostContext + MacroRegistry over plain Python objects."""

    def __init__(
        self,
        characters: list[Character] | None = None,
        messages: list[ChatMessage] | None = None,
        current: str | None = None,
    ):
        self._characters = list(characters or [])
        self._messages = list(messages or [])
        self._current = current
        self.macros: dict[str, Callable[[], str]] = {}
        self.dirty = False

    def characters(self) -> list[Character]:
        return list(self._characters)

    def current_character(self) -> Character | None:
        if self._current is None:
            return None
        for character in self._characters:
            if character.name == self._current:
                return character
        return None

    def select_character(self, name: str | None) -> None:
        self._current = name

    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def add_message(self, message: ChatMessage) -> None:
        self._messages.append(message)

    def replace_message(self, index: int, text: str) -> None:
        self._messages[index].text = text

    def clear_messages(self) -> None:
        self._messages.clear()

    def write_extension_field(self, character: Character, key: str, value: Any) -> bool:
        if character not in self._characters:
            logger.warning(f"write_extension_field: unknown character {character.name!r}")
            return False
        character.extensions[key] = value
        self.dirty = True
        return True

    def register_macro(self, name: str, handler: Callable[[], str]) -> None:
        self.macros[name] = handler

    def unregister_macro(self, name: str) -> None:
        self.macros.pop(name, None)

    def to_transcript(self) -> dict[str, Any]:
        return {
            "characters": [{"name": c.name, "extensions": c.extensions} for c in self._characters],
            "current": self._current,
            "messages": [
                {"name": m.name, "text": m.text, "is_user": m.is_user, "is_system": m.is_system}
                for m in self._messages
            ],
        }


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in (".yaml", ".yml")


def load_transcript(path: str | Path) -> InMemoryHost:
    """Build an InMemoryHost from a JSON or YAML transcript file."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) if _is_yaml(path) else json.load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Transcript {path} must contain a mapping, got {type(raw).__name__}")

    characters = []
    for entry in raw.get("characters") or []:
        if isinstance(entry, str):
            entry = {"name": entry}
        characters.append(Character(name=str(entry["name"]), extensions=dict(entry.get("extensions") or {})))

    messages = [
        ChatMessage(
            name=str(m.get("name", "")),
            text=str(m.get("text", "")),
            is_user=bool(m.get("is_user", False)),
            is_system=bool(m.get("is_system", False)),
        )
        for m in raw.get("messages") or []
    ]

    current = raw.get("current")
    if current is None and characters:
        current = characters[0].name
    return InMemoryHost(characters=characters, messages=messages, current=current)


def save_transcript(host: InMemoryHost, path: str | Path) -> None:
    path = Path(path)
    data = host.to_transcript()
    with open(path, "w", encoding="utf-8") as f:
        if _is_yaml(path):
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
        else:
            json.dump(data, f, indent=2, ensure_ascii=False)
    host.dirty = False
