"""Canonical text for instance identity.

The instance id of a conversation branch is a hash of its first character
message. Before hashing, everything that changes when the outfit changes is
taken out of the text: slot placeholders, the "None" sentinel that a
placeholder may already have been substituted with, and the outfit values
themselves. What is left is the part of the message that identifies the
branch.
"""

import re
from collections.abc import Iterable

from outfit_tracker.slots import ALL_SLOTS, NONE

# {{prefix_suffix}} where the prefix is "char", "user" or a name token (which may
# itself contain underscores) and the suffix is a known slot. ASCII only.
_SLOT_ALTERNATION = "|".join(re.escape(slot) for slot in ALL_SLOTS)
_SLOT_PLACEHOLDER = re.compile(rf"^[A-Za-z0-9_]+_(?:{_SLOT_ALTERNATION})$")
_PLACEHOLDER_SPAN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_EMPTY_PLACEHOLDER = "{{}}"

_SENTINEL_WORD = re.compile(rf"\b{NONE}\b")
_WHITESPACE = re.compile(r"\s+")

# A stripped value must sit between whitespace / these characters (or the text edges)
_BOUNDARY_CHARS = r"\s.,\"'()\[\]"


def strip_slot_placeholders(text: str) -> str:
    """Replace {{char_headwear}}-style placeholders with {{}}; other {{...}} spans stay."""

    def _replace(match: re.Match) -> str:
        if _SLOT_PLACEHOLDER.match(match.group(1)):
            return _EMPTY_PLACEHOLDER
        return match.group(0)

    return _PLACEHOLDER_SPAN.sub(_replace, text)


def strip_outfit_value(text: str, value: str) -> str:
    """Remove every whole, case-insensitive occurrence of value from text."""
    if not value or not value.strip():
        return text
    pattern = re.compile(
        rf"(?<![^{_BOUNDARY_CHARS}]){re.escape(value)}(?![^{_BOUNDARY_CHARS}])",
        re.IGNORECASE,
    )
    return pattern.sub("", text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def normalize(raw_text: str | None, outfit_values: Iterable[str] | None = None) -> str:
    """Produce the canonical string hashed into an instance id.

    Args:
        raw_text: Message text, possibly with placeholders or substituted values.
        outfit_values: Current and historical outfit values of the character;
            each one is removed where it appears as a whole occurrence.

    Returns:
        Whitespace-collapsed text. Pure and deterministic.
    """
    if not raw_text:
        return ""

    text = strip_slot_placeholders(raw_text)
    text = _SENTINEL_WORD.sub("", text)

    # Longest first so "red silk dress" goes before "red"
    for value in sorted(set(outfit_values or ()), key=lambda v: (-len(v), v)):
        text = strip_outfit_value(text, value)

    return collapse_whitespace(text)
