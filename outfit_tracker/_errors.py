"""Shared error constants and helpers for user-facing outfit messages.

Messages follow the format: "[Outfit System] {problem}." Managers classify a
failure first so callers (CLI, command layer) can route on the kind without
parsing text.
"""

import enum


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class OutfitErrorKind(enum.Enum):
    INVALID_ARGUMENT = "invalid_argument"  # missing character/instance/preset name
    NOT_FOUND        = "not_found"         # preset or default outfit does not exist
    RESERVED_NAME    = "reserved_name"     # "default" used as a preset name


# ---------------------------------------------------------------------------
# Constants and helpers
# ---------------------------------------------------------------------------


SYSTEM_PREFIX = "[Outfit System]"

# "default" status is tracked by the default-preset pointer, never by name.
RESERVED_PRESET_NAME = "default"

EMBEDDED_DEFAULT_MARKER = "__embedded_default__"


def system_message(message: str) -> str:
    """Prefix a message the way every user-facing outfit failure is shown."""
    return f"{SYSTEM_PREFIX} {message}"


def outfit_error(kind: OutfitErrorKind, message: str) -> str:
    """Format a classified failure. The kind only changes the wording for reserved names."""
    if kind == OutfitErrorKind.RESERVED_NAME:
        return system_message(f'"{RESERVED_PRESET_NAME}" is reserved. {message}')
    return system_message(message)


def is_system_message(text: str | None) -> bool:
    return bool(text) and text.startswith(SYSTEM_PREFIX)
