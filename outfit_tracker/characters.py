"""Character ids and the embedded default-outfit tier.

A character's id and its embedded default outfit live in the character's own
extension data, so they travel with the character when it is exported.
"""

import logging
import time
import uuid

from outfit_tracker.host import Character, HostContext
from outfit_tracker.slots import ALL_SLOTS, to_sentinel

logger = logging.getLogger(__name__)

CHARACTER_ID_FIELD = "character_id"
EXTENSION_NAMESPACE = "outfit-tracker"


def character_id_of(character: Character | None) -> str | None:
    """Assigned id of character, or None when it has none yet."""
    if character is None:
        return None
    value = character.extensions.get(CHARACTER_ID_FIELD)
    if isinstance(value, str) and value.strip():
        return value
    return None


def get_or_create_character_id(host: HostContext, character: Character) -> str:
    existing = character_id_of(character)
    if existing:
        return existing
    new_id = str(uuid.uuid4())
    if not host.write_extension_field(character, CHARACTER_ID_FIELD, new_id):
        # Not known to the host; keep it on the object so this session stays consistent
        character.extensions[CHARACTER_ID_FIELD] = new_id
    logger.info(f"Assigned character id {new_id} to {character.name}")
    return new_id


def find_character_by_id(host: HostContext, character_id: str | None) -> Character | None:
    if not character_id:
        return None
    for character in host.characters():
        if character_id_of(character) == character_id:
            return character
    return None


def find_character_by_name(host: HostContext, name: str | None) -> Character | None:
    if not name:
        return None
    for character in host.characters():
        if character.name == name:
            return character
    return None


def get_character_default_outfit(character: Character | None) -> dict[str, str] | None:
    if character is None:
        return None
    data = character.extensions.get(EXTENSION_NAMESPACE)
    if not isinstance(data, dict):
        return None
    outfit = data.get("defaultOutfit")
    return dict(outfit) if isinstance(outfit, dict) and outfit else None


def set_character_default_outfit(
    host: HostContext, character: Character, outfit: dict[str, str | None] | None
) -> bool:
    """Write (or with outfit=None, remove) the embedded default outfit."""
    data = dict(character.extensions.get(EXTENSION_NAMESPACE) or {})
    if outfit is None:
        data.pop("defaultOutfit", None)
    else:
        data["defaultOutfit"] = {slot: to_sentinel(outfit.get(slot)) for slot in ALL_SLOTS}
    data["lastModified"] = int(time.time() * 1000)
    if host.write_extension_field(character, EXTENSION_NAMESPACE, data):
        return True
    logger.warning(f"Could not write embedded default outfit for {character.name}")
    return False
