"""Outfit slot names and the "nothing equipped" sentinel."""

CLOTHING_SLOTS: list[str] = [
    "headwear",
    "topwear",
    "topunderwear",
    "bottomwear",
    "footwear",
    "footunderwear",
]

ACCESSORY_SLOTS: list[str] = [
    "head-accessory",
    "ears-accessory",
    "eyes-accessory",
    "mouth-accessory",
    "neck-accessory",
    "body-accessory",
    "arms-accessory",
    "hands-accessory",
    "waist-accessory",
    "bottom-accessory",
    "legs-accessory",
    "foot-accessory",
]

ALL_SLOTS: list[str] = [*CLOTHING_SLOTS, *ACCESSORY_SLOTS]

# Written to the store, the on-disk document and macro output. Everything
# in between uses a plain None.
NONE = "None"


def to_sentinel(value: str | None) -> str:
    """Serialise an optional slot value for the store / macro text."""
    if value is None or value == "":
        return NONE
    return value


def from_sentinel(value: str | None) -> str | None:
    """Inverse of to_sentinel: sentinel and blanks read back as None."""
    if value is None or value == "" or value == NONE:
        return None
    return value


def format_slot_name(slot: str) -> str:
    """Display form of a slot name: 'head-accessory' -> 'Head accessory'."""
    if not slot:
        return "Unknown"
    return slot[0].upper() + slot[1:].replace("-", " ")
