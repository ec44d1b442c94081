import os
import json
import logging
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

APP_NAME = "outfit-tracker"

# XDG Paths - Explicit XDG resolution so ~/.config/ is used even on macOS
CONFIG_DIR = Path(os.getenv("XDG_CONFIG_HOME", Path.home() / ".config")) / APP_NAME
DATA_DIR = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share")) / APP_NAME
SETTINGS_FILE = CONFIG_DIR / "settings.json"

# Macro cache expiry window (seconds)
DEFAULT_CACHE_TTL = 5 * 60

_DEFAULT_AUTO_OUTFIT_PROMPT = (
    "After each character response, analyze the conversation to identify any outfit "
    "changes (items worn, removed, or changed). Provide updates in the format: "
    '"/outfit-wear slotName item", "/outfit-remove slotName", or '
    '"/outfit-change slotName newItem". Only output the commands, no additional text.'
)


def _ensure_dirs() -> None:
    """Create config and data directories (idempotent)."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    DATA_DIR.mkdir(parents=True, exist_ok=True)


class OutfitSettings(BaseModel):
    """Persisted feature toggles and default-preset pointers.

    Lives in the outfit document under "settings" with camelCase keys, so
    documents written by older versions load unchanged. Unknown keys (panel
    colours and the like) are carried through untouched.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="allow",
    )

    auto_open_bot: bool = Field(default=True)
    auto_open_user: bool = Field(default=False)
    position: str = Field(default="right")
    enable_sys_messages: bool = Field(default=True)
    auto_outfit_system: bool = Field(default=False)
    debug_mode: bool = Field(default=False)
    auto_outfit_prompt: str = Field(default=_DEFAULT_AUTO_OUTFIT_PROMPT)
    auto_outfit_connection_profile: Optional[str] = Field(default=None)

    # Legacy tier of the default-preset pointer (the embedded tier lives on the character)
    default_bot_presets: dict[str, dict[str, Optional[str]]] = Field(default_factory=dict)
    default_user_presets: dict[str, Optional[str]] = Field(default_factory=dict)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


def load_outfit_settings(raw: dict | None) -> OutfitSettings:
    """Build OutfitSettings from a stored mapping.

    Keys that fail validation fall back to their defaults one by one; every
    other stored value, the default-preset pointers included, is kept.
    """
    if not isinstance(raw, dict):
        return OutfitSettings()
    try:
        return OutfitSettings.model_validate(raw)
    except ValidationError as e:
        invalid = {str(err["loc"][0]) for err in e.errors() if err["loc"]}

    fields = OutfitSettings.model_fields
    invalid |= {name for name, info in fields.items() if info.alias in invalid}
    invalid |= {fields[name].alias for name in list(invalid) if name in fields}
    kept = {k: v for k, v in raw.items() if k not in invalid}
    logging.getLogger(__name__).warning(
        f"Invalid stored settings {sorted(k for k in raw if k in invalid)}. Using defaults for those keys."
    )
    try:
        return OutfitSettings.model_validate(kept)
    except ValidationError as e:
        logging.getLogger(__name__).warning(f"Invalid stored settings ({e}). Using defaults.")
        return OutfitSettings()


class Settings(BaseModel):
    # Storage
    data_file: str = Field(default=str(DATA_DIR / "outfits.json"))

    # Display
    theme: str = Field(default="light")
    log_level: str = Field(default="WARNING")

    # Macro resolution
    macro_cache_ttl_seconds: int = Field(default=DEFAULT_CACHE_TTL, ge=1)

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"log_level must be a logging level name, got: {v}")
        return level

    @model_validator(mode='before')
    @classmethod
    def fill_from_env(cls, data: dict) -> dict:
        """Env vars override all file-based values (highest precedence layer)."""
        env_map = {
            "data_file": "OUTFIT_TRACKER_DATA_FILE",
            "theme": "OUTFIT_TRACKER_THEME",
            "log_level": "OUTFIT_TRACKER_LOG_LEVEL",
            "macro_cache_ttl_seconds": "OUTFIT_TRACKER_CACHE_TTL",
        }

        for field, env_var in env_map.items():
            val = os.getenv(env_var)
            if val:
                data[field] = val
        return data


def find_project_config() -> Path | None:
    """Return .outfit-tracker/settings.json in cwd if it exists, else None."""
    candidate = Path.cwd() / ".outfit-tracker" / "settings.json"
    return candidate if candidate.is_file() else None


def load_config() -> Settings:
    data: dict = {}

    # Layer 1: User config (~/.config/outfit-tracker/settings.json)
    if SETTINGS_FILE.exists():
        with open(SETTINGS_FILE, "r") as f:
            try:
                data = json.load(f)
            except Exception as e:
                print(f"Error loading settings.json: {e}. Using defaults.")

    # Layer 2: Project config (<cwd>/.outfit-tracker/settings.json), shallow merge
    project_config = find_project_config()
    if project_config is not None:
        with open(project_config, "r") as f:
            try:
                data |= json.load(f)
            except Exception as e:
                print(f"Error loading project config {project_config}: {e}. Skipping.")

    # Layer 3: Env vars (handled by fill_from_env model_validator)
    return Settings.model_validate(data)


# Lazy settings singleton: directories created on first access, not at import time.
_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the global Settings instance, creating it on first call."""
    global _settings
    if _settings is None:
        _ensure_dirs()
        _settings = load_config()
    return _settings


def __getattr__(name: str):
    """Lazy module attribute so ``from outfit_tracker.config import settings`` works without import-time side effects."""
    if name == "settings":
        return get_settings()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
