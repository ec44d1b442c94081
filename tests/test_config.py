"""Functional tests for configuration precedence, validation and stored settings.

Tests exercise real load_config(), no mocks.
"""

import json

import pytest
from pydantic import ValidationError

from outfit_tracker.config import (
    DEFAULT_CACHE_TTL,
    OutfitSettings,
    Settings,
    find_project_config,
    load_config,
    load_outfit_settings,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("OUTFIT_TRACKER_DATA_FILE", "OUTFIT_TRACKER_THEME", "OUTFIT_TRACKER_LOG_LEVEL", "OUTFIT_TRACKER_CACHE_TTL"):
        monkeypatch.delenv(var, raising=False)


def test_project_config_overrides_user(tmp_path, monkeypatch):
    """Project .outfit-tracker/settings.json overrides user settings for the same key."""
    user_settings = tmp_path / "user" / "settings.json"
    user_settings.parent.mkdir(parents=True)
    user_settings.write_text(json.dumps({"theme": "light", "macro_cache_ttl_seconds": 30}))

    project_dir = tmp_path / "project" / ".outfit-tracker"
    project_dir.mkdir(parents=True)
    (project_dir / "settings.json").write_text(json.dumps({"theme": "dark"}))

    monkeypatch.setattr("outfit_tracker.config.SETTINGS_FILE", user_settings)
    monkeypatch.chdir(tmp_path / "project")

    settings = load_config()
    assert settings.theme == "dark"
    assert settings.macro_cache_ttl_seconds == 30
    assert find_project_config() == project_dir / "settings.json"


def test_env_overrides_project_config(tmp_path, monkeypatch):
    project_dir = tmp_path / ".outfit-tracker"
    project_dir.mkdir()
    (project_dir / "settings.json").write_text(json.dumps({"theme": "dark", "data_file": "/tmp/project.json"}))

    monkeypatch.setattr("outfit_tracker.config.SETTINGS_FILE", tmp_path / "nonexistent.json")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OUTFIT_TRACKER_THEME", "light")
    monkeypatch.setenv("OUTFIT_TRACKER_DATA_FILE", str(tmp_path / "env.json"))
    monkeypatch.setenv("OUTFIT_TRACKER_CACHE_TTL", "60")

    settings = load_config()
    assert settings.theme == "light"
    assert settings.data_file == str(tmp_path / "env.json")
    assert settings.macro_cache_ttl_seconds == 60


def test_defaults_without_any_config(tmp_path, monkeypatch):
    monkeypatch.setattr("outfit_tracker.config.SETTINGS_FILE", tmp_path / "nonexistent.json")
    monkeypatch.chdir(tmp_path)

    settings = load_config()
    assert settings.theme == "light"
    assert settings.log_level == "WARNING"
    assert settings.macro_cache_ttl_seconds == DEFAULT_CACHE_TTL
    assert find_project_config() is None


def test_malformed_project_config_skipped(tmp_path, monkeypatch, capsys):
    project_dir = tmp_path / ".outfit-tracker"
    project_dir.mkdir()
    (project_dir / "settings.json").write_text("not json{{{")

    monkeypatch.setattr("outfit_tracker.config.SETTINGS_FILE", tmp_path / "nonexistent.json")
    monkeypatch.chdir(tmp_path)

    settings = load_config()
    assert settings.theme == "light"
    assert "Error loading project config" in capsys.readouterr().out


def test_log_level_is_normalized():
    assert Settings(log_level="debug").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        Settings(log_level="chatty")


def test_cache_ttl_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(macro_cache_ttl_seconds=0)


# ---------------------------------------------------------------------------
# Stored feature settings
# ---------------------------------------------------------------------------


def test_outfit_settings_document_uses_camel_case():
    document = OutfitSettings().to_document()
    assert document["enableSysMessages"] is True
    assert document["autoOpenBot"] is True
    assert document["defaultBotPresets"] == {}
    assert "enable_sys_messages" not in document


def test_outfit_settings_carry_unknown_keys():
    settings = load_outfit_settings({"debugMode": True, "userPanelColors": {"border": "#333"}})
    assert settings.debug_mode is True
    assert settings.to_document()["userPanelColors"] == {"border": "#333"}


def test_invalid_stored_settings_fall_back_to_defaults():
    assert load_outfit_settings({"enableSysMessages": "sometimes"}).enable_sys_messages is True
    assert load_outfit_settings(None) == OutfitSettings()


def test_invalid_stored_setting_only_resets_that_key():
    settings = load_outfit_settings({
        "position": None,
        "autoOpenUser": True,
        "defaultUserPresets": {"i1": "Gym"},
        "userPanelColors": {"border": "#333"},
    })
    assert settings.position == "right"
    assert settings.auto_open_user is True
    assert settings.default_user_presets == {"i1": "Gym"}
    assert settings.to_document()["userPanelColors"] == {"border": "#333"}
