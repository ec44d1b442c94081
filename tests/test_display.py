"""Functional tests for terminal display behavior."""

from rich.console import Console
from rich.theme import Theme

from outfit_tracker import display
from outfit_tracker.status import StatusInfo, render_status_table


def _recording_console() -> Console:
    return Console(record=True, force_terminal=False, color_system=None, width=100, theme=Theme(display._THEMES["light"]))


def test_outfit_table_shows_sentinel_for_empty_slots():
    console = _recording_console()
    console.print(display.render_outfit_table("Alice's Outfit", {"headwear": "[red] beret", "topwear": None}))
    text = console.export_text()
    assert "Headwear" in text
    assert "[red] beret" in text
    assert "Head accessory" in text
    assert "None" in text


def test_presets_table_marks_default():
    console = _recording_console()
    presets = {"Casual": {"headwear": "Cap", "topwear": "None"}, "Formal": {}}
    console.print(display.render_presets_table("Presets", presets, "Casual"))
    text = console.export_text()
    assert f"Casual {display.SUCCESS}" in text
    assert "Headwear: Cap" in text
    assert "nothing" in text


def test_display_status_prints_plain_message(monkeypatch):
    recording_console = _recording_console()
    monkeypatch.setattr(display, "console", recording_console)

    display.display_status("Alice put on [b]old boots.")
    assert recording_console.export_text() == f"{display.BULLET} Alice put on [b]old boots.\n"


def test_status_table_flags_stale_schema():
    info = StatusInfo(
        version="0.1.0",
        data_file="/tmp/outfits.json",
        data_size="missing",
        schema_version="0.9.0",
        characters=1,
        bot_instances=2,
        user_instances=1,
        presets=3,
        cache_ttl_seconds=300,
        log_level="WARNING",
        project_config=None,
    )
    console = _recording_console()
    console.print(render_status_table(info))
    text = console.export_text()
    assert "Needs migration" in text
    assert "Missing" in text
    assert "300s expiry" in text
