"""End-to-end tests for the outfits CLI over real files."""

import json

import pytest
from typer.testing import CliRunner

from outfit_tracker._normalize import normalize
from outfit_tracker.identity import instance_id_from_text
from outfit_tracker.main import app

runner = CliRunner()

GREETING = "Alice smiles and tips her hat."


@pytest.fixture
def files(tmp_path):
    transcript = tmp_path / "chat.json"
    transcript.write_text(json.dumps({
        "characters": [{"name": "Alice"}],
        "messages": [
            {"name": "Alice", "text": GREETING},
            {"name": "You", "text": "Hello!", "is_user": True},
        ],
    }))
    return tmp_path / "outfits.json", transcript


def _run(data_file, *args):
    return runner.invoke(app, ["--data-file", str(data_file), *[str(a) for a in args]])


def test_wear_persists_outfit_and_character_id(files):
    data_file, transcript = files

    result = _run(data_file, "wear", transcript, "headwear", "Red hat")
    assert result.exit_code == 0, result.output
    assert "Alice put on Red hat." in result.output

    character_id = json.loads(transcript.read_text())["characters"][0]["extensions"]["character_id"]
    document = json.loads(data_file.read_text())
    instance_id = instance_id_from_text(normalize(GREETING))
    assert document["botInstances"][character_id][instance_id]["bot"]["headwear"] == "Red hat"

    result = _run(data_file, "show", transcript)
    assert result.exit_code == 0
    assert "Red hat" in result.output


def test_instance_id_command(files):
    data_file, transcript = files
    result = _run(data_file, "instance-id", transcript)
    assert result.exit_code == 0
    assert instance_id_from_text(normalize(GREETING)) in result.output


def test_user_outfit_and_render(files):
    data_file, transcript = files
    assert _run(data_file, "wear", transcript, "topwear", "Hoodie", "--user").exit_code == 0
    assert _run(data_file, "wear", transcript, "headwear", "Red hat").exit_code == 0

    result = _run(data_file, "render", transcript, "{{char_headwear}} / {{user_topwear}} / {{char_footwear}}")
    assert result.exit_code == 0
    assert "Red hat / Hoodie / {{char_footwear}}" in result.output


def test_remove_item(files):
    data_file, transcript = files
    _run(data_file, "wear", transcript, "footwear", "Boots")
    result = _run(data_file, "remove", transcript, "footwear")
    assert result.exit_code == 0
    assert "Alice removed Boots." in result.output


def test_unknown_slot_exits_with_error(files):
    data_file, transcript = files
    result = _run(data_file, "wear", transcript, "tail", "Fluffy")
    assert result.exit_code == 1
    assert "Unknown slot" in result.output


def test_preset_lifecycle(files):
    data_file, transcript = files
    _run(data_file, "wear", transcript, "headwear", "Red hat")

    assert _run(data_file, "preset", "save", transcript, "Casual").exit_code == 0
    result = _run(data_file, "preset", "list", transcript)
    assert result.exit_code == 0
    assert "Casual" in result.output

    _run(data_file, "wear", transcript, "headwear", "Blue cap")
    result = _run(data_file, "preset", "load", transcript, "Casual")
    assert result.exit_code == 0
    assert 'changed into the "Casual" outfit' in result.output

    assert _run(data_file, "preset", "default", transcript, "Casual").exit_code == 0
    embedded = json.loads(transcript.read_text())["characters"][0]["extensions"]["outfit-tracker"]
    assert embedded["defaultOutfit"]["headwear"] == "Red hat"


def test_reserved_preset_name_is_an_error(files):
    data_file, transcript = files
    result = _run(data_file, "preset", "save", transcript, "default")
    assert result.exit_code == 1
    assert "reserved" in result.output


def test_missing_transcript(tmp_path):
    result = _run(tmp_path / "outfits.json", "show", tmp_path / "nope.json")
    assert result.exit_code == 1
    assert "Transcript not found" in result.output


def test_wipe(files):
    data_file, transcript = files
    _run(data_file, "wear", transcript, "headwear", "Red hat")

    result = _run(data_file, "wipe", "--yes")
    assert result.exit_code == 0
    document = json.loads(data_file.read_text())
    assert document["botInstances"] == {}
    assert document["presets"] == {"bot": {}, "user": {}}


def test_status(files):
    data_file, transcript = files
    _run(data_file, "wear", transcript, "headwear", "Red hat")
    result = _run(data_file, "status")
    assert result.exit_code == 0
    assert "Outfit Tracker Status" in result.output
