"""Functional tests for conversation-driven instance switching."""

import pytest

from outfit_tracker._normalize import normalize
from outfit_tracker.events import OutfitEvent
from outfit_tracker.host import Character, ChatMessage, InMemoryHost
from outfit_tracker.identity import instance_id_from_text
from outfit_tracker.main import create_deps
from outfit_tracker.persistence import MemoryStorage
from outfit_tracker.tracker import OutfitTracker

GREETING = "Alice looks up from her book. Hello there, traveller."


@pytest.mark.asyncio
async def test_instance_id_comes_from_first_character_message(tracker):
    deps = tracker.deps
    expected = instance_id_from_text(normalize(GREETING))
    assert deps.store.get_current_instance_id() == expected
    assert deps.bot_manager.instance_id == expected
    assert deps.user_manager.instance_id == expected
    assert deps.bot_manager.character_id == "c-alice"
    assert deps.store.get_current_character() == "c-alice"


@pytest.mark.asyncio
async def test_id_is_stable_across_outfit_substitutions(deps, host):
    deps.store.set_bot_outfit("c-alice", "seed", {"headwear": "red hat"})
    deps.store.save_preset("c-alice", "seed", "Casual", {"headwear": "blue cap"})
    host.replace_message(0, "Alice adjusts her red hat.")
    tracker = OutfitTracker(deps)

    await tracker.update_for_current_character()
    first = deps.store.get_current_instance_id()

    host.replace_message(0, "Alice adjusts her blue cap.")
    assert await tracker.refresh_instance_id() == first

    host.replace_message(0, "Alice adjusts her glasses.")
    assert await tracker.refresh_instance_id() != first


@pytest.mark.asyncio
async def test_no_character_message_means_no_instance():
    host = InMemoryHost(messages=[ChatMessage("You", "Hello?", is_user=True)])
    deps = await create_deps(host, MemoryStorage())
    tracker = OutfitTracker(deps)
    await tracker.update_for_current_character()

    assert deps.store.get_current_instance_id() is None
    assert deps.bot_manager.character == "Unknown"
    assert deps.bot_manager.has_target() is False


@pytest.mark.asyncio
async def test_new_character_gets_persistent_id():
    host = InMemoryHost([Character("Carol")], messages=[ChatMessage("Carol", "Hi.")], current="Carol")
    deps = await create_deps(host, MemoryStorage())
    await OutfitTracker(deps).update_for_current_character()

    carol = host.current_character()
    assert carol.extensions["character_id"] == deps.bot_manager.character_id
    assert host.dirty is True


@pytest.mark.asyncio
async def test_outfits_are_isolated_per_character(tracker, host):
    deps = tracker.deps
    instance_id = deps.store.get_current_instance_id()
    deps.bot_manager.set_outfit_item("headwear", "Red hat")

    host.select_character("Bob")
    await tracker.update_for_current_character()
    assert deps.bot_manager.character_id == "c-bob"
    assert deps.bot_manager.get_current_outfit()["headwear"] is None

    deps.bot_manager.set_outfit_item("headwear", "Top hat")
    assert deps.store.get_bot_outfit("c-alice", instance_id)["headwear"] == "Red hat"
    assert deps.store.get_bot_outfit("c-bob", instance_id)["headwear"] == "Top hat"


@pytest.mark.asyncio
async def test_chat_changed_skips_same_first_message(deps):
    tracker = OutfitTracker(deps)
    assert await tracker.handle_chat_changed() is True
    assert await tracker.handle_chat_changed() is False


@pytest.mark.asyncio
async def test_first_reply_moves_instance():
    host = InMemoryHost(
        [Character("Alice", {"character_id": "c-alice"})],
        messages=[ChatMessage("You", "Hello?", is_user=True)],
        current="Alice",
    )
    deps = await create_deps(host, MemoryStorage())
    tracker = OutfitTracker(deps)
    await tracker.update_for_current_character()
    assert deps.store.get_current_instance_id() is None

    reply = ChatMessage("Alice", "Oh, hello.")
    host.add_message(reply)
    assert await tracker.handle_message_received(reply) is True
    assert deps.store.get_current_instance_id() == instance_id_from_text("oh, hello.")

    second = ChatMessage("Alice", "Anything else?")
    host.add_message(second)
    assert await tracker.handle_message_received(second) is False


@pytest.mark.asyncio
async def test_swiping_first_message_switches_outfit(tracker, host):
    deps = tracker.deps
    loaded = []
    deps.bus.on(OutfitEvent.OUTFIT_DATA_LOADED, loaded.append)
    deps.bot_manager.set_outfit_item("headwear", "Red hat")
    first_id = deps.store.get_current_instance_id()

    host.replace_message(0, "Alice waves from the doorway.")
    assert await tracker.handle_message_swiped(0) is True
    assert deps.store.get_current_instance_id() != first_id
    assert deps.bot_manager.get_current_outfit()["headwear"] is None
    assert loaded

    host.replace_message(0, GREETING)
    await tracker.handle_message_swiped(0)
    assert deps.store.get_current_instance_id() == first_id
    assert deps.bot_manager.get_current_outfit()["headwear"] == "Red hat"


@pytest.mark.asyncio
async def test_swiping_other_messages_is_ignored(tracker):
    assert await tracker.handle_message_swiped(1) is False
    assert await tracker.handle_message_swiped(99) is False


@pytest.mark.asyncio
async def test_chat_reset_puts_on_default_outfit(tracker, host):
    deps = tracker.deps
    cleared = []
    deps.bus.on(OutfitEvent.CHAT_CLEARED, cleared.append)
    bot = deps.bot_manager
    bot.set_outfit_item("headwear", "Red hat")
    bot.save_preset("Casual")
    bot.set_preset_as_default("Casual")
    bot.set_outfit_item("headwear", "Blue cap")
    bot.set_outfit_item("topwear", "Coat")

    async def reset():
        host.clear_messages()
        host.add_message(ChatMessage("Alice", GREETING))

    await tracker.handle_chat_reset(reset)

    assert bot.get_current_outfit()["headwear"] == "Red hat"
    assert bot.get_current_outfit()["topwear"] is None
    assert cleared == [{}]


@pytest.mark.asyncio
async def test_chat_reset_without_default_keeps_outfit(tracker, host):
    deps = tracker.deps
    deps.user_manager.set_outfit_item("topwear", "Hoodie")

    await tracker.handle_chat_reset(lambda: None)

    assert deps.user_manager.get_current_outfit()["topwear"] == "Hoodie"


@pytest.mark.asyncio
async def test_render_substitutes_after_instance_settles(deps, host):
    tracker = OutfitTracker(deps)
    await tracker.update_for_current_character()
    deps.bot_manager.set_outfit_item("headwear", "Red hat")
    first = deps.store.get_current_instance_id()

    # Forget the instance; render must re-derive it before substituting
    deps.store.set_current_instance_id(None)
    assert await tracker.render("Wearing {{char_headwear}}") == "Wearing Red hat"
    assert deps.store.get_current_instance_id() == first


@pytest.mark.asyncio
async def test_state_is_persisted_through_data_manager(tracker, storage):
    tracker.deps.bot_manager.set_outfit_item("headwear", "Red hat")
    await tracker.deps.data_manager.flush()

    instance_id = tracker.deps.store.get_current_instance_id()
    assert storage.document["botInstances"]["c-alice"][instance_id]["bot"]["headwear"] == "Red hat"
