"""Shared fixtures: a two-character host and fully wired deps over in-memory storage."""

import pytest
import pytest_asyncio

from outfit_tracker.host import Character, ChatMessage, InMemoryHost
from outfit_tracker.main import create_deps
from outfit_tracker.persistence import MemoryStorage
from outfit_tracker.tracker import OutfitTracker

GREETING = "Alice looks up from her book. Hello there, traveller."


@pytest.fixture
def host() -> InMemoryHost:
    return InMemoryHost(
        characters=[
            Character("Alice", {"character_id": "c-alice"}),
            Character("Bob", {"character_id": "c-bob"}),
        ],
        messages=[
            ChatMessage("Alice", GREETING),
            ChatMessage("You", "Hi Alice!", is_user=True),
        ],
        current="Alice",
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest_asyncio.fixture
async def deps(host, storage):
    return await create_deps(host, storage)


@pytest_asyncio.fixture
async def tracker(deps):
    tracker = OutfitTracker(deps)
    await tracker.update_for_current_character()
    return tracker
