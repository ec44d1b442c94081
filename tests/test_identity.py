"""Functional tests for instance ids and the software SHA-256."""

import hashlib

import pytest

from outfit_tracker.host import ChatMessage
from outfit_tracker.identity import (
    INSTANCE_ID_LENGTH,
    InstanceIdentityResolver,
    first_character_message,
    instance_id_from_text,
    sha256_digest,
)


@pytest.mark.parametrize("data", [
    b"",
    b"abc",
    b"a" * 55,
    b"a" * 56,
    b"a" * 64,
    b"a" * 119,
    "héllo wörld, ünïcode".encode("utf-8"),
    bytes(range(256)) * 4,
])
def test_software_digest_matches_hashlib(data):
    assert sha256_digest(data) == hashlib.sha256(data).digest()


def test_instance_id_is_truncated_lowercase_hash():
    expected = hashlib.sha256(b"hello there").hexdigest()[:INSTANCE_ID_LENGTH]
    assert instance_id_from_text("Hello There") == expected
    assert instance_id_from_text("  hello there \n") == expected


@pytest.mark.asyncio
async def test_resolver_uses_injected_async_digest():
    calls = []

    async def digest(data: bytes) -> bytes:
        calls.append(data)
        return hashlib.sha256(data).digest()

    resolver = InstanceIdentityResolver(digest)
    assert await resolver.resolve("Hello") == instance_id_from_text("Hello")
    assert calls == [b"hello"]


@pytest.mark.asyncio
async def test_resolver_falls_back_when_digest_fails():
    def broken(data: bytes) -> bytes:
        raise RuntimeError("no crypto here")

    resolver = InstanceIdentityResolver(broken)
    assert await resolver.resolve("Hello") == instance_id_from_text("Hello")


@pytest.mark.asyncio
async def test_resolver_falls_back_on_wrong_digest_size():
    resolver = InstanceIdentityResolver(lambda data: hashlib.md5(data).digest())
    assert await resolver.resolve("Hello") == instance_id_from_text("Hello")


def test_first_character_message_skips_user_and_system():
    messages = [
        ChatMessage("System", "Scenario start", is_system=True),
        ChatMessage("You", "Hi", is_user=True),
        ChatMessage("Alice", "Hello!"),
        ChatMessage("Alice", "Second"),
    ]
    assert first_character_message(messages).text == "Hello!"
    assert first_character_message(messages[:2]) is None


@pytest.mark.asyncio
async def test_resolution_is_idempotent():
    resolver = InstanceIdentityResolver()
    ids = {await resolver.resolve("Alice looks up. Hello!") for _ in range(5)}
    assert len(ids) == 1
