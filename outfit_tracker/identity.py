"""Instance identity: a short stable id for a conversation branch.

A branch (swipe, regeneration, reset) has no handle that survives a reload,
so its id is derived from content: the normalized text of the first
character message, hashed with SHA-256 and truncated to 16 hex characters.

The digest normally comes from a platform primitive (hashlib by default, or
whatever the host injects). If that primitive is missing or fails, a
pure-Python SHA-256 is used instead. Both paths produce the same bytes, so an
id computed with one path always matches an id computed with the other.
"""

import hashlib
import inspect
import logging
import math
import struct
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

INSTANCE_ID_LENGTH = 16

Digest = Callable[[bytes], bytes | Awaitable[bytes]]


# ---------------------------------------------------------------------------
# Pure-software SHA-256 (FIPS 180-4)
# ---------------------------------------------------------------------------

_MASK = 0xFFFFFFFF


def _first_primes(count: int) -> list[int]:
    primes: list[int] = []
    candidate = 2
    while len(primes) < count:
        if all(candidate % p for p in primes if p * p <= candidate):
            primes.append(candidate)
        candidate += 1
    return primes


def _icbrt(n: int) -> int:
    """Integer cube root (floor)."""
    x = 1 << ((n.bit_length() + 2) // 3)
    while True:
        y = (2 * x + n // (x * x)) // 3
        if y >= x:
            return x
        x = y


# Fractional bits of square / cube roots of the first primes
_PRIMES = _first_primes(64)
_H0 = [math.isqrt(p << 64) & _MASK for p in _PRIMES[:8]]
_K = [_icbrt(p << 96) & _MASK for p in _PRIMES]


def _rotr(x: int, n: int) -> int:
    return ((x >> n) | (x << (32 - n))) & _MASK


def sha256_digest(data: bytes) -> bytes:
    """SHA-256 without hashlib. Slow, but identical to hashlib.sha256(data).digest()."""
    message = bytearray(data)
    bit_length = len(data) * 8
    message.append(0x80)
    message.extend(b"\x00" * ((56 - len(message) % 64) % 64))
    message.extend(bit_length.to_bytes(8, "big"))

    h = list(_H0)
    for offset in range(0, len(message), 64):
        w = list(struct.unpack(">16I", message[offset:offset + 64]))
        for i in range(16, 64):
            s0 = _rotr(w[i - 15], 7) ^ _rotr(w[i - 15], 18) ^ (w[i - 15] >> 3)
            s1 = _rotr(w[i - 2], 17) ^ _rotr(w[i - 2], 19) ^ (w[i - 2] >> 10)
            w.append((w[i - 16] + s0 + w[i - 7] + s1) & _MASK)

        a, b, c, d, e, f, g, hh = h
        for i in range(64):
            s1 = _rotr(e, 6) ^ _rotr(e, 11) ^ _rotr(e, 25)
            ch = (e & f) ^ ((~e & _MASK) & g)
            t1 = (hh + s1 + ch + _K[i] + w[i]) & _MASK
            s0 = _rotr(a, 2) ^ _rotr(a, 13) ^ _rotr(a, 22)
            maj = (a & b) ^ (a & c) ^ (b & c)
            t2 = (s0 + maj) & _MASK
            hh, g, f, e, d, c, b, a = g, f, e, (d + t1) & _MASK, c, b, a, (t1 + t2) & _MASK

        h = [(x + y) & _MASK for x, y in zip(h, (a, b, c, d, e, f, g, hh))]

    return b"".join(x.to_bytes(4, "big") for x in h)


def _platform_sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


# ---------------------------------------------------------------------------
# Instance ids
# ---------------------------------------------------------------------------


def _canonical_bytes(normalized_text: str) -> bytes:
    return normalized_text.strip().lower().encode("utf-8")


def _format_id(digest: bytes) -> str:
    return digest.hex()[:INSTANCE_ID_LENGTH]


def instance_id_from_text(normalized_text: str) -> str:
    """Synchronous instance id for already-normalized text."""
    data = _canonical_bytes(normalized_text)
    try:
        digest = _platform_sha256(data)
    except (ValueError, AttributeError) as e:
        logger.warning(f"Platform SHA-256 unavailable ({e}), using software digest")
        digest = sha256_digest(data)
    return _format_id(digest)


class InstanceIdentityResolver:
    """Turns normalized message text into an InstanceId.

    ``digest`` is the platform hashing primitive; it may be sync or async.
    Any failure in it falls back to the software digest, so resolution
    always yields an id.
    """

    def __init__(self, digest: Digest | None = None):
        self.digest: Digest = digest or _platform_sha256

    async def resolve(self, normalized_text: str) -> str:
        data = _canonical_bytes(normalized_text)
        try:
            result = self.digest(data)
            if inspect.isawaitable(result):
                result = await result
            if not isinstance(result, (bytes, bytearray)) or len(result) != 32:
                raise ValueError(f"digest returned {type(result).__name__} of unexpected size")
            digest = bytes(result)
        except Exception as e:
            logger.warning(f"Platform digest failed ({e}), falling back to software SHA-256")
            digest = sha256_digest(data)
        return _format_id(digest)


def first_character_message(messages: Iterable[Any]) -> Any | None:
    """First message that is neither from the user nor a system message."""
    for message in messages:
        if not getattr(message, "is_user", False) and not getattr(message, "is_system", False):
            return message
    return None
