"""Topic-to-broker affinity by FNV-1a hashing."""

from __future__ import annotations

_FNV_OFFSET_32 = 0x811C9DC5
_FNV_PRIME_32 = 0x01000193


def fnv1a_32(data: bytes | str) -> int:
    """Return the 32-bit FNV-1a hash of ``data`` (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    h = _FNV_OFFSET_32
    for byte in data:
        h ^= byte
        h = (h * _FNV_PRIME_32) & 0xFFFFFFFF
    return h


def parse_broker_list(addr: str) -> list[str]:
    """Split a comma-separated address list, dropping blank entries."""
    brokers = [part.strip() for part in addr.split(",")]
    brokers = [b for b in brokers if b]
    if not brokers:
        raise ValueError("broker address is required")
    return brokers


def broker_order(brokers: list[str], topic: str) -> list[str]:
    """Return the brokers in order of preference for ``topic``.

    The first choice is picked by hashing the topic; the rest follow in
    list order, wrapping around. An empty topic starts at the first broker.
    """
    if not brokers:
        return []
    if len(brokers) == 1:
        return [brokers[0]]
    start = fnv1a_32(topic) % len(brokers) if topic else 0
    return brokers[start:] + brokers[:start]


def preferred_broker(brokers: list[str], topic: str) -> str | None:
    """Return the main broker for ``topic``, or None when there are none."""
    order = broker_order(brokers, topic)
    return order[0] if order else None