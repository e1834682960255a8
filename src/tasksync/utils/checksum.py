# src/tasksync/utils/checksum.py
"""Advisory batch fingerprint attached to every outbound batch."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Protocol

_MASK_32 = 0xFFFFFFFF
_SIGN_BIT = 0x80000000


class _BatchItem(Protocol):
    id: int
    record_id: str
    operation: str


def rolling_hash(text: str) -> int:
    """Return the signed 32-bit ``h = h * 31 + ord(c)`` hash of ``text``."""
    value = 0
    for char in text:
        value = (value * 31 + ord(char)) & _MASK_32
    return value - (1 << 32) if value & _SIGN_BIT else value


def batch_checksum(items: Sequence[_BatchItem]) -> str:
    """Fingerprint a batch so the remote can detect truncation or reordering.

    The format is ``"{count}-{first_id}-{last_id}-{hash}"`` where the hash
    covers the ordered ``(operation, record_id)`` pairs. An empty batch is
    fingerprinted as ``"empty"``. Nothing on this side verifies the echo.
    """
    if not items:
        return "empty"

    pairs = [{"op": item.operation, "tid": item.record_id} for item in items]
    encoded = json.dumps(pairs, separators=(",", ":"))
    return f"{len(items)}-{items[0].id}-{items[-1].id}-{rolling_hash(encoded)}"
