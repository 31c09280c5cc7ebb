"""ID generation for pending operations.

Operation IDs: {base36 epoch milliseconds}{base36 random suffix}

The time prefix keeps IDs roughly sortable by creation time; the random
suffix keeps two contexts that enqueue in the same millisecond apart.
"""

from __future__ import annotations

import secrets
import time

_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

# 8 base36 chars ~ 41 bits of randomness per millisecond
SUFFIX_LENGTH = 8


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base36."""
    if value < 0:
        raise ValueError(f"Cannot encode negative value: {value}")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_operation_id(timestamp_ms: int | None = None) -> str:
    """Generate a collision-resistant operation ID."""
    ts = now_ms() if timestamp_ms is None else timestamp_ms
    return f"{to_base36(ts)}{random_suffix()}"


def parse_operation_timestamp(operation_id: str) -> int:
    """Extract the millisecond timestamp from an operation ID.

    Raises ValueError on malformed input.
    """
    prefix = operation_id[:-SUFFIX_LENGTH]
    if not prefix or len(operation_id) <= SUFFIX_LENGTH:
        raise ValueError(f"Malformed operation ID: {operation_id}")
    try:
        return int(prefix, 36)
    except ValueError:
        raise ValueError(f"Malformed operation ID: {operation_id}") from None
