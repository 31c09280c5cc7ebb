"""
Types for the pending operation queue.

The persisted record format is shared with every deployed app version,
so ``to_record``/``from_record`` only ever add keys, never rename them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..exceptions import QueueRecordCorruption

RECORD_KEYS = ("id", "operationType", "data", "timestamp")


class OperationType(Enum):
    """User mutations that can be queued while offline."""

    QUEST_COMPLETION = "quest-completion"
    MOOD_UPDATE = "mood-update"
    PROFILE_UPDATE = "profile-update"


@dataclass(frozen=True)
class PendingOperation:
    """A user mutation awaiting delivery.

    Attributes:
        id: Collision-resistant operation ID
        operation_type: Kind of mutation
        payload: Opaque JSON-compatible data sent to the endpoint
        created_at: Enqueue time in epoch milliseconds
        extra: Unknown record keys written by newer app versions
    """

    id: str
    operation_type: OperationType
    payload: Any
    created_at: int
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_record(self) -> dict[str, Any]:
        """Convert to the persisted record schema."""
        record = dict(self.extra)
        record.update(
            {
                "id": self.id,
                "operationType": self.operation_type.value,
                "data": self.payload,
                "timestamp": self.created_at,
            }
        )
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_record(), ensure_ascii=False)

    @classmethod
    def from_record(cls, record: Any) -> PendingOperation:
        """Create from a persisted record.

        Raises:
            QueueRecordCorruption: If the record does not match the schema
        """
        if not isinstance(record, dict):
            raise QueueRecordCorruption(None, f"expected object, got {type(record).__name__}")

        record_id = record.get("id")
        if not isinstance(record_id, str) or not record_id:
            raise QueueRecordCorruption(None, "missing id")

        missing = [key for key in RECORD_KEYS if key not in record]
        if missing:
            raise QueueRecordCorruption(record_id, f"missing keys: {', '.join(missing)}")

        try:
            operation_type = OperationType(record["operationType"])
        except ValueError:
            raise QueueRecordCorruption(
                record_id, f"unknown operationType {record['operationType']!r}"
            ) from None

        timestamp = record["timestamp"]
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise QueueRecordCorruption(record_id, "timestamp is not a number")

        return cls(
            id=record_id,
            operation_type=operation_type,
            payload=record["data"],
            created_at=int(timestamp),
            extra={k: v for k, v in record.items() if k not in RECORD_KEYS},
        )

    @classmethod
    def from_json(cls, text: str) -> PendingOperation:
        try:
            record = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            raise QueueRecordCorruption(None, f"invalid JSON: {e}") from e
        return cls.from_record(record)


@dataclass
class DeliveryState:
    """Retry bookkeeping for one operation, stored beside the record."""

    operation_id: str
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: str | None = None


@dataclass
class DeadLetter:
    """An operation that exhausted its retries."""

    operation: PendingOperation
    attempts: int
    reason: str
    dead_lettered_at: float
