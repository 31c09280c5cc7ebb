"""
Durable queue of pending user operations.

Backed by a SQLite file that every execution context (foreground tabs and
the background worker) opens with its own connection. Each mutation runs
inside a ``BEGIN IMMEDIATE`` transaction, so concurrent read-modify-write
sequences from different contexts serialize on the database lock instead
of overwriting each other.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import QueueRecordCorruption, StorageConnectionError, StorageIOError
from ..id_utils import generate_operation_id, now_ms
from .types import DeadLetter, DeliveryState, OperationType, PendingOperation

logger = logging.getLogger(__name__)

MAX_ID_ATTEMPTS = 5

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS pending_operations (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    record TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS delivery_state (
    operation_id TEXT NOT NULL PRIMARY KEY,
    attempts INTEGER NOT NULL DEFAULT 0,
    next_attempt_at REAL NOT NULL DEFAULT 0,
    last_error TEXT
);

CREATE TABLE IF NOT EXISTS dead_letters (
    id TEXT NOT NULL PRIMARY KEY,
    record TEXT NOT NULL,
    attempts INTEGER NOT NULL,
    reason TEXT,
    dead_lettered_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS quarantined_records (
    id TEXT NOT NULL PRIMARY KEY,
    record TEXT NOT NULL,
    reason TEXT NOT NULL,
    quarantined_at REAL NOT NULL
);
"""


class PendingOperationStore:
    """Crash-tolerant, multi-context-safe queue of pending operations.

    Example:
        >>> store = await PendingOperationStore.create(Path("offline_operations.db"))
        >>> op_id = await store.enqueue(OperationType.QUEST_COMPLETION, {"questId": "q1"})
        >>> [op.id for op in await store.list()]
        [op_id]
        >>> await store.remove(op_id)
        True
    """

    def __init__(self, db_path: str | Path, busy_timeout_ms: int = 5000):
        """Initialize the store.

        Args:
            db_path: SQLite file shared between contexts (``:memory:`` for tests)
            busy_timeout_ms: How long to wait for another context's transaction
        """
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._initialized = False

    @classmethod
    async def create(cls, db_path: str | Path, busy_timeout_ms: int = 5000) -> PendingOperationStore:
        """Create and initialize a store."""
        store = cls(db_path, busy_timeout_ms)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Open the connection and create the schema."""
        if self._initialized:
            return

        try:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            # Autocommit mode: transactions are opened explicitly below
            self.conn = await aiosqlite.connect(str(self.db_path), isolation_level=None)
            await self.conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            await self.conn.execute("PRAGMA journal_mode = WAL")
            await self.conn.execute("PRAGMA synchronous = FULL")
            await self.conn.executescript(_SCHEMA_SQL)
            self._initialized = True
            logger.info(f"Pending operation store initialized: {self.db_path}")
        except (aiosqlite.Error, OSError) as e:
            raise StorageConnectionError(str(self.db_path), e) from e

    async def close(self) -> None:
        """Close the database connection."""
        if self.conn is not None:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    async def __aenter__(self) -> PendingOperationStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _require_conn(self) -> aiosqlite.Connection:
        if self.conn is None:
            raise StorageIOError("queue", str(self.db_path), RuntimeError("store is not initialized"))
        return self.conn

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Run a read-modify-write sequence atomically.

        The asyncio lock serializes coroutines sharing this connection;
        ``BEGIN IMMEDIATE`` serializes against other contexts.
        """
        conn = self._require_conn()
        async with self._lock:
            try:
                await conn.execute("BEGIN IMMEDIATE")
            except aiosqlite.Error as e:
                raise StorageIOError(operation, str(self.db_path), e) from e
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            try:
                await conn.execute("COMMIT")
            except aiosqlite.Error as e:
                await conn.execute("ROLLBACK")
                raise StorageIOError(operation, str(self.db_path), e) from e

    async def enqueue(
        self,
        operation_type: OperationType | str,
        payload: Any,
        *,
        created_at: int | None = None,
    ) -> str:
        """Persist a new operation and return its ID.

        Returns only after the record is committed.

        Args:
            operation_type: Kind of mutation
            payload: JSON-compatible data for the endpoint
            created_at: Override the enqueue timestamp (epoch milliseconds)

        Raises:
            ValueError: If the operation type is unknown or the payload is not JSON-compatible
            StorageIOError: If the record cannot be written
        """
        op_type = OperationType(operation_type)
        timestamp = now_ms() if created_at is None else created_at

        for _ in range(MAX_ID_ATTEMPTS):
            operation = PendingOperation(
                id=generate_operation_id(timestamp),
                operation_type=op_type,
                payload=payload,
                created_at=timestamp,
            )
            try:
                record = operation.to_json()
            except (TypeError, ValueError) as e:
                raise ValueError(f"Payload for {op_type.value} is not JSON-serializable: {e}") from e

            try:
                async with self._transaction("enqueue") as conn:
                    await conn.execute(
                        "INSERT INTO pending_operations (id, record) VALUES (?, ?)",
                        (operation.id, record),
                    )
            except aiosqlite.IntegrityError:
                logger.warning(f"Operation ID collision on {operation.id}, regenerating")
                continue
            except aiosqlite.Error as e:
                raise StorageIOError("enqueue", str(self.db_path), e) from e

            logger.debug(
                "Enqueued operation",
                extra={"operation_id": operation.id, "operation_type": op_type.value},
            )
            return operation.id

        raise StorageIOError(
            "enqueue", str(self.db_path), RuntimeError("could not generate a unique operation ID")
        )

    async def list(self) -> list[PendingOperation]:
        """Snapshot of pending operations in enqueue order.

        Malformed records are moved to ``quarantined_records`` so one bad
        row can neither block the queue nor inflate ``count()``.
        """
        conn = self._require_conn()
        try:
            async with conn.execute(
                "SELECT id, record FROM pending_operations ORDER BY seq"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageIOError("list", str(self.db_path), e) from e

        operations = []
        corrupt = []
        for row_id, record in rows:
            try:
                operation = PendingOperation.from_json(record)
                if operation.id != row_id:
                    raise QueueRecordCorruption(row_id, f"record id {operation.id!r} does not match row")
            except QueueRecordCorruption as e:
                corrupt.append((row_id, record, e.reason))
                continue
            operations.append(operation)

        if corrupt:
            await self._quarantine(corrupt)
        return operations

    async def _quarantine(self, corrupt: list[tuple[str, str, str]]) -> None:
        """Move undecodable rows out of the pending queue."""
        try:
            async with self._transaction("quarantine") as conn:
                for row_id, record, reason in corrupt:
                    # Only if the row was not rewritten since it was read
                    cursor = await conn.execute(
                        "DELETE FROM pending_operations WHERE id = ? AND record = ?",
                        (row_id, record),
                    )
                    if cursor.rowcount == 0:
                        continue
                    await conn.execute(
                        """
                        INSERT OR REPLACE INTO quarantined_records (id, record, reason, quarantined_at)
                        VALUES (?, ?, ?, ?)
                        """,
                        (row_id, record, reason, time.time()),
                    )
                    await conn.execute(
                        "DELETE FROM delivery_state WHERE operation_id = ?", (row_id,)
                    )
        except aiosqlite.Error as e:
            raise StorageIOError("quarantine", str(self.db_path), e) from e

        for row_id, _, reason in corrupt:
            logger.warning(
                f"Quarantined corrupt queue record {row_id}: {reason}",
                extra={"operation_id": row_id},
            )

    async def quarantined_count(self) -> int:
        """Number of records pulled out of the queue because they could not be decoded."""
        conn = self._require_conn()
        try:
            async with conn.execute("SELECT COUNT(*) FROM quarantined_records") as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageIOError("quarantined_count", str(self.db_path), e) from e
        return int(row[0]) if row else 0

    async def get(self, operation_id: str) -> PendingOperation | None:
        """Get a single pending operation, or None if absent or corrupt."""
        conn = self._require_conn()
        try:
            async with conn.execute(
                "SELECT record FROM pending_operations WHERE id = ?", (operation_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageIOError("get", str(self.db_path), e) from e

        if row is None:
            return None
        try:
            return PendingOperation.from_json(row[0])
        except QueueRecordCorruption as e:
            logger.warning(f"Corrupt queue record {operation_id}: {e.reason}")
            return None

    async def count(self) -> int:
        """Number of deliverable un-acknowledged operations.

        Always equal to ``len(await store.list())``: corrupt rows are
        quarantined on the way.
        """
        return len(await self.list())

    async def remove(self, operation_id: str) -> bool:
        """Remove an acknowledged operation.

        Idempotent: removing an absent ID is a no-op.

        Returns:
            True if a record was removed
        """
        try:
            async with self._transaction("remove") as conn:
                cursor = await conn.execute(
                    "DELETE FROM pending_operations WHERE id = ?", (operation_id,)
                )
                removed = cursor.rowcount > 0
                await conn.execute(
                    "DELETE FROM delivery_state WHERE operation_id = ?", (operation_id,)
                )
        except aiosqlite.Error as e:
            raise StorageIOError("remove", str(self.db_path), e) from e
        return removed

    async def record_failure(
        self,
        operation_id: str,
        error: str,
        next_attempt_at: float,
    ) -> int:
        """Increment the failure count of a pending operation.

        Args:
            operation_id: Operation that failed
            error: Error message
            next_attempt_at: Epoch seconds before which it should not be retried

        Returns:
            Attempts so far, or 0 if the operation is no longer pending
        """
        try:
            async with self._transaction("record_failure") as conn:
                async with conn.execute(
                    "SELECT 1 FROM pending_operations WHERE id = ?", (operation_id,)
                ) as cursor:
                    if await cursor.fetchone() is None:
                        return 0
                await conn.execute(
                    """
                    INSERT INTO delivery_state (operation_id, attempts, next_attempt_at, last_error)
                    VALUES (?, 1, ?, ?)
                    ON CONFLICT(operation_id) DO UPDATE SET
                        attempts = attempts + 1,
                        next_attempt_at = excluded.next_attempt_at,
                        last_error = excluded.last_error
                    """,
                    (operation_id, next_attempt_at, error),
                )
                async with conn.execute(
                    "SELECT attempts FROM delivery_state WHERE operation_id = ?", (operation_id,)
                ) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageIOError("record_failure", str(self.db_path), e) from e
        return int(row[0]) if row else 0

    async def delivery_states(self) -> dict[str, DeliveryState]:
        """Retry bookkeeping for every operation that has failed at least once."""
        conn = self._require_conn()
        try:
            async with conn.execute(
                "SELECT operation_id, attempts, next_attempt_at, last_error FROM delivery_state"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageIOError("delivery_states", str(self.db_path), e) from e
        return {
            row[0]: DeliveryState(
                operation_id=row[0], attempts=row[1], next_attempt_at=row[2], last_error=row[3]
            )
            for row in rows
        }

    async def delivery_state(self, operation_id: str) -> DeliveryState:
        states = await self.delivery_states()
        return states.get(operation_id, DeliveryState(operation_id=operation_id))

    async def dead_letter(self, operation_id: str, reason: str) -> bool:
        """Move an operation out of the queue into the dead-letter table.

        Returns:
            True if the operation was pending and has been moved
        """
        try:
            async with self._transaction("dead_letter") as conn:
                async with conn.execute(
                    """
                    SELECT p.record, COALESCE(d.attempts, 0)
                    FROM pending_operations p
                    LEFT JOIN delivery_state d ON d.operation_id = p.id
                    WHERE p.id = ?
                    """,
                    (operation_id,),
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    return False
                await conn.execute(
                    """
                    INSERT OR REPLACE INTO dead_letters (id, record, attempts, reason, dead_lettered_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (operation_id, row[0], row[1], reason, time.time()),
                )
                await conn.execute("DELETE FROM pending_operations WHERE id = ?", (operation_id,))
                await conn.execute(
                    "DELETE FROM delivery_state WHERE operation_id = ?", (operation_id,)
                )
        except aiosqlite.Error as e:
            raise StorageIOError("dead_letter", str(self.db_path), e) from e

        logger.warning(
            f"Operation {operation_id} moved to dead letters: {reason}",
            extra={"operation_id": operation_id},
        )
        return True

    async def dead_letters(self) -> list[DeadLetter]:
        """Operations that exhausted their retries, oldest first."""
        conn = self._require_conn()
        try:
            async with conn.execute(
                "SELECT id, record, attempts, reason, dead_lettered_at "
                "FROM dead_letters ORDER BY dead_lettered_at"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageIOError("dead_letters", str(self.db_path), e) from e

        letters = []
        for row_id, record, attempts, reason, dead_lettered_at in rows:
            try:
                operation = PendingOperation.from_json(record)
            except QueueRecordCorruption as e:
                logger.warning(f"Skipping corrupt dead letter {row_id}: {e.reason}")
                continue
            letters.append(
                DeadLetter(
                    operation=operation,
                    attempts=attempts,
                    reason=reason or "",
                    dead_lettered_at=dead_lettered_at,
                )
            )
        return letters

    async def requeue_dead_letter(self, operation_id: str) -> bool:
        """Put a dead-lettered operation back in the queue with a fresh retry budget."""
        try:
            async with self._transaction("requeue") as conn:
                async with conn.execute(
                    "SELECT record FROM dead_letters WHERE id = ?", (operation_id,)
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    return False
                await conn.execute(
                    "INSERT OR IGNORE INTO pending_operations (id, record) VALUES (?, ?)",
                    (operation_id, row[0]),
                )
                await conn.execute("DELETE FROM dead_letters WHERE id = ?", (operation_id,))
        except aiosqlite.Error as e:
            raise StorageIOError("requeue", str(self.db_path), e) from e

        logger.info(f"Requeued dead letter {operation_id}")
        return True
