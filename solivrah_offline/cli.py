"""Operator CLI for inspecting and draining the offline queue.

Usage:
    solivrah-offline status
    solivrah-offline list
    solivrah-offline enqueue quest-completion '{"questId": "q1"}'
    solivrah-offline sync
    solivrah-offline dead-letters
    solivrah-offline requeue <operation-id>
    solivrah-offline activate

Configuration comes from ``--config`` (YAML, ``offline`` section) or from
``SOLIVRAH_*`` environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from .cache.store import CacheStore
from .cache.strategy import StrategySelector
from .config import OfflineConfig
from .exceptions import OfflineSyncError
from .logging_utils import configure_structured_logging
from .queue.store import PendingOperationStore
from .queue.types import OperationType
from .remote.fetcher import HttpFetcher
from .remote.submitter import HttpOperationSubmitter
from .sync.broadcaster import StatusBroadcaster
from .sync.coordinator import SyncCoordinator, TriggerReason

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solivrah-offline",
        description="Inspect and drain the Solivrah offline operation queue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Show pending count and cache namespaces
    solivrah-offline status

    # Queue a quest completion and push it right away
    solivrah-offline enqueue quest-completion '{"questId": "q1"}'
    solivrah-offline sync

    # Point at another queue file
    SOLIVRAH_QUEUE_PATH=/tmp/ops.db solivrah-offline list
        """,
    )
    parser.add_argument("--config", type=Path, help="YAML settings file with an 'offline' section")
    parser.add_argument("--log-level", help="Override the configured log level")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show queue and cache status")
    sub.add_parser("list", help="List pending operations as JSON lines")

    enqueue = sub.add_parser("enqueue", help="Queue an operation")
    enqueue.add_argument("operation_type", choices=[t.value for t in OperationType])
    enqueue.add_argument("payload", help="JSON payload")

    sub.add_parser("sync", help="Drain the queue against the backend once")
    sub.add_parser("dead-letters", help="List operations that exhausted their retries")

    requeue = sub.add_parser("requeue", help="Move a dead letter back into the queue")
    requeue.add_argument("operation_id")

    sub.add_parser("activate", help="Delete cache namespaces other than the current version")
    return parser


def load_config(path: Path | None) -> OfflineConfig:
    if path is not None:
        return OfflineConfig.from_file(path)
    return OfflineConfig.from_env()


async def _status(config: OfflineConfig, store: PendingOperationStore) -> int:
    pending = await store.count()
    dead = await store.dead_letters()
    quarantined = await store.quarantined_count()
    namespaces = await CacheStore(config.cache_dir).namespaces()
    print(
        json.dumps(
            {
                "pending_count": pending,
                "dead_letter_count": len(dead),
                "quarantined_count": quarantined,
                "cache_name": config.cache_name,
                "cache_namespaces": namespaces,
                "queue_path": str(config.queue_path),
            },
            indent=2,
        )
    )
    return 0


async def _list(store: PendingOperationStore) -> int:
    states = await store.delivery_states()
    for operation in await store.list():
        record = operation.to_record()
        state = states.get(operation.id)
        if state is not None:
            record["_attempts"] = state.attempts
            record["_last_error"] = state.last_error
        print(json.dumps(record))
    return 0


async def _enqueue(store: PendingOperationStore, operation_type: str, payload_text: str) -> int:
    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as e:
        print(f"Invalid JSON payload: {e}", file=sys.stderr)
        return 2
    operation_id = await store.enqueue(operation_type, payload)
    print(operation_id)
    return 0


async def _sync(config: OfflineConfig, store: PendingOperationStore) -> int:
    submitter = HttpOperationSubmitter(
        config.base_url, config.endpoints, timeout=config.submit_timeout
    )
    try:
        coordinator = SyncCoordinator(
            store,
            submitter,
            StatusBroadcaster(),
            retry=config.retry,
            sync_tag=config.sync_tag,
            submit_timeout=config.submit_timeout,
        )
        results = await coordinator.sync_now(TriggerReason.MANUAL) or []
    finally:
        await submitter.close()

    for result in results:
        print(json.dumps(result.to_dict()))
    print(
        f"{sum(r.success for r in results)}/{len(results)} synced, "
        f"{coordinator.status.pending_count} pending",
        file=sys.stderr,
    )
    return 0 if all(r.success for r in results) else 1


async def _dead_letters(store: PendingOperationStore) -> int:
    for letter in await store.dead_letters():
        record = letter.operation.to_record()
        record["_attempts"] = letter.attempts
        record["_reason"] = letter.reason
        print(json.dumps(record))
    return 0


async def _requeue(store: PendingOperationStore, operation_id: str) -> int:
    if await store.requeue_dead_letter(operation_id):
        print(f"Requeued {operation_id}")
        return 0
    print(f"No dead letter with id {operation_id}", file=sys.stderr)
    return 1


async def _activate(config: OfflineConfig) -> int:
    fetcher = HttpFetcher(timeout=config.submit_timeout)
    try:
        selector = StrategySelector.from_config(config, CacheStore(config.cache_dir), fetcher)
        removed = await selector.activate()
    finally:
        await fetcher.close()
    for name in removed:
        print(f"Removed {name}")
    return 0


async def run(args: argparse.Namespace, config: OfflineConfig) -> int:
    if args.command == "activate":
        return await _activate(config)

    async with PendingOperationStore(config.queue_path) as store:
        if args.command == "status":
            return await _status(config, store)
        if args.command == "list":
            return await _list(store)
        if args.command == "enqueue":
            return await _enqueue(store, args.operation_type, args.payload)
        if args.command == "sync":
            return await _sync(config, store)
        if args.command == "dead-letters":
            return await _dead_letters(store)
        if args.command == "requeue":
            return await _requeue(store, args.operation_id)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except OfflineSyncError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_structured_logging(args.log_level or config.log_level, "solivrah_offline")

    try:
        return asyncio.run(run(args, config))
    except OfflineSyncError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
