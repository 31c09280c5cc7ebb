"""
Tests for the sync coordinator.

Drains run against a real queue file and a FakeSubmitter; a held
submitter keeps a drain in flight so overlapping triggers can be tested.
"""

import asyncio

import pytest

from solivrah_offline.exceptions import StorageIOError
from solivrah_offline.queue.types import OperationType
from solivrah_offline.sync.broadcaster import StatusBroadcaster
from solivrah_offline.sync.coordinator import DEFAULT_SYNC_TAG, SyncCoordinator, TriggerReason
from solivrah_offline.sync.retry import RetryPolicy
from solivrah_offline.sync.status import SYNC_COMPLETED

from conftest import FakeSubmitter

NO_BACKOFF = RetryPolicy(max_attempts=None, backoff_base=0)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def broadcaster():
    return StatusBroadcaster()


@pytest.fixture
async def coordinator(store, submitter, broadcaster):
    coordinator = SyncCoordinator(store, submitter, broadcaster, retry=NO_BACKOFF)
    await coordinator.start()
    yield coordinator
    await coordinator.stop()


class TestDrain:
    """Tests for a single drain."""

    @pytest.mark.asyncio
    async def test_all_succeed(self, store, submitter, broadcaster, coordinator):
        """Every queued operation is delivered, removed, and reported."""
        tab = await broadcaster.connect("tab-1")
        ids = [
            await store.enqueue(OperationType.QUEST_COMPLETION, {"questId": f"q{i}"})
            for i in range(3)
        ]

        results = await coordinator.sync_now()

        assert sorted(r.operation_id for r in results) == sorted(ids)
        assert all(r.success for r in results)
        assert await store.count() == 0
        assert sorted(p["questId"] for p in submitter.submitted_payloads) == ["q0", "q1", "q2"]

        message = await tab.receive(timeout=1)
        assert message["type"] == SYNC_COMPLETED
        assert {r["id"] for r in message["results"]} == set(ids)
        assert coordinator.status.pending_count == 0
        assert coordinator.status.last_successful_sync is not None

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_failed_operation(self, store, broadcaster):
        """A rejected operation stays queued while the others are removed."""
        submitter = FakeSubmitter(lambda payload: "reject" if payload["n"] == 1 else "ok")
        coordinator = SyncCoordinator(store, submitter, broadcaster, retry=NO_BACKOFF)
        ids = [await store.enqueue("mood-update", {"n": n}) for n in range(3)]

        results = {r.operation_id: r for r in await coordinator.sync_now()}

        assert results[ids[0]].success and results[ids[2]].success
        assert results[ids[1]].success is False
        assert results[ids[1]].error == "Server rejected"
        assert [op.id for op in await store.list()] == [ids[1]]
        assert (await store.delivery_state(ids[1])).attempts == 1
        assert coordinator.status.pending_count == 1

    @pytest.mark.asyncio
    async def test_error_messages_by_failure_kind(self, store, broadcaster):
        submitter = FakeSubmitter(lambda payload: payload["answer"])
        coordinator = SyncCoordinator(store, submitter, broadcaster, retry=NO_BACKOFF)
        ids = {
            answer: await store.enqueue("mood-update", {"answer": answer})
            for answer in ("transient", "http-500", "crash")
        }

        results = {r.operation_id: r for r in await coordinator.sync_now()}

        assert results[ids["transient"]].error == "Network unavailable for http://app.test/api"
        assert results[ids["http-500"]].error == "Server rejected: HTTP 500"
        assert results[ids["crash"]].error == "submitter crashed"
        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_submit_timeout(self, store, broadcaster):
        submitter = FakeSubmitter()
        submitter.hold()
        coordinator = SyncCoordinator(
            store, submitter, broadcaster, retry=NO_BACKOFF, submit_timeout=0.05
        )
        await store.enqueue("quest-completion", {"questId": "slow"})

        (result,) = await coordinator.sync_now()

        assert result.success is False
        assert "timed out" in result.error
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_empty_queue_still_broadcasts(self, broadcaster, coordinator):
        """Foregrounds always get a completion, so they can clear their syncing flag."""
        tab = await broadcaster.connect()
        assert await coordinator.sync_now() == []
        assert (await tab.receive(timeout=1)) == {"type": SYNC_COMPLETED, "results": []}

    @pytest.mark.asyncio
    async def test_resync_after_success_is_noop(self, store, submitter, coordinator):
        """A second drain never resubmits what the first one delivered."""
        await store.enqueue("quest-completion", {"questId": "q1"})
        await coordinator.sync_now()
        await coordinator.sync_now()
        assert len(submitter.calls) == 1

    @pytest.mark.asyncio
    async def test_enqueue_during_drain_waits_for_next_drain(self, store, submitter, coordinator):
        first = await store.enqueue("quest-completion", {"questId": "first"})
        release = submitter.hold()

        drain = asyncio.create_task(coordinator.sync_now())
        await submitter.in_flight.wait()
        second = await store.enqueue("quest-completion", {"questId": "second"})
        release.set()
        results = await drain

        assert [r.operation_id for r in results] == [first]
        assert [op.id for op in await store.list()] == [second]

    @pytest.mark.asyncio
    async def test_failed_removal_is_not_resubmitted(self, store, submitter, coordinator, monkeypatch):
        """An acknowledged operation whose removal failed is removed later, not sent again."""
        op_id = await store.enqueue("quest-completion", {"questId": "q1"})
        real_remove = store.remove
        failures = {"left": 1}

        async def flaky_remove(operation_id):
            if failures["left"]:
                failures["left"] -= 1
                raise StorageIOError("remove", "test.db", OSError("disk busy"))
            return await real_remove(operation_id)

        monkeypatch.setattr(store, "remove", flaky_remove)

        (result,) = await coordinator.sync_now()
        assert result.success is True
        assert await store.count() == 1

        assert await coordinator.sync_now() == []
        assert len(submitter.calls) == 1
        assert await store.get(op_id) is None

    @pytest.mark.asyncio
    async def test_corrupt_row_does_not_inflate_pending_count(self, store, submitter, coordinator):
        """A malformed record is set aside, so the badge can reach zero."""
        await store.conn.execute(
            "INSERT INTO pending_operations (id, record) VALUES (?, ?)", ("bad", "{not json")
        )
        await store.enqueue("quest-completion", {"questId": "q1"})

        (result,) = await coordinator.sync_now()
        await coordinator.sync_now()

        assert result.success is True
        assert await store.list() == []
        assert coordinator.status.pending_count == len(await store.list()) == 0
        assert await store.count() == 0
        assert await store.quarantined_count() == 1


class TestTriggers:
    """Tests for the single-flight actor."""

    @pytest.mark.asyncio
    async def test_trigger_runs_drain(self, store, submitter, coordinator):
        await store.enqueue("quest-completion", {"questId": "q1"})

        assert coordinator.trigger(TriggerReason.ONLINE) is True
        await coordinator.wait_idle()

        assert await store.count() == 0
        assert coordinator.is_syncing is False

    @pytest.mark.asyncio
    async def test_accepted_trigger_reports_syncing_immediately(self, store, coordinator):
        """Status shows the drain as soon as the trigger is accepted."""
        await store.enqueue("quest-completion", {"questId": "q1"})

        assert coordinator.trigger(TriggerReason.FOREGROUND) is True
        assert coordinator.status.is_syncing is True

        await coordinator.wait_idle()
        assert coordinator.status.is_syncing is False

    @pytest.mark.asyncio
    async def test_trigger_during_drain_is_dropped(self, store, submitter, broadcaster, coordinator):
        """Overlapping triggers never start a second concurrent drain."""
        tab = await broadcaster.connect()
        await store.enqueue("quest-completion", {"questId": "q1"})
        release = submitter.hold()

        assert coordinator.trigger(TriggerReason.ONLINE) is True
        await submitter.in_flight.wait()
        assert coordinator.is_syncing is True
        assert coordinator.trigger(TriggerReason.FOREGROUND) is False
        assert await coordinator.sync_now(TriggerReason.WAKE) is None

        release.set()
        await coordinator.wait_idle()

        assert len(submitter.calls) == 1
        assert len(tab.pending_messages()) == 1

    @pytest.mark.asyncio
    async def test_trigger_before_start_is_ignored(self, store, submitter, broadcaster):
        coordinator = SyncCoordinator(store, submitter, broadcaster)
        assert coordinator.trigger() is False
        assert coordinator.is_syncing is False

    @pytest.mark.asyncio
    async def test_wake_for_own_tag(self, store, coordinator):
        await store.enqueue("quest-completion", {"questId": "q1"})
        results = await coordinator.handle_wake(DEFAULT_SYNC_TAG)
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_wake_for_unknown_tag_is_ignored(self, store, submitter, coordinator):
        await store.enqueue("quest-completion", {"questId": "q1"})
        assert await coordinator.handle_wake("some-other-tag") is None
        assert submitter.calls == []

    @pytest.mark.asyncio
    async def test_start_loads_pending_count(self, store, submitter, broadcaster):
        await store.enqueue("mood-update", {})
        await store.enqueue("mood-update", {})
        coordinator = SyncCoordinator(store, submitter, broadcaster)
        await coordinator.start()
        try:
            assert coordinator.status.pending_count == 2
        finally:
            await coordinator.stop()

    @pytest.mark.asyncio
    async def test_stop_resets_syncing_state(self, store, submitter, coordinator):
        await store.enqueue("quest-completion", {})
        submitter.hold()
        coordinator.trigger()
        await submitter.in_flight.wait()

        await coordinator.stop()

        assert coordinator.is_syncing is False
        assert coordinator.status.is_syncing is False
        assert await store.count() == 1


class TestRetryPolicyInDrain:
    """Tests for backoff and dead-lettering during drains."""

    @pytest.mark.asyncio
    async def test_backing_off_operation_is_skipped(self, store, broadcaster):
        clock = FakeClock()
        submitter = FakeSubmitter(lambda payload: "transient")
        coordinator = SyncCoordinator(
            store,
            submitter,
            broadcaster,
            retry=RetryPolicy(backoff_base=10, jitter=0),
            clock=clock,
        )
        await store.enqueue("quest-completion", {"questId": "q1"})

        await coordinator.sync_now()
        assert await coordinator.sync_now() == []
        assert len(submitter.calls) == 1

        clock.now += 11
        await coordinator.sync_now()
        assert len(submitter.calls) == 2
        assert (await store.list())[0].payload == {"questId": "q1"}

    @pytest.mark.asyncio
    async def test_dead_letter_after_max_attempts(self, store, broadcaster):
        submitter = FakeSubmitter(lambda payload: "http-500")
        coordinator = SyncCoordinator(
            store, submitter, broadcaster, retry=RetryPolicy(max_attempts=2, backoff_base=0)
        )
        op_id = await store.enqueue("profile-update", {"name": "Ada"})

        await coordinator.sync_now()
        assert await store.count() == 1
        await coordinator.sync_now()

        assert await store.count() == 0
        letters = await store.dead_letters()
        assert [letter.operation.id for letter in letters] == [op_id]
        assert letters[0].attempts == 2
        assert "HTTP 500" in letters[0].reason
        assert coordinator.status.pending_count == 0
