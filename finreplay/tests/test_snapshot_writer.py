"""
Tests for the snapshot writer.
"""

import asyncio
from decimal import Decimal

import pytest

from finreplay.core.clock import FixedClock
from finreplay.core.errors import SnapshotBatchInProgressError, StoreError
from finreplay.live import InMemoryLiveState, LiveStateSource
from finreplay.snapshot.codec import SnapshotCodec
from finreplay.snapshot.store import InMemorySnapshotStore
from finreplay.snapshot.writer import SnapshotWriter
from finreplay.tests.factories import USER, day, expense


def _live():
    live = InMemoryLiveState()
    live.put(USER, "expense", expense("e1", "400", date=day(-2)))
    live.put(USER, "expense", expense("e2", "600", date=day(-1)))
    live.put(USER, "expense", expense("e3", "50", status="pending", date=day(-1)))
    live.put(USER, "goal", {"id": "g1", "target": 1000})
    return live


def test_create_snapshot_captures_state_and_metadata():
    store = InMemorySnapshotStore()
    writer = SnapshotWriter(_live(), store, clock=FixedClock(day(0)))

    snapshot = asyncio.run(writer.create_snapshot(USER))

    assert snapshot.snapshot_date == day(0)
    assert snapshot.transaction_count == 3
    assert Decimal(snapshot.total_balance) == Decimal("1000")
    assert snapshot.metadata["resource_counts"] == {"expense": 3, "goal": 1}
    assert snapshot.metadata["compressed_size"] == len(snapshot.compressed_state)

    state = SnapshotCodec().decode(snapshot.compressed_state, snapshot.checksum)
    assert state.get("goal", "g1") == {"id": "g1", "target": 1000}
    assert asyncio.run(store.latest(USER)).id == snapshot.id


def test_snapshots_are_never_overwritten():
    store = InMemorySnapshotStore()
    clock = FixedClock(day(0))
    writer = SnapshotWriter(_live(), store, clock=clock)

    first = asyncio.run(writer.create_snapshot(USER))
    clock.set(day(1))
    second = asyncio.run(writer.create_snapshot(USER))

    assert first.id != second.id
    assert [s.id for s in asyncio.run(store.list_user(USER))] == [first.id, second.id]


def test_concurrent_snapshots_for_one_user_are_serialized():
    active = []
    overlaps = []

    class SlowLive(LiveStateSource):
        async def fetch_resources(self, user_id):
            active.append(user_id)
            if active.count(user_id) > 1:
                overlaps.append(user_id)
            await asyncio.sleep(0.01)
            active.remove(user_id)
            return {"expense": [expense("e1", 1)]}

    writer = SnapshotWriter(SlowLive(), InMemorySnapshotStore(), clock=FixedClock(day(0)))

    async def run():
        return await asyncio.gather(*(writer.create_snapshot(USER) for _ in range(3)))

    snapshots = asyncio.run(run())

    assert overlaps == []
    assert len({s.id for s in snapshots}) == 3
    assert writer._locks == {}


def test_batch_counts_successes_and_failures():
    class FlakyLive(LiveStateSource):
        async def fetch_resources(self, user_id):
            if user_id == "broken":
                raise StoreError("live store unavailable")
            return {"expense": [expense("e1", 10)]}

    writer = SnapshotWriter(FlakyLive(), InMemorySnapshotStore(), clock=FixedClock(day(0)))

    result = asyncio.run(writer.create_snapshots(["a", "broken", "b"]))

    assert result.success_count == 2
    assert result.failure_count == 1
    assert "live store unavailable" in result.failed["broken"]


def test_user_locks_dropped_after_batch():
    writer = SnapshotWriter(_live(), InMemorySnapshotStore(), clock=FixedClock(day(0)))

    result = asyncio.run(writer.create_snapshots([f"user-{i}" for i in range(50)]))

    assert result.success_count == 50
    assert writer._locks == {}


def test_concurrent_batch_rejected():
    class SlowLive(LiveStateSource):
        async def fetch_resources(self, user_id):
            await asyncio.sleep(0.02)
            return {}

    writer = SnapshotWriter(SlowLive(), InMemorySnapshotStore(), clock=FixedClock(day(0)))

    async def run():
        first = asyncio.create_task(writer.create_snapshots(["a", "b"]))
        await asyncio.sleep(0)
        with pytest.raises(SnapshotBatchInProgressError):
            await writer.create_snapshots(["c"])
        return await first

    result = asyncio.run(run())

    assert result.success_count == 2
