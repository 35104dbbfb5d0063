"""
Tests for replay_to_date.

Critical tests:
1. Determinism: same inputs -> identical state bytes
2. Snapshot + tail equals full replay from the log
3. Scenario A/B/C end-to-end
4. Equal created_at broken by delta id
5. Deadline raises rather than truncates
"""

import asyncio
import dataclasses
import json
import tempfile
from decimal import Decimal

import pytest

from finreplay.core.applicator import DeltaApplicator, UpdatePolicy
from finreplay.core.clock import FixedClock
from finreplay.core.errors import (
    DecodeError,
    IntegrityError,
    MissingResourceError,
    ReplayTimeoutError,
    StoreError,
)
from finreplay.core.state import ReconstructedState
from finreplay.engine import ReplayEngine
from finreplay.live import InMemoryLiveState
from finreplay.log.memory_store import InMemoryDeltaLog
from finreplay.replay.coordinator import MISSING_BASE_STATE_WARNING, ReplayCoordinator
from finreplay.snapshot.codec import SnapshotCodec
from finreplay.snapshot.store import FileSnapshotStore, InMemorySnapshotStore
from finreplay.tests.factories import USER, create, day, delete, expense, update


def _engine(live=None, clock=None, **kwargs):
    return ReplayEngine(
        deltas=InMemoryDeltaLog(),
        snapshots=InMemorySnapshotStore(),
        live=live,
        clock=clock or FixedClock(day(0)),
        **kwargs,
    )


def _append_all(engine, deltas):
    async def run():
        for d in deltas:
            await engine.append_delta(d)

    asyncio.run(run())


def _history():
    return [
        create("e1", day(1), expense("e1", "100", date=day(1))),
        create("e2", day(2), expense("e2", "50", date=day(2))),
        update("e1", day(3), expense("e1", "120", date=day(1)), before=expense("e1", "100", date=day(1))),
        create("g1", day(3, hour=18), {"id": "g1", "target": 900}, resource_type="goal"),
        delete("e2", day(4), before=expense("e2", "50", date=day(2))),
        create("e3", day(5), expense("e3", "30", date=day(5))),
    ]


def test_replay_is_deterministic_across_runs():
    engine = _engine()
    _append_all(engine, _history())
    codec = SnapshotCodec()

    checksums = {
        codec.checksum_of(asyncio.run(engine.replay_to_date(USER, day(4))).state) for _ in range(20)
    }

    assert len(checksums) == 1


def test_full_replay_without_snapshot_reports_warning():
    engine = _engine()
    _append_all(engine, _history())

    result = asyncio.run(engine.replay_to_date(USER, day(3)))

    assert result.metadata.mode == "full"
    assert result.metadata.snapshot_id is None
    assert MISSING_BASE_STATE_WARNING in result.metadata.warnings
    assert result.metadata.deltas_applied == 3
    assert result.state.get("expense", "e1")["amount"] == "120"


def test_snapshot_plus_tail_equals_full_replay():
    clock = FixedClock(day(0))
    engine = _engine(clock=clock)
    history = _history()
    _append_all(engine, history[:3])

    # Snapshot projected from the log at day 3
    clock.set(day(3, hour=12))
    snapshot = asyncio.run(engine.create_snapshot(USER))
    _append_all(engine, history[3:])

    incremental = asyncio.run(engine.replay_to_date(USER, day(6)))
    full = asyncio.run(
        ReplayCoordinator(engine.deltas, InMemorySnapshotStore()).replay_to_date(USER, day(6))
    )

    assert incremental.metadata.mode == "incremental"
    assert incremental.metadata.snapshot_id == snapshot.id
    assert incremental.metadata.deltas_applied == 3
    assert incremental.state == full.state


def test_target_before_every_snapshot_replays_from_log():
    clock = FixedClock(day(3))
    engine = _engine(clock=clock)
    _append_all(engine, _history())
    asyncio.run(engine.create_snapshot(USER))

    result = asyncio.run(engine.replay_to_date(USER, day(1)))

    assert result.metadata.mode == "full"
    assert result.state.count("expense") == 1


def test_scenario_a_snapshot_then_create():
    live = InMemoryLiveState()
    live.put(USER, "expense", expense("e1", "400", date=day(-2)))
    live.put(USER, "expense", expense("e2", "600", date=day(-1)))
    engine = _engine(live=live, clock=FixedClock(day(0)))
    snapshot = asyncio.run(engine.create_snapshot(USER))
    assert Decimal(snapshot.total_balance) == Decimal("1000")

    added = create("e3", day(2), expense("e3", "150", date=day(2)))
    _append_all(engine, [added])

    assert asyncio.run(engine.calculate_balance_at_date(USER, day(3))) == Decimal("1150")
    trace = asyncio.run(engine.trace_transaction(USER, "e3"))
    assert trace.found
    assert [e.operation.value for e in trace.lifecycle] == ["CREATE"]


def test_scenario_b_delete_visible_only_after_its_date():
    engine = _engine()
    _append_all(
        engine,
        [
            create("keep", day(0), expense("keep", "10", date=day(0))),
            create("e1", day(1), expense("e1", "500", date=day(1))),
            delete("e1", day(5)),
        ],
    )

    assert asyncio.run(engine.calculate_balance_at_date(USER, day(4))) == Decimal("510")
    assert asyncio.run(engine.calculate_balance_at_date(USER, day(6))) == Decimal("10")


def test_scenario_c_flipped_byte_raises_integrity_error():
    live = InMemoryLiveState()
    live.put(USER, "expense", expense("e1", "400", date=day(-1)))
    engine = _engine(live=live)
    snapshot = asyncio.run(engine.create_snapshot(USER))

    blob = bytearray(snapshot.compressed_state)
    blob[len(blob) // 2] ^= 0xFF
    tampered = dataclasses.replace(snapshot, id="tampered", compressed_state=bytes(blob))
    store = InMemorySnapshotStore()
    asyncio.run(store.save(tampered))
    coordinator = ReplayCoordinator(engine.deltas, store)

    with pytest.raises(IntegrityError):
        asyncio.run(coordinator.replay_to_date(USER, day(1)))


def test_scenario_c_file_store_flipped_base64_character():
    with tempfile.TemporaryDirectory() as tmpdir:
        live = InMemoryLiveState()
        live.put(USER, "expense", expense("e1", "400", date=day(-1)))
        store = FileSnapshotStore(tmpdir)
        engine = ReplayEngine(
            deltas=InMemoryDeltaLog(), snapshots=store, live=live, clock=FixedClock(day(0))
        )
        snapshot = asyncio.run(engine.create_snapshot(USER))

        path = store.path_for(snapshot)
        with open(path) as f:
            doc = json.load(f)
        blob = doc["compressed_state"]
        middle = len(blob) // 2
        doc["compressed_state"] = blob[:middle] + "!" + blob[middle + 1:]
        with open(path, "w") as f:
            json.dump(doc, f)

        with pytest.raises(IntegrityError) as exc:
            asyncio.run(engine.replay_to_date(USER, day(1)))

        assert isinstance(exc.value, DecodeError)
        assert not isinstance(exc.value, StoreError)


def test_equal_timestamps_ordered_by_delta_id():
    when = day(2)
    a = create("e1", when, expense("e1", "1"), delta_id="a")
    b = update("e1", when, expense("e1", "2"), before=expense("e1", "1"), delta_id="b")

    forward = _engine()
    _append_all(forward, [a, b])
    backward = _engine()
    _append_all(backward, [b, a])

    s1 = asyncio.run(forward.replay_to_date(USER, day(3))).state
    s2 = asyncio.run(backward.replay_to_date(USER, day(3))).state

    assert s1 == s2
    assert s1.get("expense", "e1")["amount"] == "2"


def test_target_is_inclusive():
    engine = _engine()
    _append_all(engine, [create("e1", day(2), expense("e1", "5"))])

    assert asyncio.run(engine.replay_to_date(USER, day(2))).state.count("expense") == 1
    assert asyncio.run(engine.replay_to_date(USER, day(1, hour=23))).state.count("expense") == 0


def test_prefix_consistency():
    engine = _engine()
    history = _history()
    _append_all(engine, history)

    coordinator = engine.coordinator
    previous = []
    for i, delta in enumerate(history):
        sequence = asyncio.run(coordinator.replay_deltas(USER, delta.created_at))
        assert sequence[: len(previous)] == previous
        assert sequence == history[: i + 1]
        previous = sequence

        prefix, _ = DeltaApplicator().fold(ReconstructedState.empty(), sequence)
        assert asyncio.run(engine.replay_to_date(USER, delta.created_at)).state == prefix


def test_users_are_isolated():
    engine = _engine()
    _append_all(
        engine,
        [
            create("e1", day(1), expense("e1", "5")),
            create("x1", day(1), expense("x1", "9"), user_id="other"),
        ],
    )

    state = asyncio.run(engine.replay_to_date(USER, day(2))).state

    assert state.get("expense", "x1") is None


def test_returned_state_is_independent_of_snapshot():
    live = InMemoryLiveState()
    live.put(USER, "expense", expense("e1", "400"))
    engine = _engine(live=live)
    asyncio.run(engine.create_snapshot(USER))

    first = asyncio.run(engine.replay_to_date(USER, day(1))).state
    first.collection("expense")["e1"]["amount"] = "0"
    second = asyncio.run(engine.replay_to_date(USER, day(1))).state

    assert second.get("expense", "e1")["amount"] == "400"


def test_skipped_update_surfaced_in_metadata():
    engine = _engine()
    orphan = update("ghost", day(1), expense("ghost", "3"))
    _append_all(engine, [orphan])

    result = asyncio.run(engine.replay_to_date(USER, day(2)))

    assert result.metadata.skipped_updates == (orphan.id,)
    assert result.state.count("expense") == 0


def test_strict_policy_propagates_missing_resource():
    engine = _engine(policy=UpdatePolicy.STRICT)
    _append_all(engine, [update("ghost", day(1), expense("ghost", "3"))])

    with pytest.raises(MissingResourceError):
        asyncio.run(engine.replay_to_date(USER, day(2)))


def test_deadline_exceeded_raises_timeout():
    class SlowLog(InMemoryDeltaLog):
        async def read_range(self, user_id, until, after=None):
            await asyncio.sleep(0.5)
            return await super().read_range(user_id, until, after)

    coordinator = ReplayCoordinator(SlowLog(), InMemorySnapshotStore(), default_timeout=0.05)

    with pytest.raises(ReplayTimeoutError):
        asyncio.run(coordinator.replay_to_date(USER, day(1)))


def test_metadata_serializes():
    engine = _engine()
    _append_all(engine, _history())

    data = asyncio.run(engine.replay_to_date(USER, day(2))).metadata.to_dict()

    assert data["target_date"] == day(2).isoformat()
    assert data["deltas_applied"] == 2
    assert data["reconstructed_at"] == day(0).isoformat()


def test_redelivered_delta_applied_once():
    engine = _engine()
    first = create("e9", day(2), expense("e9", "70", date=day(2)), delta_id="d-first")
    redelivered = dataclasses.replace(first, id="d-redelivered")

    results = [asyncio.run(engine.append_delta(d)) for d in (first, redelivered)]

    assert [r.committed for r in results] == [True, False]
    assert results[1].duplicate
    assert asyncio.run(engine.replay_to_date(USER, day(3))).metadata.deltas_applied == 1
    trace = asyncio.run(engine.trace_transaction(USER, "e9"))
    assert trace.total_changes == 1
