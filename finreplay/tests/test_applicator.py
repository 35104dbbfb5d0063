"""
Tests for the delta applicator.

Critical properties:
1. apply() never mutates its input state
2. CREATE is idempotent (overwrite, never duplicate)
3. DELETE of an absent resource is a no-op
4. UPDATE on a missing resource follows UpdatePolicy
5. fold() calls the deadline check periodically
"""

import dataclasses

import pytest

from finreplay.core.applicator import CHECK_INTERVAL, DeltaApplicator, UpdatePolicy, apply_delta
from finreplay.core.errors import DecodeError, MissingResourceError
from finreplay.core.state import ReconstructedState
from finreplay.tests.factories import create, day, delete, expense, update


def test_apply_does_not_mutate_input():
    base = ReconstructedState.from_records({"expense": [expense("e1", 10)]})
    snapshot_of_base = base.to_dict()

    new = apply_delta(base, update("e1", day(1), expense("e1", 99), before=expense("e1", 10)))

    assert base.to_dict() == snapshot_of_base
    assert new.get("expense", "e1")["amount"] == 99


def test_create_is_idempotent():
    delta = create("e1", day(1), expense("e1", 10))
    state = apply_delta(ReconstructedState.empty(), delta)
    again = apply_delta(state, delta)

    assert again.count("expense") == 1
    assert again == state


def test_create_overwrites_existing_record():
    state = ReconstructedState.from_records({"expense": [expense("e1", 10)]})
    state = apply_delta(state, create("e1", day(1), expense("e1", 20)))

    assert state.get("expense", "e1")["amount"] == 20


def test_delete_absent_is_noop():
    state = ReconstructedState.from_records({"expense": [expense("e1", 10)]})
    after = apply_delta(state, delete("missing", day(1)))

    assert after == state


def test_delete_removes_record():
    state = ReconstructedState.from_records({"expense": [expense("e1", 10), expense("e2", 5)]})
    after = apply_delta(state, delete("e1", day(1)))

    assert after.get("expense", "e1") is None
    assert after.count("expense") == 1


def test_update_missing_ignore_policy_skips():
    applicator = DeltaApplicator(UpdatePolicy.IGNORE)
    delta = update("ghost", day(1), expense("ghost", 7))

    state, stats = applicator.fold(ReconstructedState.empty(), [delta])

    assert state.count("expense") == 0
    assert stats.skipped_updates == [delta.id]
    assert stats.applied == 0


def test_update_missing_strict_policy_raises():
    applicator = DeltaApplicator(UpdatePolicy.STRICT)

    with pytest.raises(MissingResourceError) as exc:
        applicator.apply(ReconstructedState.empty(), update("ghost", day(1), expense("ghost", 7)))

    assert exc.value.resource_id == "ghost"


def test_update_missing_upsert_policy_inserts():
    applicator = DeltaApplicator(UpdatePolicy.UPSERT)

    state = applicator.apply(ReconstructedState.empty(), update("ghost", day(1), expense("ghost", 7)))

    assert state.get("expense", "ghost")["amount"] == 7


def test_create_without_after_state_is_decode_error():
    delta = create("e1", day(1), expense("e1", 1))
    broken = dataclasses.replace(delta, after_state=None)

    with pytest.raises(DecodeError):
        apply_delta(ReconstructedState.empty(), broken)


def test_unknown_resource_type_tracked_opaquely():
    delta = create("s1", day(1), {"id": "s1", "plan": "pro"}, resource_type="subscription")

    state = apply_delta(ReconstructedState.empty(), delta)

    assert state.get("subscription", "s1") == {"id": "s1", "plan": "pro"}


def test_fold_matches_repeated_apply():
    deltas = [
        create("e1", day(1), expense("e1", 10)),
        create("e2", day(2), expense("e2", 20)),
        update("e1", day(3), expense("e1", 15), before=expense("e1", 10)),
        delete("e2", day(4)),
    ]
    stepwise = ReconstructedState.empty()
    for d in deltas:
        stepwise = apply_delta(stepwise, d)

    folded, stats = DeltaApplicator().fold(ReconstructedState.empty(), deltas)

    assert folded == stepwise
    assert stats.applied == 4


def test_fold_calls_check_every_interval():
    calls = []
    deltas = [create(f"e{i}", day(1), expense(f"e{i}", i)) for i in range(CHECK_INTERVAL * 2 + 1)]

    DeltaApplicator().fold(ReconstructedState.empty(), deltas, check=lambda: calls.append(1))

    assert len(calls) == 2


def test_fold_check_can_abort():
    class Stop(Exception):
        pass

    def check():
        raise Stop()

    deltas = [create(f"e{i}", day(1), expense(f"e{i}", i)) for i in range(CHECK_INTERVAL + 1)]

    with pytest.raises(Stop):
        DeltaApplicator().fold(ReconstructedState.empty(), deltas, check=check)
