"""
Tests for point-in-time balance queries.
"""

import asyncio
from decimal import Decimal

from finreplay.core.balances import completed_expense_total
from finreplay.core.clock import FixedClock
from finreplay.core.state import ReconstructedState
from finreplay.engine import ReplayEngine
from finreplay.log.memory_store import InMemoryDeltaLog
from finreplay.snapshot.store import InMemorySnapshotStore
from finreplay.tests.factories import USER, create, day, expense, update


def _engine(deltas):
    engine = ReplayEngine(InMemoryDeltaLog(), InMemorySnapshotStore(), clock=FixedClock(day(0)))

    async def fill():
        for d in deltas:
            await engine.append_delta(d)

    asyncio.run(fill())
    return engine


def test_completed_expense_total_filters_status_and_date():
    state = ReconstructedState.from_records(
        {
            "expense": [
                expense("a", "10.50", date=day(1)),
                expense("b", "4", status="pending", date=day(1)),
                expense("c", "100", date=day(9)),
                expense("d", "7"),
                expense("e", "not-a-number", date=day(1)),
            ],
            "goal": [{"id": "g", "amount": "999", "status": "completed"}],
        }
    )

    assert completed_expense_total(state) == Decimal("117.50")
    # Undated expenses are excluded once a cutoff applies
    assert completed_expense_total(state, until=day(2)) == Decimal("10.50")


def test_balance_uses_expense_date_not_delta_date():
    engine = _engine([create("e1", day(1), expense("e1", "20", date=day(5)))])

    assert asyncio.run(engine.calculate_balance_at_date(USER, day(2))) == Decimal("0")
    assert asyncio.run(engine.calculate_balance_at_date(USER, day(5))) == Decimal("20")


def test_balance_history_one_point_per_date_in_order():
    engine = _engine(
        [
            create("e1", day(1), expense("e1", "10", date=day(1))),
            create("e2", day(3), expense("e2", "5", date=day(3))),
        ]
    )

    points = asyncio.run(engine.balance_history(USER, [day(4), day(0), day(2)]))

    assert [p.date for p in points] == [day(4), day(0), day(2)]
    assert [p.balance for p in points] == [Decimal("15"), Decimal("0"), Decimal("10")]
    assert points[0].to_dict() == {"date": day(4).isoformat(), "balance": "15"}


def test_balance_discrepancy():
    before = expense("e1", "100", date=day(1))
    engine = _engine(
        [
            create("e1", day(1), before),
            update("e1", day(3), expense("e1", "150", date=day(1)), before=before),
            create("g1", day(3), {"id": "g1"}, resource_type="goal"),
        ]
    )

    report = asyncio.run(engine.balance_discrepancy(USER, day(2), day(4)))

    assert report.balance1 == Decimal("100")
    assert report.balance2 == Decimal("150")
    assert report.difference == Decimal("50")
    assert report.percentage_change == Decimal("50.00")
    assert report.expense_changes == 1


def test_balance_discrepancy_from_zero_has_no_percentage():
    engine = _engine([create("e1", day(3), expense("e1", "40", date=day(3)))])

    report = asyncio.run(engine.balance_discrepancy(USER, day(1), day(4)))

    assert report.percentage_change is None
    assert report.to_dict()["percentage_change"] is None
    assert report.difference == Decimal("40")


def test_recent_deltas_newest_first_with_filter():
    engine = _engine(
        [
            create("e1", day(1), expense("e1", "1")),
            create("g1", day(2), {"id": "g1"}, resource_type="goal"),
            create("e2", day(3), expense("e2", "2")),
        ]
    )

    recent = asyncio.run(engine.recent_deltas(USER, limit=5, resource_type="expense"))

    assert [d.resource_id for d in recent] == ["e2", "e1"]
    assert len(asyncio.run(engine.recent_deltas(USER, limit=1))) == 1
