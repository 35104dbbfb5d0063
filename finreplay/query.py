"""
Point-in-time query helpers built on replay.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .core.balances import completed_expense_total
from .core.clock import ensure_utc
from .core.deltas import ResourceType
from .log.store import DeltaLog
from .replay.coordinator import ReplayCoordinator

_PERCENT = Decimal("0.01")


@dataclass(frozen=True)
class BalancePoint:
    date: datetime
    balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date.isoformat(), "balance": str(self.balance)}


@dataclass(frozen=True)
class BalanceDiscrepancy:
    """
    Balance movement between two instants.

    percentage_change is None when balance1 is zero.
    expense_changes counts expense deltas in (date1, date2].
    """
    date1: datetime
    date2: datetime
    balance1: Decimal
    balance2: Decimal
    difference: Decimal
    percentage_change: Optional[Decimal]
    expense_changes: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date1": self.date1.isoformat(),
            "date2": self.date2.isoformat(),
            "balance1": str(self.balance1),
            "balance2": str(self.balance2),
            "difference": str(self.difference),
            "percentage_change": (
                str(self.percentage_change) if self.percentage_change is not None else None
            ),
            "expense_changes": self.expense_changes,
        }


class PointQueries:
    def __init__(self, coordinator: ReplayCoordinator, deltas: DeltaLog) -> None:
        self.coordinator = coordinator
        self.deltas = deltas

    async def calculate_balance_at_date(
        self,
        user_id: str,
        date: datetime,
        timeout: Optional[float] = None,
    ) -> Decimal:
        """
        Sum of completed expense amounts dated at or before date.

        Raises whatever replay_to_date raises.
        """
        target = ensure_utc(date)
        result = await self.coordinator.replay_to_date(user_id, target, timeout=timeout)
        return completed_expense_total(result.state, until=target)

    async def balance_history(self, user_id: str, dates: Iterable[datetime]) -> List[BalancePoint]:
        """One balance per date, in the order given. Replays run concurrently."""
        targets = [ensure_utc(d) for d in dates]
        balances = await asyncio.gather(
            *(self.calculate_balance_at_date(user_id, d) for d in targets)
        )
        return [BalancePoint(date=d, balance=b) for d, b in zip(targets, balances)]

    async def balance_discrepancy(
        self,
        user_id: str,
        date1: datetime,
        date2: datetime,
    ) -> BalanceDiscrepancy:
        first = ensure_utc(date1)
        second = ensure_utc(date2)
        balance1, balance2 = await asyncio.gather(
            self.calculate_balance_at_date(user_id, first),
            self.calculate_balance_at_date(user_id, second),
        )
        difference = balance2 - balance1
        percentage = None
        if balance1 != 0:
            percentage = (difference / balance1 * 100).quantize(_PERCENT)

        lo, hi = min(first, second), max(first, second)
        window = await self.deltas.read_range(user_id, until=hi, after=lo)
        changes = sum(1 for d in window if d.resource_type == ResourceType.EXPENSE.value)

        return BalanceDiscrepancy(
            date1=first,
            date2=second,
            balance1=balance1,
            balance2=balance2,
            difference=difference,
            percentage_change=percentage,
            expense_changes=changes,
        )
