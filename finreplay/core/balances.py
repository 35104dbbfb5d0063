"""
Balance folds over reconstructed state.

Shared by the snapshot writer (total_balance at write time) and the
point-in-time query layer.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from .clock import ensure_utc, parse_timestamp
from .deltas import ResourceType
from .state import Record, ReconstructedState

logger = logging.getLogger(__name__)

COMPLETED = "completed"


def _amount(record: Record) -> Decimal:
    raw = record.get("amount")
    if raw is None or raw == "":
        return Decimal(0)
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        logger.warning("Unparsable amount %r on expense %s", raw, record.get("id"))
        return Decimal(0)


def _record_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str) and value:
        try:
            return parse_timestamp(value)
        except ValueError:
            return None
    return None


def completed_expense_total(
    state: ReconstructedState,
    until: Optional[datetime] = None,
) -> Decimal:
    """
    Sum amounts of completed expenses.

    Args:
        state: Reconstructed state
        until: If set, only expenses whose "date" is <= until count;
            expenses without a parsable date are excluded

    Returns:
        Decimal total (0 when there are no expenses)
    """
    bound = ensure_utc(until) if until is not None else None
    total = Decimal(0)
    for record in state.collection(ResourceType.EXPENSE.value).values():
        if record.get("status") != COMPLETED:
            continue
        if bound is not None:
            when = _record_date(record.get("date"))
            if when is None or when > bound:
                continue
        total += _amount(record)
    return total
