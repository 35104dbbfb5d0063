"""
Builders for deltas and records used across the test suite.
"""

from datetime import datetime, timezone

from finreplay.core.deltas import Operation, StateDelta
from finreplay.core.ids import stable_id

UTC = timezone.utc
USER = "user-1"


def day(n: int, hour: int = 0) -> datetime:
    """Midnight UTC of 2024-01-(10 + n); day(0) is the snapshot reference."""
    return datetime(2024, 1, 10 + n, hour, tzinfo=UTC)


def expense(rid: str, amount, status: str = "completed", date: datetime = None, **extra) -> dict:
    record = {"id": rid, "amount": amount, "status": status}
    if date is not None:
        record["date"] = date.isoformat()
    record.update(extra)
    return record


def make_delta(
    operation: Operation,
    resource_id: str,
    created_at: datetime,
    after=None,
    before=None,
    resource_type: str = "expense",
    user_id: str = USER,
    delta_id: str = None,
    changed_fields=(),
) -> StateDelta:
    return StateDelta(
        id=delta_id or stable_id(user_id, resource_id, operation.value, created_at.isoformat()),
        user_id=user_id,
        resource_type=resource_type,
        resource_id=resource_id,
        operation=operation,
        created_at=created_at,
        before_state=before,
        after_state=after,
        changed_fields=changed_fields,
    )


def create(resource_id: str, created_at: datetime, record: dict, **kwargs) -> StateDelta:
    return make_delta(Operation.CREATE, resource_id, created_at, after=record, **kwargs)


def update(resource_id: str, created_at: datetime, record: dict, before=None, **kwargs) -> StateDelta:
    changed = tuple(sorted(k for k in record if (before or {}).get(k) != record[k]))
    return make_delta(
        Operation.UPDATE, resource_id, created_at, after=record, before=before,
        changed_fields=changed, **kwargs
    )


def delete(resource_id: str, created_at: datetime, before=None, **kwargs) -> StateDelta:
    return make_delta(Operation.DELETE, resource_id, created_at, before=before, **kwargs)
