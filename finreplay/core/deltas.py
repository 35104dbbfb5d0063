"""
Delta model for event-sourced state reconstruction.

A delta is the immutable record of one create/update/delete against one
resource instance. Deltas are written by the mutating code paths of the
application and are read-only to this engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .clock import ensure_utc, parse_timestamp


class Operation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ResourceType(str, Enum):
    """
    Resource types known to the finance platform.

    Delta.resource_type is a plain string; values outside this enum are
    tracked opaquely under their own collection.
    """
    EXPENSE = "expense"
    GOAL = "goal"
    CATEGORY = "category"
    BUDGET = "budget"
    VAULT = "vault"
    BILL = "bill"
    DEBT = "debt"
    INVESTMENT = "investment"


def _type_name(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


@dataclass(frozen=True)
class StateDelta:
    """
    Immutable delta record.

    Fields:
        id: Delta identifier (stable secondary ordering key)
        user_id: Partition key
        resource_type: Collection name (e.g., "expense")
        resource_id: Target resource identifier
        operation: CREATE, UPDATE or DELETE
        before_state: Resource before the change (None for CREATE)
        after_state: Resource after the change (None for DELETE)
        changed_fields: Ordered field names touched by an UPDATE
        triggered_by: Actor identifier
        ip_address: Client address, if known
        created_at: Commit time (UTC)
        metadata: Free-form producer metadata
    """
    id: str
    user_id: str
    resource_type: str
    resource_id: str
    operation: Operation
    created_at: datetime
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    changed_fields: Tuple[str, ...] = ()
    triggered_by: str = "user"
    ip_address: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Frozen: normalize through object.__setattr__
        object.__setattr__(self, "resource_type", _type_name(self.resource_type))
        object.__setattr__(self, "operation", Operation(self.operation))
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))
        object.__setattr__(self, "changed_fields", tuple(self.changed_fields or ()))

    def sort_key(self) -> Tuple[datetime, str]:
        """Replay order: created_at ascending, delta id breaks ties."""
        return (self.created_at, self.id)

    def idempotency_key(self) -> Tuple[str, str, str]:
        """Redelivery identity: a second delta with this key is the same change."""
        return (self.resource_id, self.operation.value, self.created_at.isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "operation": self.operation.value,
            "before_state": self.before_state,
            "after_state": self.after_state,
            "changed_fields": list(self.changed_fields),
            "triggered_by": self.triggered_by,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateDelta":
        created_at = data["created_at"]
        if isinstance(created_at, str):
            created_at = parse_timestamp(created_at)
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            resource_type=data["resource_type"],
            resource_id=str(data["resource_id"]),
            operation=Operation(data["operation"]),
            created_at=created_at,
            before_state=data.get("before_state"),
            after_state=data.get("after_state"),
            changed_fields=tuple(data.get("changed_fields") or ()),
            triggered_by=data.get("triggered_by", "user"),
            ip_address=data.get("ip_address"),
            metadata=data.get("metadata") or {},
        )


def sort_deltas(deltas) -> list:
    """Return deltas in deterministic replay order."""
    return sorted(deltas, key=StateDelta.sort_key)


def collapse_redeliveries(deltas) -> list:
    """
    Return deltas in replay order with redeliveries dropped.

    Among deltas sharing an idempotency key the first in replay order is kept.
    """
    seen = set()
    out = []
    for delta in sort_deltas(deltas):
        key = delta.idempotency_key()
        if key in seen:
            continue
        seen.add(key)
        out.append(delta)
    return out
