"""
Transaction tracer: the full lifecycle of one resource.

A resource's causal history is self-contained in its own deltas, so tracing
reads the delta log directly and never touches snapshots.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from ..core.deltas import Operation, StateDelta, sort_deltas
from ..log.store import DeltaLog


@dataclass(frozen=True)
class LifecycleEntry:
    delta_id: str
    operation: Operation
    timestamp: datetime
    before_state: Optional[Dict[str, Any]]
    after_state: Optional[Dict[str, Any]]
    changed_fields: Tuple[str, ...]
    triggered_by: str
    ip_address: Optional[str]

    @classmethod
    def from_delta(cls, delta: StateDelta) -> "LifecycleEntry":
        return cls(
            delta_id=delta.id,
            operation=delta.operation,
            timestamp=delta.created_at,
            before_state=delta.before_state,
            after_state=delta.after_state,
            changed_fields=delta.changed_fields,
            triggered_by=delta.triggered_by,
            ip_address=delta.ip_address,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delta_id": self.delta_id,
            "operation": self.operation.value,
            "timestamp": self.timestamp.isoformat(),
            "before_state": self.before_state,
            "after_state": self.after_state,
            "changed_fields": list(self.changed_fields),
            "triggered_by": self.triggered_by,
            "ip_address": self.ip_address,
        }


@dataclass(frozen=True)
class TransactionTrace:
    """
    Lifecycle of one resource.

    Fields:
        resource_id: Traced resource
        resource_type: Collection of the resource
        lifecycle: One entry per delta, in replay order
        created: Timestamp of the CREATE delta (None if the log has none)
        last_modified: Timestamp of the last delta
        total_changes: Number of deltas
    """
    resource_id: str
    resource_type: str
    lifecycle: Tuple[LifecycleEntry, ...]
    created: Optional[datetime]
    last_modified: datetime
    total_changes: int

    found = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": True,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "lifecycle": [entry.to_dict() for entry in self.lifecycle],
            "created": self.created.isoformat() if self.created else None,
            "last_modified": self.last_modified.isoformat(),
            "total_changes": self.total_changes,
        }


@dataclass(frozen=True)
class TraceNotFound:
    resource_id: str
    message: str = "No audit trail found for this transaction"

    found = False

    def to_dict(self) -> Dict[str, Any]:
        return {"found": False, "resource_id": self.resource_id, "message": self.message}


TraceResult = Union[TransactionTrace, TraceNotFound]


class TransactionTracer:
    def __init__(self, deltas: DeltaLog) -> None:
        self.deltas = deltas

    async def trace_transaction(self, user_id: str, resource_id: str) -> TraceResult:
        """
        Trace every change to resource_id.

        Returns:
            TransactionTrace, or TraceNotFound when the log has no deltas for it
        """
        deltas = sort_deltas(await self.deltas.read_resource(user_id, resource_id))
        if not deltas:
            return TraceNotFound(resource_id=resource_id)

        created = next((d.created_at for d in deltas if d.operation is Operation.CREATE), None)
        return TransactionTrace(
            resource_id=resource_id,
            resource_type=deltas[0].resource_type,
            lifecycle=tuple(LifecycleEntry.from_delta(d) for d in deltas),
            created=created,
            last_modified=deltas[-1].created_at,
            total_changes=len(deltas),
        )
