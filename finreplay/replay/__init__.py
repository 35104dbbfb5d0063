"""
Replay system for deterministic state reconstruction.

Replay combines the nearest prior snapshot with the ordered delta tail.
Must be 100% deterministic: same snapshot + deltas -> same state.
"""

from .coordinator import (
    MISSING_BASE_STATE_WARNING,
    ReplayCoordinator,
    ReplayMetadata,
    ReplayResult,
)
from .tracer import LifecycleEntry, TraceNotFound, TraceResult, TransactionTrace, TransactionTracer

__all__ = [
    "MISSING_BASE_STATE_WARNING",
    "ReplayCoordinator",
    "ReplayMetadata",
    "ReplayResult",
    "LifecycleEntry",
    "TraceNotFound",
    "TraceResult",
    "TransactionTrace",
    "TransactionTracer",
]
