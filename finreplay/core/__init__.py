"""
Core deterministic replay primitives.

This module provides the foundational abstractions for state reconstruction:
- StateDelta: Immutable change records
- ReconstructedState: Per-call resource collections
- DeltaApplicator: Pure delta folding
- Canonical: Deterministic serialization
- Clock: Injectable time source
- IDs: Stable identifier generation
"""

from .deltas import Operation, ResourceType, StateDelta, collapse_redeliveries, sort_deltas
from .state import ReconstructedState
from .applicator import DeltaApplicator, FoldStats, UpdatePolicy, apply_delta
from .canonical import canonicalize, canonical_json_bytes, canonical_json_str
from .clock import FixedClock, SystemClock, ensure_utc, parse_timestamp
from .ids import new_id, stable_id
from .errors import (
    ConfigError,
    DecodeError,
    IntegrityError,
    MissingResourceError,
    ReplayEngineError,
    ReplayTimeoutError,
    SnapshotBatchInProgressError,
    StoreError,
)

__all__ = [
    "Operation",
    "ResourceType",
    "StateDelta",
    "sort_deltas",
    "collapse_redeliveries",
    "ReconstructedState",
    "DeltaApplicator",
    "FoldStats",
    "UpdatePolicy",
    "apply_delta",
    "canonicalize",
    "canonical_json_bytes",
    "canonical_json_str",
    "FixedClock",
    "SystemClock",
    "ensure_utc",
    "parse_timestamp",
    "new_id",
    "stable_id",
    "ConfigError",
    "DecodeError",
    "IntegrityError",
    "MissingResourceError",
    "ReplayEngineError",
    "ReplayTimeoutError",
    "SnapshotBatchInProgressError",
    "StoreError",
]
