"""
Delta applicator: pure state transition functions.

The applicator is the heart of deterministic replay. It must be:
- Pure (no side effects, no I/O)
- Deterministic (same input -> same output)
- Idempotent for CREATE (re-applying overwrites, never duplicates)
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .deltas import Operation, StateDelta
from .errors import DecodeError, MissingResourceError
from .state import Record, ReconstructedState

logger = logging.getLogger(__name__)

# Deltas folded between deadline checks
CHECK_INTERVAL = 256


class UpdatePolicy(str, Enum):
    """
    What an UPDATE does when its resource is absent from the state.

    IGNORE: leave state unchanged, count the skip (surfaced in replay metadata)
    STRICT: raise MissingResourceError
    UPSERT: insert after_state as if it were a CREATE
    """
    IGNORE = "ignore"
    STRICT = "strict"
    UPSERT = "upsert"


class Outcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"


# Handler signature: (collection, delta, policy) -> Outcome
Handler = Callable[[Dict[str, Record], StateDelta, UpdatePolicy], Outcome]


def _require_after(delta: StateDelta) -> Record:
    if not isinstance(delta.after_state, dict):
        raise DecodeError(
            f"{delta.operation.value} delta {delta.id} has no after_state"
        )
    return copy.deepcopy(delta.after_state)


def _create(collection: Dict[str, Record], delta: StateDelta, policy: UpdatePolicy) -> Outcome:
    collection[delta.resource_id] = _require_after(delta)
    return Outcome.APPLIED


def _update(collection: Dict[str, Record], delta: StateDelta, policy: UpdatePolicy) -> Outcome:
    if delta.resource_id not in collection:
        if policy is UpdatePolicy.STRICT:
            raise MissingResourceError(delta.resource_type, delta.resource_id, delta.id)
        if policy is UpdatePolicy.IGNORE:
            return Outcome.SKIPPED
    collection[delta.resource_id] = _require_after(delta)
    return Outcome.APPLIED


def _delete(collection: Dict[str, Record], delta: StateDelta, policy: UpdatePolicy) -> Outcome:
    collection.pop(delta.resource_id, None)
    return Outcome.APPLIED


@dataclass
class FoldStats:
    """
    Counters collected while folding a delta sequence.

    Fields:
        applied: Deltas folded (including no-op DELETEs)
        skipped_updates: Delta ids of UPDATEs dropped under UpdatePolicy.IGNORE
    """
    applied: int = 0
    skipped_updates: List[str] = field(default_factory=list)


class DeltaApplicator:
    """
    Registry of per-operation handlers.

    Usage:
        applicator = DeltaApplicator(policy=UpdatePolicy.IGNORE)
        new_state = applicator.apply(state, delta)
        state, stats = applicator.fold(state, deltas)
    """

    def __init__(self, policy: UpdatePolicy = UpdatePolicy.IGNORE) -> None:
        self.policy = UpdatePolicy(policy)
        self._handlers: Dict[Operation, Handler] = {
            Operation.CREATE: _create,
            Operation.UPDATE: _update,
            Operation.DELETE: _delete,
        }

    def _step(self, collections: Dict[str, Dict[str, Record]], delta: StateDelta) -> Outcome:
        handler = self._handlers[delta.operation]
        collection = collections.setdefault(delta.resource_type, {})
        return handler(collection, delta, self.policy)

    def apply(self, state: ReconstructedState, delta: StateDelta) -> ReconstructedState:
        """
        Apply one delta and return a new state.

        The input state is not modified: only the touched collection is copied.

        Raises:
            MissingResourceError: UPDATE on absent resource under STRICT policy
            DecodeError: CREATE/UPDATE without after_state
        """
        collections = dict(state.collections)
        collections[delta.resource_type] = dict(collections.get(delta.resource_type, {}))
        self._step(collections, delta)
        return ReconstructedState(collections)

    def fold(
        self,
        state: ReconstructedState,
        deltas: Iterable[StateDelta],
        check: Optional[Callable[[], None]] = None,
    ) -> Tuple[ReconstructedState, FoldStats]:
        """
        Fold an ordered delta sequence onto a copy of state.

        Args:
            state: Base state (not modified)
            deltas: Deltas already in replay order
            check: Called every CHECK_INTERVAL deltas; may raise to abort

        Returns:
            (new_state, stats)
        """
        work = state.copy()
        stats = FoldStats()
        for index, delta in enumerate(deltas, start=1):
            outcome = self._step(work.collections, delta)
            if outcome is Outcome.APPLIED:
                stats.applied += 1
            else:
                stats.skipped_updates.append(delta.id)
                logger.warning(
                    "UPDATE on missing resource skipped",
                    extra={
                        "trace_id": delta.user_id,
                        "delta_id": delta.id,
                        "resource_type": delta.resource_type,
                        "resource_id": delta.resource_id,
                    },
                )
            if check is not None and index % CHECK_INTERVAL == 0:
                check()
        return work, stats


def apply_delta(
    state: ReconstructedState,
    delta: StateDelta,
    policy: UpdatePolicy = UpdatePolicy.IGNORE,
) -> ReconstructedState:
    """Functional shortcut for DeltaApplicator(policy).apply(state, delta)."""
    return DeltaApplicator(policy).apply(state, delta)
