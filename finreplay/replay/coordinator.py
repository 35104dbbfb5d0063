"""
Replay coordinator: reconstruct a user's state as of a past instant.

Algorithm:
1. Pick the latest snapshot with snapshot_date <= target (ties: newest created).
2. Decode and verify it; integrity failures abort the replay.
3. Read deltas with created_at in (snapshot_date, target], or <= target
   when there is no snapshot, ordered by (created_at, id).
4. Fold them through the applicator.

Cost is O(deltas since the chosen snapshot).
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..core.applicator import DeltaApplicator
from ..core.clock import SystemClock, ensure_utc
from ..core.deltas import StateDelta, sort_deltas
from ..core.errors import IntegrityError, ReplayTimeoutError
from ..core.state import ReconstructedState
from ..log.store import DeltaLog
from ..logging_config import get_logger
from ..snapshot.codec import SnapshotCodec
from ..snapshot.store import SnapshotStore
from .. import metrics

MISSING_BASE_STATE_WARNING = (
    "MissingBaseStateWarning: no snapshot at or before target date, "
    "state rebuilt from the full delta log"
)

MODE_INCREMENTAL = "incremental"
MODE_FULL = "full"


@dataclass(frozen=True)
class ReplayMetadata:
    """
    Describes how a reconstruction was produced.

    Fields:
        user_id: Partition replayed
        target_date: Instant reconstructed
        snapshot_id: Base snapshot (None for a full replay)
        snapshot_date: Base snapshot date (None for a full replay)
        mode: "incremental" (snapshot + tail) or "full" (delta log only)
        deltas_applied: Number of deltas folded
        skipped_updates: Ids of UPDATE deltas whose resource was absent
        warnings: Non-fatal conditions (e.g. MissingBaseStateWarning)
        elapsed_ms: Wall time of the call
        reconstructed_at: When the reconstruction finished
    """
    user_id: str
    target_date: datetime
    snapshot_id: Optional[str]
    snapshot_date: Optional[datetime]
    mode: str
    deltas_applied: int
    skipped_updates: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    elapsed_ms: float = 0.0
    reconstructed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "target_date": self.target_date.isoformat(),
            "snapshot_id": self.snapshot_id,
            "snapshot_date": self.snapshot_date.isoformat() if self.snapshot_date else None,
            "mode": self.mode,
            "deltas_applied": self.deltas_applied,
            "skipped_updates": list(self.skipped_updates),
            "warnings": list(self.warnings),
            "elapsed_ms": round(self.elapsed_ms, 3),
            "reconstructed_at": self.reconstructed_at.isoformat() if self.reconstructed_at else None,
        }


@dataclass(frozen=True)
class ReplayResult:
    """
    Result of replay operation.

    Fields:
        state: Reconstructed state (owned by the caller)
        metadata: How it was produced
    """
    state: ReconstructedState
    metadata: ReplayMetadata = field(compare=False)


class ReplayCoordinator:
    def __init__(
        self,
        deltas: DeltaLog,
        snapshots: SnapshotStore,
        codec: Optional[SnapshotCodec] = None,
        applicator: Optional[DeltaApplicator] = None,
        default_timeout: Optional[float] = None,
        clock=None,
    ) -> None:
        """
        Args:
            deltas: Delta log reader
            snapshots: Snapshot store
            codec: Snapshot codec (default settings if omitted)
            applicator: Delta applicator (UpdatePolicy.IGNORE if omitted)
            default_timeout: Deadline in seconds when a call passes none
            clock: Source of reconstructed_at timestamps
        """
        self.deltas = deltas
        self.snapshots = snapshots
        self.codec = codec or SnapshotCodec()
        self.applicator = applicator or DeltaApplicator()
        self.default_timeout = default_timeout
        self.clock = clock or SystemClock()

    async def replay_to_date(
        self,
        user_id: str,
        target_date: datetime,
        timeout: Optional[float] = None,
    ) -> ReplayResult:
        """
        Reconstruct user_id's state as of target_date.

        Args:
            user_id: Partition key
            target_date: Instant to reconstruct (naive = UTC)
            timeout: Deadline in seconds (falls back to default_timeout)

        Returns:
            ReplayResult with fresh state and metadata

        Raises:
            IntegrityError: Base snapshot failed checksum verification
            DecodeError: Base snapshot blob is corrupt or unsupported
            ReplayTimeoutError: Deadline exceeded (no partial state)
            StoreError: Storage failure (not retried here)
        """
        target = ensure_utc(target_date)
        limit = timeout if timeout is not None else self.default_timeout
        if limit is None:
            return await self._replay(user_id, target, None)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit
        try:
            return await asyncio.wait_for(self._replay(user_id, target, deadline), timeout=limit)
        except (asyncio.TimeoutError, ReplayTimeoutError) as ex:
            metrics.record_timeout()
            get_logger(__name__, trace_id=user_id).warning(
                "Replay to %s exceeded %.3fs deadline", target.isoformat(), limit
            )
            raise ReplayTimeoutError(
                f"replay of {user_id} to {target.isoformat()} exceeded {limit}s"
            ) from ex

    async def _replay(
        self,
        user_id: str,
        target: datetime,
        deadline: Optional[float],
    ) -> ReplayResult:
        started = time.perf_counter()
        log = get_logger(__name__, trace_id=user_id)
        warnings: List[str] = []

        try:
            snapshot = await self.snapshots.find_at_or_before(user_id, target)
        except IntegrityError as ex:
            metrics.record_integrity_failure()
            log.error("Base snapshot for %s is unreadable: %s", target.isoformat(), ex)
            raise

        if snapshot is None:
            base = ReconstructedState.empty()
            after = None
            mode = MODE_FULL
            warnings.append(MISSING_BASE_STATE_WARNING)
            log.info("No base snapshot, full replay")
        else:
            try:
                base = await asyncio.to_thread(
                    self.codec.decode, snapshot.compressed_state, snapshot.checksum
                )
            except IntegrityError as ex:
                metrics.record_integrity_failure()
                log.error("Snapshot %s failed verification: %s", snapshot.id, ex)
                raise
            after = snapshot.snapshot_date
            mode = MODE_INCREMENTAL

        deltas = sort_deltas(await self.deltas.read_range(user_id, until=target, after=after))

        check = None
        if deadline is not None:
            loop = asyncio.get_running_loop()

            def check() -> None:
                if loop.time() > deadline:
                    raise ReplayTimeoutError(f"replay of {user_id} hit its deadline mid-fold")

        state, stats = self.applicator.fold(base, deltas, check)

        elapsed = time.perf_counter() - started
        metrics.observe_replay(mode, elapsed, stats.applied)
        metadata = ReplayMetadata(
            user_id=user_id,
            target_date=target,
            snapshot_id=snapshot.id if snapshot else None,
            snapshot_date=snapshot.snapshot_date if snapshot else None,
            mode=mode,
            deltas_applied=stats.applied,
            skipped_updates=tuple(stats.skipped_updates),
            warnings=tuple(warnings),
            elapsed_ms=elapsed * 1000.0,
            reconstructed_at=self.clock.now(),
        )
        log.debug(
            "Replayed %d deltas (%s) in %.1fms", stats.applied, mode, metadata.elapsed_ms
        )
        return ReplayResult(state=state, metadata=metadata)

    async def replay_deltas(self, user_id: str, target_date: datetime) -> List[StateDelta]:
        """Full ordered delta sequence a snapshot-free replay to target_date folds."""
        target = ensure_utc(target_date)
        return sort_deltas(await self.deltas.read_range(user_id, until=target))
