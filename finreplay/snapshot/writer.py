"""
Snapshot writer: capture a user's live state as an immutable snapshot.

Writes for one user are serialized by a per-user asyncio.Lock so two
near-simultaneous snapshots never race for "latest at date D".
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from ..core.balances import completed_expense_total
from ..core.clock import SystemClock
from ..core.deltas import ResourceType
from ..core.errors import ReplayEngineError, SnapshotBatchInProgressError
from ..core.ids import new_id
from ..core.state import ReconstructedState
from ..live import LiveStateSource
from .. import metrics
from .codec import CODEC_VERSION, COMPRESSION, SnapshotCodec
from .model import Snapshot
from .store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class SnapshotBatchResult:
    """
    Outcome of a batch run.

    Fields:
        created: user_id -> snapshot id
        failed: user_id -> error message
        elapsed_seconds: Wall time of the run
    """
    created: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    @property
    def success_count(self) -> int:
        return len(self.created)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


class SnapshotWriter:
    def __init__(
        self,
        source: LiveStateSource,
        store: SnapshotStore,
        codec: Optional[SnapshotCodec] = None,
        clock=None,
    ) -> None:
        self.source = source
        self.store = store
        self.codec = codec or SnapshotCodec()
        self.clock = clock or SystemClock()
        # user_id -> [lock, holders + waiters]; dropped when the count hits 0
        self._locks: Dict[str, list] = {}
        self._batch_running = False

    @contextlib.asynccontextmanager
    async def _user_lock(self, user_id: str):
        entry = self._locks.get(user_id)
        if entry is None:
            entry = self._locks[user_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[user_id]

    async def create_snapshot(self, user_id: str) -> Snapshot:
        """
        Capture and persist the user's current state.

        Side effect: exactly one new snapshot in the store. Prior snapshots are
        never touched.

        Raises:
            StoreError: Live store or snapshot store failure
        """
        async with self._user_lock(user_id):
            started = time.perf_counter()
            # Must precede the read: deltas racing it are re-applied on replay
            snapshot_date = self.clock.now()
            resources = await self.source.fetch_resources(user_id)
            state = ReconstructedState.from_records(resources)
            encoded = self.codec.encode(state)

            snapshot = Snapshot(
                id=new_id(),
                user_id=user_id,
                snapshot_date=snapshot_date,
                created_at=self.clock.now(),
                compressed_state=encoded.compressed,
                checksum=encoded.checksum,
                transaction_count=state.count(ResourceType.EXPENSE.value),
                total_balance=str(completed_expense_total(state)),
                compression=COMPRESSION,
                metadata={
                    "resource_counts": state.resource_counts(),
                    "original_size": encoded.original_size,
                    "compressed_size": encoded.compressed_size,
                    "codec_version": CODEC_VERSION,
                },
            )
            await self.store.save(snapshot)

            elapsed = time.perf_counter() - started
            metrics.observe_snapshot_created(elapsed)
            logger.info(
                "Snapshot created",
                extra={
                    "trace_id": user_id,
                    "snapshot_id": snapshot.id,
                    "snapshot_date": snapshot.snapshot_date.isoformat(),
                    "compressed_size": encoded.compressed_size,
                },
            )
            return snapshot

    async def create_snapshots(self, user_ids: Iterable[str]) -> SnapshotBatchResult:
        """
        Create one snapshot per user, sequentially.

        Per-user failures are recorded and logged; the batch continues.

        Raises:
            SnapshotBatchInProgressError: If another batch is running
        """
        if self._batch_running:
            raise SnapshotBatchInProgressError("snapshot batch already running")
        self._batch_running = True
        started = time.perf_counter()
        result = SnapshotBatchResult()
        try:
            for user_id in user_ids:
                try:
                    snapshot = await self.create_snapshot(user_id)
                    result.created[user_id] = snapshot.id
                except (ReplayEngineError, ValueError) as ex:
                    result.failed[user_id] = str(ex)
                    logger.error(
                        "Snapshot failed: %s", ex, extra={"trace_id": user_id}
                    )
        finally:
            self._batch_running = False
            result.elapsed_seconds = time.perf_counter() - started
        logger.info(
            "Snapshot batch finished in %.2fs - success: %d, failed: %d",
            result.elapsed_seconds,
            result.success_count,
            result.failure_count,
        )
        return result
