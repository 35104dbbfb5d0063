"""
ReplayEngine: the composition root.

build_engine(config) wires stores, codec, applicator and the four
components once; nothing is constructed at import time.
"""

import logging
import os
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Iterable, List, Optional

from .config import EngineConfig
from .core.applicator import DeltaApplicator, UpdatePolicy
from .core.clock import ensure_utc
from .core.deltas import StateDelta
from .live import LiveStateSource, ProjectionLiveState
from .log.file_store import FileDeltaLog
from .log.memory_store import InMemoryDeltaLog
from .log.s3_store import S3DeltaLog
from .log.store import AppendResult, DeltaLog
from .query import BalanceDiscrepancy, BalancePoint, PointQueries
from .replay.coordinator import ReplayCoordinator, ReplayResult
from .replay.tracer import TraceResult, TransactionTracer
from .snapshot.codec import SnapshotCodec
from .snapshot.model import Snapshot
from .snapshot.store import FileSnapshotStore, InMemorySnapshotStore, SnapshotStore
from .snapshot.writer import SnapshotBatchResult, SnapshotWriter

logger = logging.getLogger(__name__)


class ReplayEngine:
    """
    Facade over the replay components for one set of stores.

    Reads (replay, trace, balances) are parallel-safe; snapshot writes are
    serialized per user by the writer.
    """

    def __init__(
        self,
        deltas: DeltaLog,
        snapshots: SnapshotStore,
        live: Optional[LiveStateSource] = None,
        codec: Optional[SnapshotCodec] = None,
        policy: UpdatePolicy = UpdatePolicy.IGNORE,
        default_timeout: Optional[float] = None,
        clock=None,
    ) -> None:
        self.deltas = deltas
        self.snapshots = snapshots
        self.codec = codec or SnapshotCodec()
        self.coordinator = ReplayCoordinator(
            deltas,
            snapshots,
            codec=self.codec,
            applicator=DeltaApplicator(policy),
            default_timeout=default_timeout,
            clock=clock,
        )
        self.tracer = TransactionTracer(deltas)
        self.queries = PointQueries(self.coordinator, deltas)
        self.live = live or ProjectionLiveState(self.coordinator, clock=clock)
        self.writer = SnapshotWriter(self.live, snapshots, codec=self.codec, clock=clock)

    async def append_delta(self, delta: StateDelta) -> AppendResult:
        return await self.deltas.append(delta)

    async def replay_to_date(
        self, user_id: str, target_date: datetime, timeout: Optional[float] = None
    ) -> ReplayResult:
        return await self.coordinator.replay_to_date(user_id, target_date, timeout=timeout)

    async def trace_transaction(self, user_id: str, resource_id: str) -> TraceResult:
        return await self.tracer.trace_transaction(user_id, resource_id)

    async def calculate_balance_at_date(
        self, user_id: str, date: datetime, timeout: Optional[float] = None
    ) -> Decimal:
        return await self.queries.calculate_balance_at_date(user_id, date, timeout=timeout)

    async def balance_history(self, user_id: str, dates: Iterable[datetime]) -> List[BalancePoint]:
        return await self.queries.balance_history(user_id, dates)

    async def balance_discrepancy(
        self, user_id: str, date1: datetime, date2: datetime
    ) -> BalanceDiscrepancy:
        return await self.queries.balance_discrepancy(user_id, date1, date2)

    async def create_snapshot(self, user_id: str) -> Snapshot:
        return await self.writer.create_snapshot(user_id)

    async def create_snapshots(self, user_ids: Optional[Iterable[str]] = None) -> SnapshotBatchResult:
        """Batch snapshot; defaults to every user present in the delta log."""
        if user_ids is None:
            user_ids = await self.deltas.user_ids()
        return await self.writer.create_snapshots(user_ids)

    async def list_snapshots(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        return [s.summary() for s in await self.snapshots.list_recent(user_id, limit)]

    async def recent_deltas(
        self, user_id: str, limit: int = 50, resource_type: Optional[str] = None
    ) -> List[StateDelta]:
        return await self.deltas.recent(user_id, limit=limit, resource_type=resource_type)

    async def prune_snapshots(self, user_id: str, horizon: datetime) -> int:
        deleted = await self.snapshots.prune(user_id, ensure_utc(horizon))
        logger.info("Pruned %d snapshots", deleted, extra={"trace_id": user_id})
        return deleted


def build_delta_log(config: EngineConfig) -> DeltaLog:
    if config.backend == "memory":
        return InMemoryDeltaLog()
    if config.backend == "s3":
        return S3DeltaLog(
            bucket=config.s3_bucket,
            prefix=config.s3_prefix,
            endpoint_url=config.s3_endpoint_url,
            region=config.s3_region,
        )
    return FileDeltaLog(os.path.join(config.data_dir, "deltas"))


def build_snapshot_store(config: EngineConfig) -> SnapshotStore:
    if config.backend == "memory":
        return InMemorySnapshotStore()
    # s3 backend keeps snapshots on local disk under data_dir
    return FileSnapshotStore(os.path.join(config.data_dir, "snapshots"))


def build_engine(
    config: EngineConfig,
    live: Optional[LiveStateSource] = None,
    clock=None,
) -> ReplayEngine:
    """
    Construct a ReplayEngine from configuration.

    Args:
        config: Validated engine configuration
        live: Live state source for snapshots (default: project the delta log)
        clock: Injectable clock (default: system UTC clock)
    """
    engine = ReplayEngine(
        deltas=build_delta_log(config),
        snapshots=build_snapshot_store(config),
        live=live,
        codec=SnapshotCodec(compression_level=config.compression_level),
        policy=config.update_policy,
        default_timeout=config.replay_timeout_seconds,
        clock=clock,
    )
    logger.debug("Engine built with %s backend", config.backend)
    return engine
