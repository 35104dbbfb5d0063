"""
In-memory delta log for tests and embedding.
"""

from typing import Dict, List, Set, Tuple

from ..core.deltas import StateDelta, sort_deltas
from .store import AppendResult, DeltaLog


class InMemoryDeltaLog(DeltaLog):
    """Append-only delta log held in process memory, partitioned by user."""

    def __init__(self) -> None:
        self._partitions: Dict[str, List[StateDelta]] = {}
        self._ids: Dict[str, Set[str]] = {}
        self._keys: Dict[str, Set[Tuple[str, str, str]]] = {}

    async def append(self, delta: StateDelta) -> AppendResult:
        ids = self._ids.setdefault(delta.user_id, set())
        keys = self._keys.setdefault(delta.user_id, set())
        if delta.id in ids or delta.idempotency_key() in keys:
            return AppendResult(delta=delta, committed=False, duplicate=True)
        ids.add(delta.id)
        keys.add(delta.idempotency_key())
        self._partitions.setdefault(delta.user_id, []).append(delta)
        return AppendResult(delta=delta, committed=True)

    async def read_user(self, user_id: str) -> List[StateDelta]:
        return sort_deltas(self._partitions.get(user_id, []))

    async def user_ids(self) -> List[str]:
        return sorted(self._partitions)
