"""
DeltaLog abstract interface.

Defines the asynchronous contract for delta storage implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..core.deltas import StateDelta, sort_deltas


@dataclass(frozen=True)
class AppendResult:
    """
    Result of an append attempt.

    When duplicate is True a delta with the same id or the same idempotency
    key was already stored and nothing was written.
    """

    delta: StateDelta
    committed: bool
    duplicate: bool = False
    delta_hash: Optional[str] = None


class DeltaLog(ABC):
    """
    Abstract delta storage interface.

    All implementations must guarantee:
    - Append-only (no updates, no deletes)
    - Partitioning by user_id
    - Reads returned in replay order: (created_at, id) ascending
    - At most one delta per idempotency key is returned
    """

    @abstractmethod
    async def append(self, delta: StateDelta) -> AppendResult:
        """
        Append delta to the user's partition.

        Returns:
            AppendResult (duplicate=True if the delta id or its idempotency key
            is already stored)

        Raises:
            StoreError: If append fails
        """
        ...

    @abstractmethod
    async def read_user(self, user_id: str) -> List[StateDelta]:
        """
        Read every delta for user_id in replay order.

        Raises:
            StoreError: If the backend read fails
            IntegrityError: If the backend detects tampering
        """
        ...

    @abstractmethod
    async def user_ids(self) -> List[str]:
        """Return the user ids that have at least one delta (sorted)."""
        ...

    async def read_range(
        self,
        user_id: str,
        until: datetime,
        after: Optional[datetime] = None,
    ) -> List[StateDelta]:
        """
        Read deltas with created_at in (after, until], in replay order.

        Args:
            user_id: Partition key
            until: Inclusive upper bound
            after: Exclusive lower bound (None = from the beginning)

        Implementations may override with an indexed scan.
        """
        out = []
        for delta in await self.read_user(user_id):
            if after is not None and delta.created_at <= after:
                continue
            if delta.created_at > until:
                break
            out.append(delta)
        return out

    async def read_resource(self, user_id: str, resource_id: str) -> List[StateDelta]:
        """Read all deltas for one resource in replay order."""
        deltas = [d for d in await self.read_user(user_id) if d.resource_id == resource_id]
        return sort_deltas(deltas)

    async def recent(
        self,
        user_id: str,
        limit: int = 50,
        resource_type: Optional[str] = None,
    ) -> List[StateDelta]:
        """Newest-first listing, optionally filtered by resource type."""
        deltas = await self.read_user(user_id)
        if resource_type is not None:
            deltas = [d for d in deltas if d.resource_type == resource_type]
        return list(reversed(deltas))[:limit]
