"""
Live state sources for the snapshot writer.

The primary transactional datastore is external; the engine only sees it
through LiveStateSource.fetch_resources().
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from .core.clock import SystemClock
from .core.errors import StoreError

Resources = Dict[str, List[Dict[str, Any]]]


class LiveStateSource(ABC):
    """Read access to a user's current records across tracked resource types."""

    @abstractmethod
    async def fetch_resources(self, user_id: str) -> Resources:
        """
        Return resource_type -> list of current records (each with "id").

        Raises:
            StoreError: If the backing store cannot be read
        """
        ...


class InMemoryLiveState(LiveStateSource):
    """Mutable live store for tests and embedding."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Dict[str, Dict[str, Any]]]] = {}

    def put(self, user_id: str, resource_type: str, record: Dict[str, Any]) -> None:
        user = self._data.setdefault(user_id, {})
        user.setdefault(resource_type, {})[str(record["id"])] = copy.deepcopy(record)

    def remove(self, user_id: str, resource_type: str, resource_id: str) -> None:
        self._data.get(user_id, {}).get(resource_type, {}).pop(resource_id, None)

    async def fetch_resources(self, user_id: str) -> Resources:
        user = self._data.get(user_id, {})
        return {t: [copy.deepcopy(r) for r in records.values()] for t, records in user.items()}


class JsonFileLiveState(LiveStateSource):
    """
    Live state exported to a JSON file.

    Format: {"<user_id>": {"<resource_type>": [record, ...]}}
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _load(self) -> Dict[str, Resources]:
        try:
            with open(self.path, "r") as f:
                return json.load(f)
        except OSError as ex:
            raise StoreError(str(ex)) from ex
        except ValueError as ex:
            raise StoreError(f"{self.path}: invalid JSON: {ex}") from ex

    async def fetch_resources(self, user_id: str) -> Resources:
        data = await asyncio.to_thread(self._load)
        return data.get(user_id, {})


class ProjectionLiveState(LiveStateSource):
    """
    Current state projected from the delta log.

    Used when no live datastore is reachable (operator CLI): replays to the
    clock's current instant through the coordinator.
    """

    def __init__(self, coordinator, clock=None) -> None:
        self.coordinator = coordinator
        self.clock = clock or SystemClock()

    async def fetch_resources(self, user_id: str) -> Resources:
        result = await self.coordinator.replay_to_date(user_id, self.clock.now())
        return {t: list(c.values()) for t, c in result.state.collections.items()}
