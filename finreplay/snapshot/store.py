"""
Snapshot storage management.

Snapshots are immutable: stores refuse to overwrite an existing snapshot and
only delete under the retention policy implemented by prune().

File layout (FileSnapshotStore):
    <directory>/<quoted user_id>/snap_<snapshot_date_us>_<created_at_us>_<id>.json
Filenames carry the selection key, so the file store picks, lists and prunes
without reading snapshot contents.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, unquote

from ..core.clock import ensure_utc
from ..core.errors import DecodeError, StoreError
from .model import Snapshot

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
PREFIX = "snap_"
SUFFIX = ".json"


class SnapshotStore(ABC):
    """
    Abstract asynchronous snapshot storage.

    Implementations provide save/list_user/delete; selection and retention
    below work from list_user and may be overridden with cheaper scans.
    """

    @abstractmethod
    async def save(self, snapshot: Snapshot) -> None:
        """
        Persist a new snapshot.

        Raises:
            StoreError: If a snapshot with the same id exists or the write fails
        """
        ...

    @abstractmethod
    async def list_user(self, user_id: str) -> List[Snapshot]:
        """All snapshots of user_id in selection order (oldest first)."""
        ...

    @abstractmethod
    async def delete(self, user_id: str, snapshot_id: str) -> None:
        ...

    async def get(self, user_id: str, snapshot_id: str) -> Optional[Snapshot]:
        for snapshot in await self.list_user(user_id):
            if snapshot.id == snapshot_id:
                return snapshot
        return None

    async def find_at_or_before(self, user_id: str, when: datetime) -> Optional[Snapshot]:
        """
        Find the snapshot to replay from for target instant `when`.

        Returns the latest snapshot with snapshot_date <= when; among equal
        dates the most recently created wins.
        """
        when = ensure_utc(when)
        best = None
        for snapshot in await self.list_user(user_id):
            if snapshot.snapshot_date <= when:
                best = snapshot
            else:
                break  # Sorted by snapshot_date
        return best

    async def latest(self, user_id: str) -> Optional[Snapshot]:
        snapshots = await self.list_user(user_id)
        return snapshots[-1] if snapshots else None

    async def list_recent(self, user_id: str, limit: int = 10) -> List[Snapshot]:
        """Newest first."""
        return list(reversed(await self.list_user(user_id)))[:limit]

    async def prune(self, user_id: str, horizon: datetime) -> int:
        """
        Delete snapshots no replay at or after `horizon` can need.

        The base for the horizon (latest snapshot with snapshot_date <= horizon)
        and every later snapshot are kept; only snapshots that sort strictly
        before the base are removed.

        Returns:
            Number of deleted snapshots
        """
        base = await self.find_at_or_before(user_id, horizon)
        if base is None:
            return 0
        deleted = 0
        for snapshot in await self.list_user(user_id):
            if snapshot.sort_key() < base.sort_key():
                await self.delete(user_id, snapshot.id)
                deleted += 1
        return deleted


class InMemorySnapshotStore(SnapshotStore):
    """Snapshot store held in process memory."""

    def __init__(self) -> None:
        self._snapshots: Dict[str, Dict[str, Snapshot]] = {}

    async def save(self, snapshot: Snapshot) -> None:
        user = self._snapshots.setdefault(snapshot.user_id, {})
        if snapshot.id in user:
            raise StoreError(f"snapshot {snapshot.id} already exists")
        user[snapshot.id] = snapshot

    async def list_user(self, user_id: str) -> List[Snapshot]:
        return sorted(self._snapshots.get(user_id, {}).values(), key=Snapshot.sort_key)

    async def delete(self, user_id: str, snapshot_id: str) -> None:
        self._snapshots.get(user_id, {}).pop(snapshot_id, None)


# (snapshot_date_us, created_at_us, id): same order as Snapshot.sort_key
EntryKey = Tuple[int, int, str]


def _micros(value: datetime) -> int:
    return (ensure_utc(value) - EPOCH) // timedelta(microseconds=1)


def parse_filename(name: str) -> Optional[EntryKey]:
    """Recover the selection key from a snapshot filename (None if foreign)."""
    if not (name.startswith(PREFIX) and name.endswith(SUFFIX)):
        return None
    parts = name[len(PREFIX):-len(SUFFIX)].split("_", 2)
    if len(parts) != 3:
        return None
    try:
        return int(parts[0]), int(parts[1]), unquote(parts[2])
    except ValueError:
        return None


class FileSnapshotStore(SnapshotStore):
    """
    Manage snapshot files on disk.

    Storage format:
    - one directory per user
    - each file: snap_{snapshot_date_us}_{created_at_us}_{id}.json
    - contents: Snapshot JSON (blob base64-encoded)

    Selection, listing and retention work on filenames; a snapshot file is
    only read when it is returned.
    """

    def __init__(self, directory: str = "snapshots") -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _user_dir(self, user_id: str) -> Path:
        return self.directory / quote(user_id, safe="")

    def filename_for(self, snapshot: Snapshot) -> str:
        return (
            f"{PREFIX}{_micros(snapshot.snapshot_date):017d}"
            f"_{_micros(snapshot.created_at):017d}_{quote(snapshot.id, safe='')}{SUFFIX}"
        )

    def path_for(self, snapshot: Snapshot) -> Path:
        return self._user_dir(snapshot.user_id) / self.filename_for(snapshot)

    def _entries(self, user_id: str) -> List[Tuple[EntryKey, Path]]:
        """Snapshot files of user_id in selection order (oldest first)."""
        user_dir = self._user_dir(user_id)
        if not user_dir.exists():
            return []
        entries = []
        try:
            for filepath in user_dir.glob(f"{PREFIX}*{SUFFIX}"):
                key = parse_filename(filepath.name)
                if key is None:
                    logger.warning("Ignoring foreign file %s", filepath, extra={"trace_id": user_id})
                    continue
                entries.append((key, filepath))
        except OSError as ex:
            raise StoreError(str(ex)) from ex
        entries.sort(key=lambda entry: entry[0])
        return entries

    def _load(self, key: EntryKey, filepath: Path) -> Snapshot:
        try:
            with open(filepath, "r") as f:
                text = f.read()
        except OSError as ex:
            raise StoreError(str(ex)) from ex
        snapshot = Snapshot.from_json(text)
        if snapshot.id != key[2]:
            raise DecodeError(f"{filepath.name}: holds snapshot {snapshot.id}")
        return snapshot

    def _save_sync(self, snapshot: Snapshot) -> str:
        user_dir = self._user_dir(snapshot.user_id)
        user_dir.mkdir(parents=True, exist_ok=True)
        if any(key[2] == snapshot.id for key, _ in self._entries(snapshot.user_id)):
            raise StoreError(f"snapshot {snapshot.id} already exists")
        filepath = user_dir / self.filename_for(snapshot)
        try:
            # "x": never overwrite
            with open(filepath, "x") as f:
                f.write(snapshot.to_json())
                f.flush()
                os.fsync(f.fileno())
        except OSError as ex:
            raise StoreError(str(ex)) from ex
        return str(filepath)

    def _list_sync(self, user_id: str) -> List[Snapshot]:
        return [self._load(key, path) for key, path in self._entries(user_id)]

    def _get_sync(self, user_id: str, snapshot_id: str) -> Optional[Snapshot]:
        for key, path in self._entries(user_id):
            if key[2] == snapshot_id:
                return self._load(key, path)
        return None

    def _find_sync(self, user_id: str, when: datetime) -> Optional[Snapshot]:
        bound = _micros(when)
        best = None
        for key, path in self._entries(user_id):
            if key[0] > bound:
                break
            best = (key, path)
        return self._load(*best) if best else None

    def _recent_sync(self, user_id: str, limit: int) -> List[Snapshot]:
        entries = self._entries(user_id)
        return [self._load(key, path) for key, path in reversed(entries[-limit:])] if limit > 0 else []

    def _prune_sync(self, user_id: str, horizon: datetime) -> int:
        bound = _micros(horizon)
        entries = self._entries(user_id)
        base = None
        for key, _ in entries:
            if key[0] > bound:
                break
            base = key
        if base is None:
            return 0
        deleted = 0
        try:
            for key, path in entries:
                if key < base:
                    os.remove(path)
                    deleted += 1
        except OSError as ex:
            raise StoreError(str(ex)) from ex
        return deleted

    def _delete_sync(self, user_id: str, snapshot_id: str) -> None:
        try:
            for key, path in self._entries(user_id):
                if key[2] == snapshot_id:
                    os.remove(path)
        except OSError as ex:
            raise StoreError(str(ex)) from ex

    async def save(self, snapshot: Snapshot) -> None:
        await asyncio.to_thread(self._save_sync, snapshot)

    async def list_user(self, user_id: str) -> List[Snapshot]:
        return await asyncio.to_thread(self._list_sync, user_id)

    async def delete(self, user_id: str, snapshot_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, user_id, snapshot_id)

    async def get(self, user_id: str, snapshot_id: str) -> Optional[Snapshot]:
        return await asyncio.to_thread(self._get_sync, user_id, snapshot_id)

    async def find_at_or_before(self, user_id: str, when: datetime) -> Optional[Snapshot]:
        return await asyncio.to_thread(self._find_sync, user_id, when)

    async def latest(self, user_id: str) -> Optional[Snapshot]:
        recent = await self.list_recent(user_id, limit=1)
        return recent[0] if recent else None

    async def list_recent(self, user_id: str, limit: int = 10) -> List[Snapshot]:
        return await asyncio.to_thread(self._recent_sync, user_id, limit)

    async def prune(self, user_id: str, horizon: datetime) -> int:
        return await asyncio.to_thread(self._prune_sync, user_id, horizon)
