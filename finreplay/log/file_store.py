"""
File-based delta log using append-only JSONL files.

One file per user partition: <directory>/<quoted user_id>.jsonl
Each line is a hash chain record with prev_hash, delta_hash, and delta data.

A partition is verified once per FileDeltaLog instance and indexed by
(created_at, id) with byte offsets. Later calls verify only the bytes appended
since, then seek straight to the records they return. verify() always
re-checks the whole chain.
"""

import asyncio
import bisect
import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple, TypeVar
from urllib.parse import quote, unquote

from ..core.canonical import canonical_json_str
from ..core.deltas import StateDelta
from ..core.errors import IntegrityError, StoreError
from .integrity import ZERO_HASH, chain_record, hash_delta
from .store import AppendResult, DeltaLog

try:
    import fcntl
except ImportError:  # Windows or unsupported platform
    fcntl = None

SUFFIX = ".jsonl"

T = TypeVar("T")


@dataclass
class PartitionIndex:
    """
    Verified prefix of one partition file.

    Fields:
        size: Bytes verified so far
        last_hash: delta_hash of the last verified record
        keys/times/offsets: Parallel lists in replay order
        by_resource: resource_id -> [(sort key, offset)] in replay order
        ids/idempotency_keys: Duplicate detection for appends
    """
    size: int = 0
    last_hash: str = ZERO_HASH
    keys: List[Tuple[datetime, str]] = field(default_factory=list)
    times: List[datetime] = field(default_factory=list)
    offsets: List[int] = field(default_factory=list)
    by_resource: Dict[str, List[Tuple[Tuple[datetime, str], int]]] = field(default_factory=dict)
    ids: Set[str] = field(default_factory=set)
    idempotency_keys: Set[Tuple[str, str, str]] = field(default_factory=set)

    def add(self, delta: StateDelta, offset: int) -> None:
        key = delta.sort_key()
        pos = bisect.bisect_right(self.keys, key)
        self.keys.insert(pos, key)
        self.times.insert(pos, delta.created_at)
        self.offsets.insert(pos, offset)
        bisect.insort(self.by_resource.setdefault(delta.resource_id, []), (key, offset))
        self.ids.add(delta.id)
        self.idempotency_keys.add(delta.idempotency_key())

    def is_duplicate(self, delta: StateDelta) -> bool:
        return delta.id in self.ids or delta.idempotency_key() in self.idempotency_keys

    def window(self, after: Optional[datetime], until: Optional[datetime]) -> List[int]:
        """Offsets of records with created_at in (after, until]."""
        lo = 0 if after is None else bisect.bisect_right(self.times, after)
        hi = len(self.times) if until is None else bisect.bisect_right(self.times, until)
        return self.offsets[lo:hi]


class FileDeltaLog(DeltaLog):
    """
    File-based append-only delta log.

    Storage format: JSONL (newline-delimited JSON)
    Each line: {"prev_hash": "...", "delta_hash": "...", "delta": {...}}

    Guarantees:
    - Append-only (no mutations)
    - Fsync after each append (durability)
    - Per-user hash chain, verified before any record is returned
    - Redeliveries (same id or idempotency key) are not written
    """

    def __init__(self, directory: str) -> None:
        """
        Initialize file delta log.

        Args:
            directory: Directory holding one JSONL file per user
        """
        self.directory = directory
        os.makedirs(directory, exist_ok=True)
        self._indexes: Dict[str, PartitionIndex] = {}
        self._lock = threading.Lock()

    def path_for(self, user_id: str) -> str:
        return os.path.join(self.directory, quote(user_id, safe="") + SUFFIX)

    def _verify_line(self, path: str, offset: int, line: bytes, prev: str) -> Tuple[StateDelta, str]:
        try:
            rec = json.loads(line)
            delta = StateDelta.from_dict(rec["delta"])
        except (ValueError, KeyError, TypeError) as ex:
            raise IntegrityError(f"{path}@{offset}: unreadable record: {ex}") from ex
        if rec.get("prev_hash") != prev:
            raise IntegrityError(f"{path}@{offset}: hash chain broken")
        computed = hash_delta(prev, delta)
        if rec.get("delta_hash") != computed:
            raise IntegrityError(f"{path}@{offset}: delta hash mismatch")
        return delta, computed

    def _refresh(self, user_id: str, path: str, f) -> PartitionIndex:
        """
        Verify and index bytes appended since the last call.

        Caller holds self._lock and a file lock on f. A failed check drops the
        cached index so the next call starts over from byte 0.
        """
        index = self._indexes.get(user_id) or PartitionIndex()
        size = os.fstat(f.fileno()).st_size
        if size < index.size:
            self._indexes.pop(user_id, None)
            raise IntegrityError(f"{path}: shrank from {index.size} to {size} bytes")

        if size > index.size:
            offset = index.size
            f.seek(offset)
            try:
                for line in f:
                    start = offset
                    offset += len(line)
                    if not line.strip():
                        continue
                    delta, index.last_hash = self._verify_line(path, start, line, index.last_hash)
                    index.add(delta, start)
            except IntegrityError:
                self._indexes.pop(user_id, None)
                raise
            index.size = offset

        self._indexes[user_id] = index
        return index

    def _load_at(self, path: str, f, offset: int) -> StateDelta:
        f.seek(offset)
        line = f.readline()
        try:
            return StateDelta.from_dict(json.loads(line)["delta"])
        except (ValueError, KeyError, TypeError) as ex:
            # Verified earlier: the file was rewritten in place
            raise IntegrityError(f"{path}@{offset}: record changed after verification") from ex

    def _with_index(self, user_id: str, fn: Callable[[str, object, PartitionIndex], T], empty: T) -> T:
        """Run fn(path, file, index) under a shared file lock; `empty` if no partition."""
        path = self.path_for(user_id)
        try:
            with self._lock:
                if not os.path.exists(path):
                    self._indexes.pop(user_id, None)
                    return empty
                with open(path, "rb") as f:
                    if fcntl:
                        fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                    try:
                        return fn(path, f, self._refresh(user_id, path, f))
                    finally:
                        if fcntl:
                            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError as ex:
            raise StoreError(str(ex)) from ex

    def _append_sync(self, delta: StateDelta) -> AppendResult:
        path = self.path_for(delta.user_id)
        try:
            with self._lock, open(path, "a+b") as f:
                if fcntl:
                    fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    index = self._refresh(delta.user_id, path, f)
                    if index.is_duplicate(delta):
                        return AppendResult(delta=delta, committed=False, duplicate=True)

                    rec = chain_record(index.last_hash, delta)
                    line = (canonical_json_str(rec) + "\n").encode("utf-8")
                    f.seek(0, os.SEEK_END)
                    offset = f.tell()
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())

                    index.add(delta, offset)
                    index.last_hash = rec["delta_hash"]
                    index.size = offset + len(line)
                    return AppendResult(delta=delta, committed=True, delta_hash=rec["delta_hash"])
                finally:
                    if fcntl:
                        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except OSError as ex:
            raise StoreError(str(ex)) from ex

    def _read_window_sync(
        self,
        user_id: str,
        after: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[StateDelta]:
        def read(path, f, index):
            return [self._load_at(path, f, offset) for offset in index.window(after, until)]

        return self._with_index(user_id, read, [])

    def _read_resource_sync(self, user_id: str, resource_id: str) -> List[StateDelta]:
        def read(path, f, index):
            return [self._load_at(path, f, offset) for _, offset in index.by_resource.get(resource_id, [])]

        return self._with_index(user_id, read, [])

    def _recent_sync(self, user_id: str, limit: int, resource_type: Optional[str]) -> List[StateDelta]:
        def read(path, f, index):
            out = []
            for offset in reversed(index.offsets):
                if len(out) >= limit:
                    break
                delta = self._load_at(path, f, offset)
                if resource_type is None or delta.resource_type == resource_type:
                    out.append(delta)
            return out

        return self._with_index(user_id, read, [])

    def _user_ids_sync(self) -> List[str]:
        try:
            names = os.listdir(self.directory)
        except OSError as ex:
            raise StoreError(str(ex)) from ex
        return sorted(unquote(n[: -len(SUFFIX)]) for n in names if n.endswith(SUFFIX))

    def _verify_sync(self, user_id: str) -> int:
        with self._lock:
            self._indexes.pop(user_id, None)
        return self._with_index(user_id, lambda path, f, index: len(index.offsets), 0)

    async def append(self, delta: StateDelta) -> AppendResult:
        return await asyncio.to_thread(self._append_sync, delta)

    async def read_user(self, user_id: str) -> List[StateDelta]:
        return await asyncio.to_thread(self._read_window_sync, user_id)

    async def read_range(
        self,
        user_id: str,
        until: datetime,
        after: Optional[datetime] = None,
    ) -> List[StateDelta]:
        return await asyncio.to_thread(self._read_window_sync, user_id, after, until)

    async def read_resource(self, user_id: str, resource_id: str) -> List[StateDelta]:
        return await asyncio.to_thread(self._read_resource_sync, user_id, resource_id)

    async def recent(
        self,
        user_id: str,
        limit: int = 50,
        resource_type: Optional[str] = None,
    ) -> List[StateDelta]:
        return await asyncio.to_thread(self._recent_sync, user_id, limit, resource_type)

    async def user_ids(self) -> List[str]:
        return await asyncio.to_thread(self._user_ids_sync)

    async def verify(self, user_id: str) -> int:
        """
        Re-verify the user's whole hash chain from the first byte.

        Returns:
            Number of verified records

        Raises:
            IntegrityError: On the first broken link
        """
        return await asyncio.to_thread(self._verify_sync, user_id)

    async def last_hash(self, user_id: str) -> Optional[str]:
        """delta_hash at the head of the user's chain (None without a partition)."""
        return await asyncio.to_thread(
            self._with_index, user_id, lambda path, f, index: index.last_hash, None
        )
