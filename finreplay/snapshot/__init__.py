"""
Snapshot system for compressed, checksummed state captures.

Provides:
- SnapshotCodec: canonical serialization, zlib compression, SHA-256 checksum
- Snapshot model with JSON storage form
- Snapshot stores (in-memory, file) with selection and retention
- SnapshotWriter: per-user serialized capture of live state
"""

from .codec import (
    CODEC_VERSION,
    COMPRESSION,
    EncodedState,
    SnapshotCodec,
    compute_checksum,
    serialize_state,
)
from .model import Snapshot
from .store import FileSnapshotStore, InMemorySnapshotStore, SnapshotStore
from .writer import SnapshotBatchResult, SnapshotWriter

__all__ = [
    "CODEC_VERSION",
    "COMPRESSION",
    "EncodedState",
    "SnapshotCodec",
    "compute_checksum",
    "serialize_state",
    "Snapshot",
    "FileSnapshotStore",
    "InMemorySnapshotStore",
    "SnapshotStore",
    "SnapshotBatchResult",
    "SnapshotWriter",
]
