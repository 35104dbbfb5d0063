"""
Delta storage and integrity verification.

This module provides:
- DeltaLog: Abstract asynchronous interface for delta persistence
- InMemoryDeltaLog: Process-local storage (tests, embedding)
- FileDeltaLog: File-based append-only storage (JSONL, per-user hash chain)
- S3DeltaLog: S3-based append-only storage (one object per delta)
- Integrity: Hash chain helpers
"""

from .store import DeltaLog, AppendResult
from .memory_store import InMemoryDeltaLog
from .file_store import FileDeltaLog
from .s3_store import S3DeltaLog
from .integrity import ZERO_HASH, hash_delta, chain_record

__all__ = [
    "DeltaLog",
    "AppendResult",
    "InMemoryDeltaLog",
    "FileDeltaLog",
    "S3DeltaLog",
    "ZERO_HASH",
    "hash_delta",
    "chain_record",
]
