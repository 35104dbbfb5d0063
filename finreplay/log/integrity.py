"""
Hash chain integrity for the file-backed delta log.

Each user partition is a chain: every record carries the hash of the
previous record, so edits, deletions and reordering are detectable.
"""

import hashlib
from typing import Any, Dict

from ..core.canonical import canonical_json_bytes
from ..core.deltas import StateDelta

ZERO_HASH = "0" * 64


def hash_delta(prev_hash: str, delta: StateDelta) -> str:
    """
    Compute hash of delta chained to previous hash.

    Hash input: prev_hash + canonical_json(delta.to_dict())

    Args:
        prev_hash: Hash of previous record (or ZERO_HASH for genesis)
        delta: Delta to hash

    Returns:
        SHA-256 hash as hex string
    """
    b = prev_hash.encode("utf-8") + canonical_json_bytes(delta.to_dict())
    return hashlib.sha256(b).hexdigest()


def chain_record(prev_hash: str, delta: StateDelta) -> Dict[str, Any]:
    """
    Create hash chain record for storage.

    Record includes:
    - prev_hash: Hash of previous record
    - delta_hash: Hash of this record
    - delta: Full delta data

    Returns:
        Dict ready for JSONL serialization
    """
    return {
        "prev_hash": prev_hash,
        "delta_hash": hash_delta(prev_hash, delta),
        "delta": delta.to_dict(),
    }
