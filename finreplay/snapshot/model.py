"""
Snapshot model for compressed, checksummed full-state captures.

A snapshot captures:
- The complete tracked state of one user at snapshot_date
- A checksum of the canonical uncompressed serialization
- Summary figures (transaction count, completed balance, sizes)
"""

import base64
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Tuple

from ..core.clock import ensure_utc, parse_timestamp
from ..core.errors import DecodeError


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable snapshot record.

    Fields:
        id: Snapshot identifier
        user_id: Partition key
        snapshot_date: Instant the captured state represents
        created_at: Write time (tie-break for equal snapshot_date)
        compressed_state: Compressed canonical state bytes
        checksum: SHA-256 of the canonical uncompressed bytes
        transaction_count: Number of expense records
        total_balance: Completed expense total (decimal string)
        compression: Compression algorithm name
        metadata: resource_counts, original_size, compressed_size, codec_version
    """
    id: str
    user_id: str
    snapshot_date: datetime
    created_at: datetime
    compressed_state: bytes
    checksum: str
    transaction_count: int = 0
    total_balance: str = "0"
    compression: str = "zlib"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "snapshot_date", ensure_utc(self.snapshot_date))
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))

    def sort_key(self) -> Tuple[datetime, datetime, str]:
        """Selection order: snapshot_date, then most recently created."""
        return (self.snapshot_date, self.created_at, self.id)

    def summary(self) -> Dict[str, Any]:
        """Listing view (no blob)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "snapshot_date": self.snapshot_date.isoformat(),
            "created_at": self.created_at.isoformat(),
            "checksum": self.checksum,
            "transaction_count": self.transaction_count,
            "total_balance": self.total_balance,
            "compression": self.compression,
            "metadata": self.metadata,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.summary()
        data["compressed_state"] = base64.b64encode(self.compressed_state).decode("ascii")
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            snapshot_date=parse_timestamp(data["snapshot_date"]),
            created_at=parse_timestamp(data["created_at"]),
            compressed_state=base64.b64decode(data["compressed_state"], validate=True),
            checksum=data["checksum"],
            transaction_count=int(data.get("transaction_count", 0)),
            total_balance=str(data.get("total_balance", "0")),
            compression=data.get("compression", "zlib"),
            metadata=data.get("metadata", {}),
        )

    def to_json(self) -> str:
        """Serialize to JSON string (for file storage)."""
        return json.dumps(self.to_dict(), indent=2, sort_keys=True)

    @classmethod
    def from_json(cls, json_str: str) -> "Snapshot":
        """
        Parse the file form written by to_json().

        Raises:
            DecodeError: Malformed JSON, missing fields, bad timestamps or
                non-base64 blob text
        """
        try:
            return cls.from_dict(json.loads(json_str))
        except (ValueError, KeyError, TypeError, AttributeError) as ex:
            # binascii.Error and JSONDecodeError are ValueErrors
            raise DecodeError(f"malformed snapshot document: {ex!r}") from ex
