"""
Snapshot codec: canonical serialization, compression and checksum.

Encoding (codec version 1):
    document  = {"codec_version": 1, "resources": {type: {id: record}}}
    canonical = canonical_json_bytes(document)      (see core.canonical)
    checksum  = sha256(canonical).hexdigest()
    blob      = zlib.compress(canonical, level)

The checksum covers the uncompressed canonical bytes, so verification does
not depend on the compression library or level that produced the blob.
"""

import hashlib
import json
import zlib
from dataclasses import dataclass

from ..core.canonical import canonical_json_bytes
from ..core.errors import DecodeError, IntegrityError
from ..core.state import ReconstructedState

CODEC_VERSION = 1
COMPRESSION = "zlib"


@dataclass(frozen=True)
class EncodedState:
    """
    Output of SnapshotCodec.encode.

    Fields:
        compressed: zlib-compressed canonical bytes
        checksum: SHA-256 hex of the canonical uncompressed bytes
        original_size: Length of canonical bytes
        compressed_size: Length of compressed bytes
    """
    compressed: bytes
    checksum: str
    original_size: int
    compressed_size: int


def serialize_state(state: ReconstructedState) -> bytes:
    """
    Serialize state to deterministic bytes.

    Same state always produces same bytes: no dict ordering issues, no
    whitespace variance, UTF-8 stable.
    """
    document = {"codec_version": CODEC_VERSION, "resources": state.to_dict()}
    return canonical_json_bytes(document)


def compute_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class SnapshotCodec:
    """Encode/decode full states for snapshot storage."""

    def __init__(self, compression_level: int = 6) -> None:
        self.compression_level = compression_level

    def checksum_of(self, state: ReconstructedState) -> str:
        return compute_checksum(serialize_state(state))

    def encode(self, state: ReconstructedState) -> EncodedState:
        canonical = serialize_state(state)
        compressed = zlib.compress(canonical, self.compression_level)
        return EncodedState(
            compressed=compressed,
            checksum=compute_checksum(canonical),
            original_size=len(canonical),
            compressed_size=len(compressed),
        )

    def decode(self, compressed: bytes, checksum: str) -> ReconstructedState:
        """
        Decompress, parse and verify a snapshot blob.

        Args:
            compressed: Stored blob
            checksum: Stored checksum of the canonical bytes

        Returns:
            Verified ReconstructedState

        Raises:
            DecodeError: Blob cannot be decompressed or parsed, or has an
                unsupported codec version
            IntegrityError: Recomputed checksum differs from the stored one
        """
        try:
            raw = zlib.decompress(compressed)
        except zlib.error as ex:
            raise DecodeError(f"snapshot blob is not valid zlib data: {ex}") from ex

        try:
            document = json.loads(raw.decode("utf-8"))
        except ValueError as ex:
            raise DecodeError(f"snapshot payload is not valid JSON: {ex}") from ex

        if not isinstance(document, dict) or document.get("codec_version") != CODEC_VERSION:
            raise DecodeError("unsupported snapshot codec version")
        resources = document.get("resources")
        if not isinstance(resources, dict) or not all(isinstance(c, dict) for c in resources.values()):
            raise DecodeError("snapshot payload has no resource collections")

        state = ReconstructedState.from_dict(resources)
        try:
            computed = compute_checksum(serialize_state(state))
        except (ValueError, TypeError) as ex:
            raise DecodeError(f"snapshot payload is not canonical JSON: {ex}") from ex
        if computed != checksum:
            raise IntegrityError(
                f"snapshot checksum mismatch: computed {computed}, expected {checksum}"
            )
        return state
