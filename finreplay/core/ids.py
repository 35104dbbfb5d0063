"""
Identifier generation.
"""

import hashlib
import uuid


def stable_id(*parts: str) -> str:
    """
    Generate stable ID derived from inputs (no randomness).

    Args:
        *parts: String parts to combine into ID

    Returns:
        SHA-256 hash as hex string

    Example:
        stable_id("snapshot", "user-1", "2024-01-01T00:00:00+00:00") -> "a3f2..."
    """
    raw = "|".join(parts).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def new_id() -> str:
    """Random UUID4 string for records that have no natural key."""
    return str(uuid.uuid4())
