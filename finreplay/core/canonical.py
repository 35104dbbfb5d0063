"""
Canonical serialization for deterministic hashing.

Snapshot checksums are computed over these bytes, so the encoding is fixed:
- dict keys sorted at every level
- no whitespace (separators "," and ":")
- UTF-8 output with ensure_ascii=False
- NaN and Infinity rejected
- tuples become lists, Decimal and datetime become strings

Changing any rule invalidates every stored snapshot checksum.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def canonicalize(obj: Any) -> Any:
    """
    Convert arbitrary nested dict/list to canonical form.

    Rules:
    - dict keys sorted alphabetically (keys coerced to str)
    - tuples converted to lists
    - Decimal rendered with str(), datetime/date with isoformat()
    - recursive normalization

    This ensures identical structure regardless of input order.
    """
    if isinstance(obj, dict):
        return {str(k): canonicalize(obj[k]) for k in sorted(obj.keys(), key=str)}
    if isinstance(obj, (list, tuple)):
        return [canonicalize(x) for x in obj]
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return obj


def canonical_json_bytes(obj: Any) -> bytes:
    """
    Deterministic JSON bytes for hashing.

    Guarantees:
    - sort_keys=True (secondary safety)
    - separators remove whitespace
    - ensure_ascii=False keeps UTF-8 stable
    - allow_nan=False (NaN has no stable JSON form)
    - canonical preprocessing via canonicalize()

    Returns:
        UTF-8 encoded JSON bytes

    Raises:
        ValueError: If obj contains NaN or Infinity
        TypeError: If obj contains a value JSON cannot represent
    """
    canon = canonicalize(obj)
    s = json.dumps(
        canon,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return s.encode("utf-8")


def canonical_json_str(obj: Any) -> str:
    """
    Deterministic JSON string (for display or storage).

    Same guarantees as canonical_json_bytes but returns string.
    """
    return canonical_json_bytes(obj).decode("utf-8")
