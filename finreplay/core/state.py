"""
Reconstructed state model.

State is a mapping of resource-type name -> {resource_id -> record}.
Each replay builds a fresh instance; instances are never shared across calls.
"""

import copy
from typing import Any, Dict, Mapping, Optional

Record = Dict[str, Any]
Collections = Dict[str, Dict[str, Record]]


class ReconstructedState:
    """
    Per-call container of resource collections.

    Collections are keyed by resource id so UPDATE and DELETE are O(1).
    Records are opaque JSON objects.
    """

    __slots__ = ("_collections",)

    def __init__(self, collections: Optional[Mapping[str, Mapping[str, Record]]] = None) -> None:
        self._collections: Collections = {}
        for resource_type, records in (collections or {}).items():
            self._collections[str(resource_type)] = {str(k): v for k, v in records.items()}

    @classmethod
    def empty(cls) -> "ReconstructedState":
        return cls()

    @classmethod
    def from_records(cls, resources: Mapping[str, Any]) -> "ReconstructedState":
        """
        Build state from lists of records keyed by their "id" field.

        Args:
            resources: resource_type -> list of records (each with "id")

        Raises:
            ValueError: If a record has no "id"
        """
        collections: Collections = {}
        for resource_type, records in resources.items():
            coll = collections.setdefault(str(resource_type), {})
            for record in records:
                if "id" not in record:
                    raise ValueError(f"{resource_type} record without id")
                coll[str(record["id"])] = copy.deepcopy(record)
        return cls(collections)

    @property
    def collections(self) -> Collections:
        return self._collections

    def collection(self, resource_type: str) -> Dict[str, Record]:
        """Return the collection for resource_type (empty dict if absent)."""
        return self._collections.get(resource_type, {})

    def get(self, resource_type: str, resource_id: str) -> Optional[Record]:
        return self._collections.get(resource_type, {}).get(resource_id)

    def count(self, resource_type: str) -> int:
        return len(self._collections.get(resource_type, {}))

    def resource_counts(self) -> Dict[str, int]:
        return {t: len(c) for t, c in sorted(self._collections.items())}

    def copy(self) -> "ReconstructedState":
        """Shallow-copy collections; records are replaced, never mutated, by the applicator."""
        clone = ReconstructedState()
        clone._collections = {t: dict(c) for t, c in self._collections.items()}
        return clone

    def to_dict(self) -> Collections:
        return {t: dict(c) for t, c in self._collections.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Record]]) -> "ReconstructedState":
        return cls(data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReconstructedState):
            return NotImplemented
        mine = {t: c for t, c in self._collections.items() if c}
        theirs = {t: c for t, c in other._collections.items() if c}
        return mine == theirs

    def __repr__(self) -> str:
        return f"ReconstructedState({self.resource_counts()})"
