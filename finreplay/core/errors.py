"""
Exception types for the temporal replay engine.
"""


class ReplayEngineError(Exception):
    """Base class for all engine errors."""
    pass


class IntegrityError(ReplayEngineError):
    """Raised when a snapshot checksum or delta hash chain fails verification."""
    pass


class DecodeError(IntegrityError):
    """Raised when a stored payload cannot be decompressed or parsed."""
    pass


class MissingResourceError(ReplayEngineError):
    """Raised when an UPDATE targets an absent resource under the strict policy."""

    def __init__(self, resource_type: str, resource_id: str, delta_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.delta_id = delta_id
        super().__init__(
            f"UPDATE {delta_id} targets missing {resource_type} {resource_id}"
        )


class ReplayTimeoutError(ReplayEngineError):
    """Raised when a replay exceeds its deadline. No partial state is returned."""
    pass


class StoreError(ReplayEngineError):
    """Raised when delta log or snapshot store operations fail."""
    pass


class SnapshotBatchInProgressError(ReplayEngineError):
    """Raised when a batch snapshot run is started while another is running."""
    pass


class ConfigError(ReplayEngineError):
    """Raised when configuration values are invalid."""
    pass
