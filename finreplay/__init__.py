"""
Temporal Replay Engine

Event-sourced reconstruction of a user's financial state at any past instant,
built from checksummed snapshots plus an append-only delta log.
"""

__version__ = "0.1.0"
