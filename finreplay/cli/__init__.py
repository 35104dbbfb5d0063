"""
finreplay CLI - point-in-time reconstruction of user financial state

Commands:
- finreplay replay - Reconstruct state at a date
- finreplay trace - Lifecycle of one resource
- finreplay balance - Balance at one or more dates
- finreplay snapshot create/list/verify/prune - Snapshot management
- finreplay log append/tail/verify - Delta log operations
"""
