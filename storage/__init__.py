"""
Storage Package

Handles the in-memory state served to consumers.

Current implementation:
- SnapshotCache: latest positions + account summary per account

Nothing is persisted; the cache is rebuilt from the exchanges after a restart.
"""

from storage.snapshot_cache import SnapshotCache

__all__ = ["SnapshotCache"]
