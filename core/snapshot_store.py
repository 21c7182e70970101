"""
Snapshot Store - Holds the last-seen entry names of every watched source.
"""

from typing import Dict, Set
from threading import Lock

from models.source import WatchSource


class SnapshotStore:
    """In-memory snapshots, kept on each WatchSource and indexed by source key."""

    def __init__(self):
        self._lock = Lock()
        self._sources: Dict[str, WatchSource] = {}

    def get(self, source: WatchSource) -> Set[str]:
        """
        Get a copy of the last snapshot for a source.

        Args:
            source: Watched source

        Returns:
            Set of entry names (empty if never polled)
        """
        with self._lock:
            return set(source.last_snapshot)

    def is_baseline(self, source: WatchSource) -> bool:
        """True until a poll has stored a non-empty snapshot for the source."""
        with self._lock:
            return not source.last_snapshot

    def replace(self, source: WatchSource, entries: Set[str]) -> Set[str]:
        """
        Store a new snapshot and return the entries that were not in the old one.

        The delta is empty while the previous snapshot was empty, so the first
        observation of a source only establishes its baseline.
        """
        with self._lock:
            previous = source.last_snapshot
            delta = set(entries) - previous if previous else set()
            source.last_snapshot = set(entries)
            self._sources[source.key] = source
            return delta

    def get_all_snapshots(self) -> Dict[str, Set[str]]:
        """Get copies of all stored snapshots, keyed by source key."""
        with self._lock:
            return {key: set(source.last_snapshot) for key, source in self._sources.items()}

    def clear(self, source: WatchSource) -> None:
        """Forget a source's snapshot so its next poll is a baseline again."""
        with self._lock:
            source.last_snapshot = set()
            self._sources.pop(source.key, None)
