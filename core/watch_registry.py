"""
Watch Registry - The set of rooms subscribed to change notifications.
"""

import logging
from threading import Lock
from typing import Optional, Set

from utils.exceptions import PersistenceError
from core.session_store import SessionStore


class WatchRegistry:
    """Lock-guarded room set, written through to the session store after each change."""

    def __init__(self, store: Optional[SessionStore] = None):
        """
        Initialize the registry.

        Args:
            store: Session store used to mirror the set (nothing is mirrored if None)
        """
        self.store = store
        self._lock = Lock()
        self._rooms: Set[str] = set()
        self.logger = logging.getLogger('WatchRegistry')

    def load(self) -> Set[str]:
        """Replace the in-memory set with whatever the store holds."""
        if self.store is None:
            return set()
        rooms = self.store.restore_rooms()
        with self._lock:
            self._rooms = set(rooms)
        if rooms:
            self.logger.info(f"Restored {len(rooms)} watched rooms")
        return set(rooms)

    def add(self, room_id: str) -> bool:
        """
        Subscribe a room. Adding a room twice is a no-op.

        Returns:
            True if the room was not watched before
        """
        with self._lock:
            if room_id in self._rooms:
                return False
            self._rooms.add(room_id)
            self._persist_locked(f"watch {room_id}")
        return True

    def discard(self, room_id: str) -> bool:
        """
        Unsubscribe a room if present.

        Returns:
            True if the room was watched
        """
        with self._lock:
            if room_id not in self._rooms:
                return False
            self._rooms.discard(room_id)
            self._persist_locked(f"unwatch {room_id}")
        return True

    def flush(self) -> None:
        """Write the current set again, e.g. after the store was wiped."""
        with self._lock:
            self._persist_locked("flush")

    def snapshot(self) -> Set[str]:
        """Copy of the current room set."""
        with self._lock:
            return set(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        with self._lock:
            return room_id in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def _persist_locked(self, operation: str) -> None:
        """Write the full set; failures are logged and retried by the next mutation."""
        if self.store is None or not self.store.durable:
            return
        try:
            self.store.persist_rooms(set(self._rooms))
        except PersistenceError as e:
            self.logger.error(f"Could not persist watched rooms after {operation}: {e}")
