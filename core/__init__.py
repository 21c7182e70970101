"""
Core package - Contains main business logic.
"""

from core.change_detector import ChangeDetector
from core.registry import SourceRegistry
from core.snapshot_store import SnapshotStore
from core.sync_driver import SyncDriver, SyncState
from core.watch_registry import WatchRegistry
from core.watcher import Watcher

__all__ = [
    'ChangeDetector',
    'SourceRegistry',
    'SnapshotStore',
    'SyncDriver',
    'SyncState',
    'WatchRegistry',
    'Watcher',
]
