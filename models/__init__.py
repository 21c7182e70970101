"""
Models package - Data classes for the application.
"""

from models.source import WatchSource
from models.change_set import ChangeSet
from models.credential import Credential, EphemeralBackend, FileBackend, SecretStoreBackend
from models.events import InviteEvent, MessageEvent, SyncBatch

__all__ = [
    'WatchSource',
    'ChangeSet',
    'Credential',
    'EphemeralBackend',
    'FileBackend',
    'SecretStoreBackend',
    'InviteEvent',
    'MessageEvent',
    'SyncBatch',
]
