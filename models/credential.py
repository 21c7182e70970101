"""
Credential and session backend models.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass
class Credential:
    """Authentication material for one logged-in device."""

    user_id: str
    device_id: str
    access_token: str
    refresh_token: Optional[str] = None
    next_batch: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'Credential':
        """Create Credential from a stored dictionary. Raises KeyError on missing fields."""
        return cls(
            user_id=data['user_id'],
            device_id=data['device_id'],
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            next_batch=data.get('next_batch'),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'user_id': self.user_id,
            'device_id': self.device_id,
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'next_batch': self.next_batch,
        }

    def __repr__(self) -> str:
        return f"Credential(user_id={self.user_id!r}, device_id={self.device_id!r})"


@dataclass(frozen=True)
class EphemeralBackend:
    """Nothing is stored; every start is a fresh login."""


@dataclass(frozen=True)
class FileBackend:
    """Encrypted session blob plus a room sidecar inside one directory."""

    path: str
    passphrase: str

    def __repr__(self) -> str:
        return f"FileBackend(path={self.path!r})"


@dataclass(frozen=True)
class SecretStoreBackend:
    """Fields stored in the OS secret store under one service name."""

    collection: str


SessionBackend = Union[EphemeralBackend, FileBackend, SecretStoreBackend]
