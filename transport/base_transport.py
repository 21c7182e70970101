"""
Abstract messaging transport consumed by the sync, membership and dispatch layers.
"""

from abc import ABC, abstractmethod
from typing import Iterator, Optional
import logging
import threading

from models.credential import Credential
from models.events import SyncBatch


class BaseTransport(ABC):
    """Narrow interface over a chat homeserver connection."""

    def __init__(self, homeserver_url: str):
        self.homeserver_url = homeserver_url.rstrip('/')
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def user_id(self) -> Optional[str]:
        """User id of the logged-in account, None before login."""
        pass

    @abstractmethod
    def login(self, username: str, password: str, device_name: str) -> Credential:
        """
        Log in with username and password.

        Raises:
            AuthRejectedError: wrong username or password
            TransientError: network failure
        """
        pass

    @abstractmethod
    def restore_session(self, credential: Credential) -> None:
        """
        Reuse a stored credential.

        Raises:
            InvalidTokenError: the server no longer accepts the token
        """
        pass

    @abstractmethod
    def fetch_events(self, since: Optional[str] = None, timeout_ms: int = 0) -> SyncBatch:
        """
        Fetch one batch of events after the given resumption token.

        Raises:
            TransientError, RateLimitedError, InvalidTokenError
        """
        pass

    def stream_events(
        self,
        since: Optional[str],
        stop_event: threading.Event,
        timeout_ms: int = 30000
    ) -> Iterator[SyncBatch]:
        """
        Yield batches forever, each resuming from the previous one.

        Transient failures are retried here; rate limits and token
        rejections propagate to the caller.
        """
        token = since
        while not stop_event.is_set():
            batch = self.fetch_events(token, timeout_ms=timeout_ms)
            token = batch.next_batch
            yield batch

    @abstractmethod
    def send(self, room_id: str, body: str, html: Optional[str] = None) -> None:
        """Send a text message, optionally with a rich-text rendering."""
        pass

    @abstractmethod
    def join(self, room_id: str) -> None:
        """Join (or accept an invitation to) a room."""
        pass

    @abstractmethod
    def leave(self, room_id: str) -> None:
        """Leave a room, or reject a pending invitation."""
        pass

    @abstractmethod
    def is_joined(self, room_id: str) -> bool:
        """True if the agent is currently a member of the room."""
        pass

    def reset(self) -> None:
        """Drop the current connection and token so the next call starts afresh."""
        pass

    def close(self) -> None:
        """Release network resources."""
        pass
