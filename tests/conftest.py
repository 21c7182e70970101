"""
Pytest configuration and fixtures.
"""

import pytest
import os
import sys
import threading
from typing import Dict, List, Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from handlers.base_handler import BaseListingHandler
from utils.exceptions import SourceFetchError
from models.credential import Credential
from models.events import SyncBatch
from transport.base_transport import BaseTransport


class FakeListingHandler(BaseListingHandler):
    """Serves listings from a dict of url -> names; unknown urls fail."""

    def __init__(self, listings: Optional[Dict[str, List[str]]] = None):
        super().__init__({})
        self.listings = listings or {}
        self.requested: List[str] = []
        self._lock = threading.Lock()

    def get_method_name(self) -> str:
        return "fake"

    def fetch_listing(self, url: str) -> List[str]:
        with self._lock:
            self.requested.append(url)
        if url not in self.listings:
            raise SourceFetchError(source=url, url=url, reason="404 Not Found")
        return self.normalize_entries(list(self.listings[url]))


class FakeTransport(BaseTransport):
    """In-memory transport recording every outbound call."""

    def __init__(self, user_id: str = '@bot:example.org'):
        super().__init__('https://matrix.example.org')
        self._own_id = user_id
        self._logged_in_as: Optional[str] = None
        self.joined = set()
        self.sent: List[tuple] = []
        self.joins: List[str] = []
        self.leaves: List[str] = []
        self.logins = 0
        self.resets = 0
        self.restored: List[Credential] = []
        self.login_errors: List[Exception] = []
        self.restore_errors: List[Exception] = []
        self.fetch_results: List[object] = []
        self.fetch_calls: List[Optional[str]] = []
        self.stream_results: List[object] = []
        self.stream_calls: List[Optional[str]] = []
        self.join_errors: List[Exception] = []
        self.leave_errors: List[Exception] = []

    @property
    def user_id(self) -> Optional[str]:
        return self._logged_in_as

    def login(self, username, password, device_name):
        self.logins += 1
        if self.login_errors:
            raise self.login_errors.pop(0)
        self._logged_in_as = self._own_id
        return Credential(
            user_id=self._own_id,
            device_id=f'DEVICE{self.logins}',
            access_token=f'token-{self.logins}',
        )

    def restore_session(self, credential):
        if self.restore_errors:
            raise self.restore_errors.pop(0)
        self._logged_in_as = credential.user_id
        self.restored.append(credential)

    def fetch_events(self, since=None, timeout_ms=0):
        self.fetch_calls.append(since)
        result = self.fetch_results.pop(0) if self.fetch_results else SyncBatch(next_batch=f'batch-{len(self.fetch_calls)}')
        if isinstance(result, Exception):
            raise result
        return result

    def stream_events(self, since, stop_event, timeout_ms=30000):
        """Yield queued batches; raise queued errors; stop when the queue is empty."""
        self.stream_calls.append(since)
        while self.stream_results:
            result = self.stream_results.pop(0)
            if isinstance(result, Exception):
                raise result
            yield result
        stop_event.set()

    def send(self, room_id, body, html=None):
        self.sent.append((room_id, body, html))

    def join(self, room_id):
        self.joins.append(room_id)
        if self.join_errors:
            raise self.join_errors.pop(0)
        self.joined.add(room_id)

    def leave(self, room_id):
        self.leaves.append(room_id)
        if self.leave_errors:
            raise self.leave_errors.pop(0)
        self.joined.discard(room_id)

    def is_joined(self, room_id):
        return room_id in self.joined

    def reset(self):
        self.resets += 1
        self._logged_in_as = None


class NoWaitEvent(threading.Event):
    """Event whose wait() records the timeout and returns immediately."""

    def __init__(self):
        super().__init__()
        self.waits: List[float] = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        return self.is_set()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def no_wait_event():
    return NoWaitEvent()


@pytest.fixture
def credential():
    return Credential(
        user_id='@bot:example.org',
        device_id='ABCDEF',
        access_token='secret-token',
        refresh_token='refresh-me',
        next_batch='s72595_4483_1934',
    )


@pytest.fixture
def sample_listing_html():
    """Autoindex page as served by ftp.mozilla.org."""
    return '''
    <html>
        <body>
            <table>
                <tr><td><a href="/pub/firefox/">..</a></td></tr>
                <tr><td><a href="/pub/firefox/releases/115.0esr/">115.0esr/</a></td></tr>
                <tr><td><a href="/pub/firefox/releases/116.0/">116.0/</a></td></tr>
                <tr><td><a href="/pub/firefox/releases/SHA256SUMS">SHA256SUMS</a></td></tr>
            </table>
        </body>
    </html>
    '''
