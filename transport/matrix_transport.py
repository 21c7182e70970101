"""
Matrix client-server API transport over plain HTTP.
Unencrypted rooms only; no end-to-end encryption support.
"""

import itertools
import threading
import time
from typing import Any, Dict, Iterator, List, Optional, Set
from urllib.parse import quote

import requests

from utils.exceptions import (
    AuthRejectedError,
    InvalidTokenError,
    RateLimitedError,
    TransientError,
    TransportError,
)
from models.credential import Credential
from models.events import Event, InviteEvent, MessageEvent, SyncBatch
from .base_transport import BaseTransport

API_PREFIX = '/_matrix/client/v3'
TOKEN_ERRCODES = ('M_UNKNOWN_TOKEN', 'M_MISSING_TOKEN')


class MatrixTransport(BaseTransport):
    """Transport speaking the Matrix client-server API with requests."""

    def __init__(self, homeserver_url: str, settings: Dict[str, Any] = None):
        super().__init__(homeserver_url)
        self.settings = settings or {}
        http_settings = self.settings.get('http', {}) or {}
        self.timeout = http_settings.get('timeout', 30)
        self.user_agent = http_settings.get('user_agent', 'ftp-watcher/1.0')
        self.transient_delay = http_settings.get('transient_retry_delay', 5)

        self.session = requests.Session()
        self.session.headers.update({'User-Agent': self.user_agent})

        self._user_id: Optional[str] = None
        self._access_token: Optional[str] = None
        self._joined: Set[str] = set()
        self._joined_lock = threading.Lock()
        self._txn_counter = itertools.count()

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def login(self, username: str, password: str, device_name: str) -> Credential:
        payload = {
            'type': 'm.login.password',
            'identifier': {'type': 'm.id.user', 'user': username},
            'password': password,
            'initial_device_display_name': device_name,
        }
        try:
            data = self._request('POST', '/login', json=payload, auth=False)
        except InvalidTokenError as e:
            raise AuthRejectedError(f"Login rejected for {username}", e.status_code, e.errcode) from e
        except TransportError as e:
            if e.status_code == 403 or e.errcode == 'M_FORBIDDEN':
                raise AuthRejectedError(f"Login rejected for {username}", e.status_code, e.errcode) from e
            raise

        credential = Credential(
            user_id=data['user_id'],
            device_id=data['device_id'],
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
        )
        self._apply(credential)
        self.logger.info(f"Logged in as {credential.user_id} (device {credential.device_id})")
        return credential

    def restore_session(self, credential: Credential) -> None:
        self._apply(credential)
        data = self._request('GET', '/account/whoami')
        if data.get('user_id') != credential.user_id:
            self._access_token = None
            raise InvalidTokenError(
                f"Stored token belongs to {data.get('user_id')}, expected {credential.user_id}"
            )
        # an incremental sync only lists rooms with new activity
        self.refresh_joined_rooms()
        self.logger.info(f"Restored session for {credential.user_id}")

    def refresh_joined_rooms(self) -> Set[str]:
        """Replace the joined-room state with the server's current list."""
        data = self._request('GET', '/joined_rooms')
        rooms = set(data.get('joined_rooms', []) or [])
        with self._joined_lock:
            self._joined = rooms
        self.logger.debug(f"Member of {len(rooms)} rooms")
        return set(rooms)

    def fetch_events(self, since: Optional[str] = None, timeout_ms: int = 0) -> SyncBatch:
        params = {'timeout': str(timeout_ms)}
        if since:
            params['since'] = since
        data = self._request('GET', '/sync', params=params, extra_timeout=timeout_ms / 1000.0)
        return SyncBatch(next_batch=data['next_batch'], events=self._parse_sync(data))

    def stream_events(
        self,
        since: Optional[str],
        stop_event: threading.Event,
        timeout_ms: int = 30000
    ) -> Iterator[SyncBatch]:
        token = since
        while not stop_event.is_set():
            try:
                batch = self.fetch_events(token, timeout_ms=timeout_ms)
            except TransientError as e:
                self.logger.warning(f"Sync failed ({e}), retrying in {self.transient_delay}s")
                stop_event.wait(self.transient_delay)
                continue
            token = batch.next_batch
            yield batch

    def send(self, room_id: str, body: str, html: Optional[str] = None) -> None:
        content = {'msgtype': 'm.text', 'body': body}
        if html is not None:
            content['format'] = 'org.matrix.custom.html'
            content['formatted_body'] = html
        txn_id = f"{int(time.time() * 1000)}-{next(self._txn_counter)}"
        path = f"/rooms/{quote(room_id, safe='')}/send/m.room.message/{txn_id}"
        self._request('PUT', path, json=content)

    def join(self, room_id: str) -> None:
        self._request('POST', f"/join/{quote(room_id, safe='')}", json={})
        with self._joined_lock:
            self._joined.add(room_id)

    def leave(self, room_id: str) -> None:
        self._request('POST', f"/rooms/{quote(room_id, safe='')}/leave", json={})
        with self._joined_lock:
            self._joined.discard(room_id)

    def is_joined(self, room_id: str) -> bool:
        with self._joined_lock:
            return room_id in self._joined

    def reset(self) -> None:
        self.session.close()
        self.session = requests.Session()
        self.session.headers.update({'User-Agent': self.user_agent})
        self._access_token = None
        self.logger.info("Connection rebuilt")

    def close(self) -> None:
        self.session.close()

    def _apply(self, credential: Credential) -> None:
        self._user_id = credential.user_id
        self._access_token = credential.access_token

    def _parse_sync(self, data: Dict[str, Any]) -> List[Event]:
        """Turn a /sync response into events and update joined-room state."""
        rooms = data.get('rooms', {}) or {}
        events: List[Event] = []

        with self._joined_lock:
            self._joined.update(rooms.get('join', {}) or {})
            self._joined.difference_update(rooms.get('leave', {}) or {})

        for room_id, room in (rooms.get('invite', {}) or {}).items():
            for event in (room.get('invite_state', {}) or {}).get('events', []):
                content = event.get('content', {}) or {}
                if (event.get('type') == 'm.room.member'
                        and content.get('membership') == 'invite'
                        and event.get('state_key') == self._user_id):
                    events.append(InviteEvent(
                        room_id=room_id,
                        sender=event.get('sender', ''),
                        target=event['state_key'],
                    ))

        for room_id, room in (rooms.get('join', {}) or {}).items():
            for event in (room.get('timeline', {}) or {}).get('events', []):
                content = event.get('content', {}) or {}
                if event.get('type') != 'm.room.message' or content.get('msgtype') != 'm.text':
                    continue
                events.append(MessageEvent(
                    room_id=room_id,
                    sender=event.get('sender', ''),
                    body=content.get('body', ''),
                    event_id=event.get('event_id', ''),
                ))

        return events

    def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        auth: bool = True,
        extra_timeout: float = 0.0
    ) -> Dict[str, Any]:
        """Perform one API call and map failures onto the transport error types."""
        url = f"{self.homeserver_url}{API_PREFIX}{path}"
        headers = {}
        if auth:
            if not self._access_token:
                raise InvalidTokenError("No access token", errcode='M_MISSING_TOKEN')
            headers['Authorization'] = f"Bearer {self._access_token}"

        try:
            response = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout + extra_timeout,
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientError(f"{method} {path} failed: {type(e).__name__}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code < 400:
            try:
                return response.json()
            except ValueError as e:
                raise TransientError(f"{method} {path} returned invalid JSON", response.status_code) from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        errcode = body.get('errcode') if isinstance(body, dict) else None
        error = body.get('error', response.reason) if isinstance(body, dict) else response.reason
        message = f"{method} {path} failed: {error}"

        if response.status_code == 429 or errcode == 'M_LIMIT_EXCEEDED':
            retry_after_ms = body.get('retry_after_ms') if isinstance(body, dict) else None
            retry_after = retry_after_ms / 1000.0 if retry_after_ms is not None else None
            if retry_after is None and response.headers.get('Retry-After', '').isdigit():
                retry_after = float(response.headers['Retry-After'])
            raise RateLimitedError(message, retry_after=retry_after)
        if response.status_code == 401 or errcode in TOKEN_ERRCODES:
            raise InvalidTokenError(message, response.status_code, errcode)
        if response.status_code >= 500:
            raise TransientError(message, response.status_code, errcode)
        raise TransportError(message, response.status_code, errcode)
