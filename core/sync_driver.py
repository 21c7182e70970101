"""
Sync Driver - Keeps the agent logged in and its event stream flowing.

States:

    UNAUTHENTICATED -> AUTHENTICATING -> CATCHING_UP -> STREAMING
                            ^                 |            |
                            +-- REAUTHENTICATING <---------+

A rejected token in CATCHING_UP or STREAMING wipes the session store,
rebuilds the connection and logs in again. Every batch token is written
to the session store before the next step.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Iterable, Optional

from utils.exceptions import (
    AuthRejectedError,
    InvalidTokenError,
    PersistenceError,
    RateLimitedError,
    SessionCorrupt,
    SessionNotFound,
    TransientError,
    TransportError,
)
from core.session_store import SessionStore
from models.credential import Credential
from models.events import Event, InviteEvent, MessageEvent, SyncBatch
from transport.base_transport import BaseTransport

DEFAULT_RATE_LIMIT_DELAY = 5.0


class SyncState(Enum):
    UNAUTHENTICATED = 'unauthenticated'
    AUTHENTICATING = 'authenticating'
    CATCHING_UP = 'catching_up'
    STREAMING = 'streaming'
    REAUTHENTICATING = 'reauthenticating'
    STOPPED = 'stopped'


class SyncStopped(Exception):
    """Raised inside the driver when the stop event interrupts a retry loop."""

    pass


class SyncDriver:
    """Owns the authenticated connection and the background event stream."""

    def __init__(
        self,
        transport: BaseTransport,
        store: SessionStore,
        username: str,
        password: str,
        device_name: str = 'Mozilla FTP watcher',
        on_invite: Optional[Callable[[InviteEvent], object]] = None,
        on_message: Optional[Callable[[MessageEvent], object]] = None,
        on_store_wiped: Optional[Callable[[], object]] = None,
        stop_event: Optional[threading.Event] = None,
        login_attempts: int = 3,
        retry_delay: float = 1.0,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
        stream_timeout_ms: int = 30000
    ):
        """
        Initialize the driver.

        Args:
            transport: Connection to the homeserver
            store: Session store for credentials and the resumption token
            username: Login name for fresh logins
            password: Password for fresh logins
            device_name: Display name given to a newly created device
            on_invite: Called for each invitation addressed to the agent
            on_message: Called for each message in a joined room (not during catch-up)
            on_store_wiped: Called after a fresh login that followed a store wipe
            stop_event: Shared shutdown signal
            login_attempts: Attempts before a non-transient login failure is fatal
            retry_delay: Pause between retries of transient failures
            rate_limit_delay: Pause after a rate limit without a server-provided delay
            stream_timeout_ms: Long-poll timeout of each streaming request
        """
        self.transport = transport
        self.store = store
        self.username = username
        self.password = password
        self.device_name = device_name
        self.on_invite = on_invite
        self.on_message = on_message
        self.on_store_wiped = on_store_wiped
        self.stop_event = stop_event or threading.Event()
        self.login_attempts = max(1, login_attempts)
        self.retry_delay = retry_delay
        self.rate_limit_delay = rate_limit_delay
        self.stream_timeout_ms = stream_timeout_ms

        self.credential: Optional[Credential] = None
        self.state = SyncState.UNAUTHENTICATED
        self.error: Optional[Exception] = None
        self.logger = logging.getLogger('SyncDriver')
        self._thread: Optional[threading.Thread] = None
        self._store_wiped = False

    @property
    def next_batch(self) -> Optional[str]:
        return self.credential.next_batch if self.credential else None

    def start(self) -> None:
        """
        Log in, catch up and start streaming in the background.

        Raises:
            AuthRejectedError: the homeserver refused the username/password
            TransportError: a non-transient login failure persisted
            SyncStopped: the stop event was set before streaming began
        """
        self.restore_or_login()
        self.catch_up()
        self.start_streaming()

    def restore_or_login(self) -> Credential:
        """Reuse a stored session when it is still valid, otherwise log in."""
        self._set_state(SyncState.UNAUTHENTICATED)
        if self.store.exists():
            try:
                credential = self.store.restore()
                self._retry_transient(
                    lambda: self.transport.restore_session(credential),
                    'restore session',
                )
                self.credential = credential
                self.logger.info(f"Restored session for {credential.user_id}")
                return credential
            except SessionNotFound as e:
                self.logger.info(f"No usable stored session: {e}")
            except SessionCorrupt as e:
                self.logger.warning(f"Stored session is corrupt, logging in afresh: {e}")
            except InvalidTokenError as e:
                self.logger.warning(f"Stored session was rejected ({e}), wiping it")
                self._wipe_store()
                self.transport.reset()
            except TransportError as e:
                self.logger.warning(f"Could not restore stored session ({e}), logging in afresh")
                self.transport.reset()

        return self.authenticate()

    def authenticate(self) -> Credential:
        """Fresh username/password login; persists the new credential."""
        self._set_state(SyncState.AUTHENTICATING)
        failures = 0

        while True:
            self._check_stopped()
            try:
                credential = self.transport.login(self.username, self.password, self.device_name)
                break
            except AuthRejectedError as e:
                self.logger.critical(f"Login rejected for {self.username}: {e}")
                raise
            except TransientError as e:
                self.logger.warning(f"Login timed out ({e}), retrying")
                self._wait(self.retry_delay)
            except RateLimitedError as e:
                delay = e.retry_after if e.retry_after is not None else self.rate_limit_delay
                self.logger.warning(f"Login rate limited, retrying in {delay:g}s")
                self._wait(delay)
            except TransportError as e:
                failures += 1
                if failures >= self.login_attempts:
                    self.logger.error(f"Login failed {failures} times, giving up: {e}")
                    raise
                self.logger.warning(f"Login failed ({e}), attempt {failures} of {self.login_attempts}")
                self._wait(self.retry_delay)

        self.credential = credential
        self._persist(credential)
        if self._store_wiped:
            self._store_wiped = False
            if self.on_store_wiped is not None:
                self.on_store_wiped()
        return credential

    def reauthenticate(self) -> Credential:
        """Throw away the stored and in-memory session and log in again."""
        self._set_state(SyncState.REAUTHENTICATING)
        self.logger.warning("Access token rejected, reauthenticating")
        self._wipe_store()
        self.credential = None
        self.transport.reset()
        return self.authenticate()

    def catch_up(self) -> SyncBatch:
        """
        Fetch events up to now in one bounded request and store the new token.

        Invitations found here are acted upon; messages are not, so commands
        sent while the agent was offline are not replayed.
        """
        self._set_state(SyncState.CATCHING_UP)

        while True:
            self._check_stopped()
            try:
                batch = self.transport.fetch_events(self.next_batch, timeout_ms=0)
                break
            except TransientError as e:
                self.logger.warning(f"Catch-up sync failed ({e}), retrying")
                self._wait(self.retry_delay)
            except RateLimitedError as e:
                self._wait_rate_limit(e, 'catch-up sync')
            except InvalidTokenError:
                self.reauthenticate()
                self._set_state(SyncState.CATCHING_UP)

        self.dispatch(batch.events, include_messages=False)
        self._advance(batch.next_batch)
        self._set_state(SyncState.STREAMING)
        return batch

    def start_streaming(self) -> threading.Thread:
        """Run the event stream in a background thread."""
        self._thread = threading.Thread(target=self.stream, name='sync-stream', daemon=True)
        self._thread.start()
        return self._thread

    def stream(self) -> None:
        """Consume the event stream until the stop event is set."""
        self._set_state(SyncState.STREAMING)
        needs_reauth = False
        try:
            while not self.stop_event.is_set():
                try:
                    if needs_reauth:
                        needs_reauth = False
                        self.reauthenticate()
                        self.catch_up()
                    for batch in self.transport.stream_events(
                        self.next_batch, self.stop_event, timeout_ms=self.stream_timeout_ms
                    ):
                        self.dispatch(batch.events)
                        self._advance(batch.next_batch)
                        if self.stop_event.is_set():
                            break
                except RateLimitedError as e:
                    self._wait_rate_limit(e, 'sync')
                except InvalidTokenError:
                    needs_reauth = True
                except TransientError as e:
                    self.logger.warning(f"Sync failed ({e}), retrying")
                    self._wait(self.retry_delay)
                except AuthRejectedError as e:
                    self.logger.critical(f"Reauthentication rejected, stopping: {e}")
                    self.error = e
                    self.stop_event.set()
                except TransportError as e:
                    self.logger.error(f"Sync failed ({e}), retrying in {self.retry_delay:g}s")
                    if self.credential is None:
                        needs_reauth = True
                    self._wait(self.retry_delay)
        except SyncStopped:
            pass
        finally:
            self._set_state(SyncState.STOPPED)
            self.logger.info("Event stream stopped")

    def dispatch(self, events: Iterable[Event], include_messages: bool = True) -> None:
        """Hand each event to its handler; a failing handler does not stop the stream."""
        for event in events:
            try:
                if isinstance(event, InviteEvent):
                    if self.on_invite is not None:
                        self.on_invite(event)
                elif isinstance(event, MessageEvent):
                    if include_messages and self.on_message is not None:
                        self.on_message(event)
            except Exception:
                self.logger.exception(f"Handler failed for event in {event.room_id}")

    def stop(self, timeout: float = 10.0) -> None:
        """Signal the stream to stop and wait for its thread."""
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                self.logger.warning(f"Event stream did not stop within {timeout}s")

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _advance(self, next_batch: str) -> None:
        """Record a new resumption token in memory and in the store."""
        if self.credential is None:
            return
        try:
            self.store.save_token(self.credential, next_batch)
        except PersistenceError as e:
            self.logger.error(f"Could not persist sync token: {e}")
        self.credential.next_batch = next_batch

    def _wipe_store(self) -> None:
        self.store.wipe()
        self._store_wiped = True

    def _persist(self, credential: Credential) -> None:
        try:
            self.store.persist(credential)
        except PersistenceError as e:
            self.logger.error(f"Could not persist session for {credential.user_id}: {e}")

    def _retry_transient(self, operation: Callable[[], object], description: str) -> None:
        while True:
            self._check_stopped()
            try:
                operation()
                return
            except TransientError as e:
                self.logger.warning(f"Failed to {description} ({e}), retrying")
                self._wait(self.retry_delay)
            except RateLimitedError as e:
                self._wait_rate_limit(e, description)

    def _wait_rate_limit(self, error: RateLimitedError, description: str) -> None:
        delay = error.retry_after if error.retry_after is not None else self.rate_limit_delay
        self.logger.warning(f"Rate limited during {description}, retrying in {delay:g}s")
        self._wait(delay)

    def _wait(self, delay: float) -> None:
        if self.stop_event.wait(delay):
            raise SyncStopped()

    def _check_stopped(self) -> None:
        if self.stop_event.is_set():
            raise SyncStopped()

    def _set_state(self, state: SyncState) -> None:
        if state != self.state:
            self.logger.debug(f"Sync state {self.state.value} -> {state.value}")
            self.state = state
