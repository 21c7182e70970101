"""
Watcher - Main loop of the agent: polls sources and fans changes out to rooms.
"""

import logging
import threading
from typing import List, Optional

from core.change_detector import ChangeDetector
from core.commands import CommandDispatcher
from core.membership import MembershipPolicy
from core.notifications import NotificationDispatcher
from core.registry import SourceRegistry
from core.session_store import SessionStore, create_session_store
from core.sync_driver import SyncDriver
from core.watch_registry import WatchRegistry
from models.change_set import ChangeSet
from models.source import WatchSource
from transport.base_transport import BaseTransport
from transport.matrix_transport import MatrixTransport
from utils.backoff import Backoff


class Watcher:
    """Wires the sync, membership, command and polling layers together."""

    def __init__(
        self,
        config_path: str = None,
        settings_path: str = None,
        registry: Optional[SourceRegistry] = None,
        transport: Optional[BaseTransport] = None,
        store: Optional[SessionStore] = None,
        stop_event: Optional[threading.Event] = None
    ):
        """
        Initialize the agent.

        Args:
            config_path: Path to sources.yaml
            settings_path: Path to settings.yaml
            registry: Pre-built registry (overrides the paths)
            transport: Messaging transport (a MatrixTransport from settings if None)
            store: Session store (built from the configured backend if None)
            stop_event: Shared shutdown signal
        """
        self.registry = registry or SourceRegistry(config_path, settings_path)
        self.stop_event = stop_event or threading.Event()
        self.logger = logging.getLogger('Watcher')

        watcher_settings = self.registry.section('watcher')
        self.interval = float(watcher_settings.get('interval', 1800))
        self.initial_delay = float(watcher_settings.get('initial_delay', 30))

        self.detector = ChangeDetector(
            self.registry.get_handler,
            max_workers=int(watcher_settings.get('max_workers', 8)),
        )

        self._transport = transport
        self._store = store
        self.watch_registry: Optional[WatchRegistry] = None
        self.membership: Optional[MembershipPolicy] = None
        self.commands: Optional[CommandDispatcher] = None
        self.notifier: Optional[NotificationDispatcher] = None
        self.sync_driver: Optional[SyncDriver] = None

    def connect(self) -> None:
        """
        Log in, restore the watched rooms and start the background event stream.

        Raises:
            ConfigurationError: missing or invalid settings
            AuthRejectedError: the homeserver refused the login
        """
        matrix = self.registry.get_matrix_settings()
        allow_list = self.registry.get_allow_list()
        backoff_settings = self.registry.section('backoff')
        sync_settings = self.registry.section('sync')

        store = self._store or create_session_store(self.registry.get_session_backend())
        transport = self._transport or MatrixTransport(
            matrix['homeserver_url'], self.registry.get_settings()
        )
        self._store = store
        self._transport = transport

        self.watch_registry = WatchRegistry(store)
        self.watch_registry.load()

        self.membership = MembershipPolicy(
            transport,
            allow_list,
            backoff=Backoff(
                initial=float(backoff_settings.get('initial', 2)),
                multiplier=float(backoff_settings.get('multiplier', 2)),
                cap=float(backoff_settings.get('cap', 3600)),
            ),
            stop_event=self.stop_event,
        )
        self.commands = CommandDispatcher(
            transport,
            self.watch_registry,
            allow_list,
            ignore_own_messages=matrix['ignore_own_messages'],
        )
        self.notifier = NotificationDispatcher(transport, self.watch_registry)

        self.sync_driver = SyncDriver(
            transport,
            store,
            username=matrix['username'],
            password=matrix['password'],
            device_name=matrix['device_name'],
            on_invite=self._on_invite if matrix['autojoin'] else None,
            on_message=self.commands.handle,
            on_store_wiped=self.watch_registry.flush,
            stop_event=self.stop_event,
            login_attempts=int(sync_settings.get('login_attempts', 3)),
            retry_delay=float(sync_settings.get('retry_delay', 1)),
            rate_limit_delay=float(sync_settings.get('rate_limit_delay', 5)),
            stream_timeout_ms=int(sync_settings.get('timeout_ms', 30000)),
        )
        self.sync_driver.start()

        if allow_list:
            self.logger.info(f"Accepting commands from {len(allow_list)} users")
        else:
            self.logger.info("Accepting commands from everyone")

    def _on_invite(self, event) -> None:
        if event.target == self._transport.user_id:
            self.membership.handle_invite(event)

    def check_source(self, source: WatchSource) -> ChangeSet:
        """
        Poll one source and notify watching rooms about new entries.

        Args:
            source: Source to poll

        Returns:
            ChangeSet with the new entries or the error
        """
        self.logger.info(f"Checking for new entries: {source.key}")
        result = self.detector.check_source(source)

        if result.changed and self.notifier is not None:
            self.notifier.notify(source, result.new_entries)

        return result

    def check_all_sources(self) -> List[ChangeSet]:
        """
        Poll every configured source once, in configuration order.

        Returns:
            List of ChangeSet objects
        """
        sources = self.registry.get_all_sources()
        self.logger.info(f"Checking {len(sources)} sources...")

        results = []
        for source in sources:
            if self.stop_event.is_set():
                break
            results.append(self.check_source(source))

        failed = sum(1 for r in results if not r.is_success)
        changed = sum(1 for r in results if r.changed)
        self.logger.info(f"Tick finished: {changed} changed, {failed} failed")
        return results

    def run_forever(self) -> None:
        """
        Poll on a fixed interval until stop() is called.

        Raises:
            AuthRejectedError: the event stream could not log back in
        """
        self.logger.info(
            f"Watching {len(self.registry.get_all_sources())} sources every {self.interval:g}s"
        )
        if not self.stop_event.wait(self.initial_delay):
            while True:
                self.check_all_sources()
                if self.stop_event.wait(self.interval):
                    break

        if self.sync_driver is not None and self.sync_driver.error is not None:
            raise self.sync_driver.error

    def stop(self, timeout: float = 10.0) -> None:
        """Signal every loop to finish and wait for background threads."""
        self.logger.info("Shutting down")
        self.stop_event.set()
        if self.sync_driver is not None:
            self.sync_driver.stop(timeout)
        if self.membership is not None:
            self.membership.join_workers(timeout)
        if self._transport is not None:
            self._transport.close()
