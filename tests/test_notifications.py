"""
Tests for change notifications and the polling loop.
"""

import pytest
from unittest.mock import Mock
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import FakeListingHandler, FakeTransport, NoWaitEvent
from core.change_detector import ChangeDetector
from core.notifications import NotificationDispatcher, format_notification
from core.registry import SourceRegistry
from core.session_store import EphemeralSessionStore
from core.watch_registry import WatchRegistry
from core.watcher import Watcher
from utils.exceptions import AuthRejectedError, ConfigurationError, TransportError
from models.events import SyncBatch
from models.source import WatchSource

BASE = 'https://ftp.example.org/pub'
ROOM_A = '!a:example.org'
ROOM_B = '!b:example.org'

SOURCES_YAML = f"""
alpha:
  path: alpha
  base_url: {BASE}
beta:
  path: beta
  base_url: {BASE}
gamma:
  path: gamma
  base_url: {BASE}
"""

SETTINGS_YAML = """
matrix:
  homeserver_url: https://matrix.example.org
  username: bot
  password: pw
watcher:
  interval: 60
  initial_delay: 5
"""


class TestFormatNotification:

    def test_single_entry(self):
        source = WatchSource(key='alpha', path='firefox/releases', base_url=BASE)

        plain, rich = format_notification(source, {'116.0'})

        assert plain.startswith('1 new entry under firefox/releases')
        assert 'firefox/releases got new uploads: 116.0' in plain
        assert f'<a href="{BASE}/firefox/releases/">firefox/releases</a>' in rich
        assert '<li>116.0</li>' in rich

    def test_entries_are_sorted(self):
        source = WatchSource(key='alpha', path='alpha', base_url=BASE)

        plain, _ = format_notification(source, {'c', 'a', 'b'})

        assert plain.startswith('3 new entries')
        assert plain.endswith('a, b, c')

    def test_html_is_escaped(self):
        source = WatchSource(key='alpha', path='alpha', base_url=BASE)

        _, rich = format_notification(source, {'<script>'})

        assert '<script>' not in rich
        assert '&lt;script&gt;' in rich


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher."""

    def setup_method(self):
        self.transport = FakeTransport()
        self.transport.joined = {ROOM_A, ROOM_B}
        self.registry = WatchRegistry()
        self.dispatcher = NotificationDispatcher(self.transport, self.registry)
        self.source = WatchSource(key='alpha', path='alpha', base_url=BASE)

    def test_every_watching_room_is_notified(self):
        self.registry.add(ROOM_B)
        self.registry.add(ROOM_A)

        delivered = self.dispatcher.notify(self.source, {'x'})

        assert delivered == [ROOM_A, ROOM_B]
        assert [room for room, _, _ in self.transport.sent] == [ROOM_A, ROOM_B]
        assert all(html is not None for _, _, html in self.transport.sent)

    def test_rooms_no_longer_joined_are_skipped(self):
        self.registry.add(ROOM_A)
        self.registry.add('!gone:example.org')

        delivered = self.dispatcher.notify(self.source, {'x'})

        assert delivered == [ROOM_A]
        assert self.registry.snapshot() == {ROOM_A, '!gone:example.org'}

    def test_empty_change_set_sends_nothing(self):
        self.registry.add(ROOM_A)

        assert self.dispatcher.notify(self.source, set()) == []
        assert self.transport.sent == []

    def test_send_failure_does_not_stop_fan_out(self):
        self.registry.add(ROOM_A)
        self.registry.add(ROOM_B)
        sent = []

        def send(room_id, body, html=None):
            if room_id == ROOM_A:
                raise TransportError('forbidden', 403)
            sent.append(room_id)
        self.transport.send = send

        assert self.dispatcher.notify(self.source, {'x'}) == [ROOM_B]
        assert sent == [ROOM_B]


class TestWatcher:
    """Tests for the polling loop."""

    def setup_method(self):
        self.handler = FakeListingHandler()
        self.transport = FakeTransport()
        self.transport.joined = {ROOM_A}
        self.event = NoWaitEvent()

    def make_watcher(self, tmp_path):
        sources = tmp_path / 'sources.yaml'
        settings = tmp_path / 'settings.yaml'
        sources.write_text(SOURCES_YAML)
        settings.write_text(SETTINGS_YAML)

        watcher = Watcher(
            str(sources), str(settings),
            transport=self.transport,
            store=EphemeralSessionStore(),
            stop_event=self.event,
        )
        watcher.detector = ChangeDetector(lambda source: self.handler)
        watcher.watch_registry = WatchRegistry()
        watcher.watch_registry.add(ROOM_A)
        watcher.notifier = NotificationDispatcher(self.transport, watcher.watch_registry)
        return watcher

    def test_settings_are_read(self, tmp_path):
        watcher = self.make_watcher(tmp_path)

        assert watcher.interval == 60
        assert watcher.initial_delay == 5
        assert watcher.registry.list_sources() == ['alpha', 'beta', 'gamma']

    def test_failing_source_does_not_abort_tick(self, tmp_path):
        watcher = self.make_watcher(tmp_path)
        self.handler.listings[f'{BASE}/alpha/'] = ['a1']
        self.handler.listings[f'{BASE}/gamma/'] = ['g1']
        watcher.check_all_sources()

        self.handler.listings[f'{BASE}/alpha/'] = ['a1', 'a2']
        self.handler.listings[f'{BASE}/gamma/'] = ['g1', 'g2']
        results = watcher.check_all_sources()

        assert [r.source for r in results] == ['alpha', 'beta', 'gamma']
        assert [r.status for r in results] == ['updated', 'error', 'updated']
        assert [body.splitlines()[-1] for _, body, _ in self.transport.sent] == [
            'alpha got new uploads: a2',
            'gamma got new uploads: g2',
        ]

    def test_baseline_is_not_announced(self, tmp_path):
        watcher = self.make_watcher(tmp_path)
        self.handler.listings[f'{BASE}/alpha/'] = ['a1', 'a2']

        result = watcher.check_source(watcher.registry.get_source('alpha'))

        assert result.baseline is True
        assert self.transport.sent == []

    def test_tick_stops_when_stop_is_set(self, tmp_path):
        watcher = self.make_watcher(tmp_path)
        self.event.set()

        assert watcher.check_all_sources() == []

    def test_run_forever_waits_then_polls(self, tmp_path):
        watcher = self.make_watcher(tmp_path)
        watcher.check_all_sources = Mock(side_effect=lambda: self.event.set())

        watcher.run_forever()

        watcher.check_all_sources.assert_called_once_with()
        assert self.event.waits == [5, 60]

    def test_run_forever_reports_stream_failure(self, tmp_path):
        watcher = self.make_watcher(tmp_path)
        self.event.set()
        watcher.sync_driver = Mock(error=AuthRejectedError('password changed', 403))

        with pytest.raises(AuthRejectedError):
            watcher.run_forever()

    def test_connect_logs_in_and_streams(self, tmp_path):
        watcher = self.make_watcher(tmp_path)
        self.transport.fetch_results = [SyncBatch(next_batch='s1')]

        watcher.connect()
        watcher.stop()

        assert self.transport.logins == 1
        assert self.transport.fetch_calls == [None]
        assert watcher.sync_driver.next_batch == 's1'
        assert watcher.commands is not None
        assert not watcher.sync_driver.is_alive()

    def test_connect_requires_credentials(self, tmp_path):
        sources = tmp_path / 'sources.yaml'
        settings = tmp_path / 'settings.yaml'
        sources.write_text(SOURCES_YAML)
        settings.write_text('matrix:\n  homeserver_url: https://matrix.example.org\n')
        registry = SourceRegistry(str(sources), str(settings))
        registry.settings['matrix'].pop('username', None)
        registry.settings['matrix'].pop('password', None)
        watcher = Watcher(registry=registry, transport=self.transport, stop_event=self.event)

        with pytest.raises(ConfigurationError):
            watcher.connect()
        assert self.transport.logins == 0


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
