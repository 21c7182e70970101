"""
Tests for change detection over directory listings.
"""

import pytest
import threading
import time
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import FakeListingHandler
from core.change_detector import ChangeDetector
from core.snapshot_store import SnapshotStore
from utils.exceptions import SourceFetchError
from models.source import WatchSource

BASE = 'https://ftp.example.org/pub'


def make_source(key, **kwargs):
    return WatchSource(key=key, path=key, base_url=BASE, **kwargs)


class TestChangeDetector:
    """Tests for ChangeDetector.poll."""

    def setup_method(self):
        self.handler = FakeListingHandler()
        self.detector = ChangeDetector(lambda source: self.handler)

    def test_first_poll_is_baseline(self):
        """First poll reports nothing but records every entry."""
        source = make_source('alpha')
        self.handler.listings[source.url] = ['a/', 'b/']

        assert self.detector.poll(source) == set()
        assert source.last_snapshot == {'a', 'b'}

    def test_second_poll_returns_new_entries(self):
        source = make_source('alpha')
        self.handler.listings[source.url] = ['a/', 'b/']
        self.detector.poll(source)

        self.handler.listings[source.url] = ['a/', 'b/', 'c/']

        assert self.detector.poll(source) == {'c'}
        assert source.last_snapshot == {'a', 'b', 'c'}

    def test_identical_listing_twice_returns_nothing(self):
        source = make_source('alpha')
        self.handler.listings[source.url] = ['a', 'b']
        self.detector.poll(source)
        self.handler.listings[source.url] = ['a', 'b', 'c']

        assert self.detector.poll(source) == {'c'}
        assert self.detector.poll(source) == set()

    def test_removed_entries_are_not_reported(self):
        source = make_source('alpha')
        self.handler.listings[source.url] = ['a', 'b']
        self.detector.poll(source)
        self.handler.listings[source.url] = ['b']

        assert self.detector.poll(source) == set()
        assert source.last_snapshot == {'b'}

    def test_parent_link_is_ignored(self):
        source = make_source('alpha')
        self.handler.listings[source.url] = ['..', 'a/']
        self.detector.poll(source)

        assert source.last_snapshot == {'a'}

    def test_filter_applies_to_top_level(self):
        source = make_source('releases', name_filter='esr')
        self.handler.listings[source.url] = ['115.0esr/', '116.0/', '128.0esr/']

        self.detector.poll(source)

        assert source.last_snapshot == {'115.0esr', '128.0esr'}

    def test_pattern_filter(self):
        source = make_source('releases', name_filter=r'^\d+\.0esr$', filter_is_pattern=True)
        self.handler.listings[source.url] = ['115.0esr/', '115.0.1esr/', 'latest-esr/']

        self.detector.poll(source)

        assert source.last_snapshot == {'115.0esr'}

    def test_recursive_poll_prefixes_sub_entries(self):
        """Filtered top-level entries are expanded one level down."""
        source = make_source('beta', name_filter='v2', recurse=True)
        self.handler.listings[source.url] = ['v2-rc1/', 'other/']
        self.handler.listings[source.entry_url('v2-rc1')] = ['..', 'build1/', 'build2/']

        assert self.detector.poll(source) == set()
        assert source.last_snapshot == {'v2-rc1/build1', 'v2-rc1/build2'}
        assert self.detector.poll(source) == set()

    def test_filtered_entries_are_never_fetched(self):
        source = make_source('beta', name_filter='v2', recurse=True)
        self.handler.listings[source.url] = ['v2-rc1/', 'other/']
        self.handler.listings[source.entry_url('v2-rc1')] = ['build1/']
        self.handler.listings[source.entry_url('other')] = ['v2-build/']

        self.detector.poll(source)

        assert source.entry_url('other') not in self.handler.requested
        assert 'other/v2-build' not in source.last_snapshot

    def test_recursive_poll_reports_new_sub_entries(self):
        source = make_source('candidates', recurse=True)
        self.handler.listings[source.url] = ['1.0-candidates/']
        self.handler.listings[source.entry_url('1.0-candidates')] = ['build1/']
        self.detector.poll(source)

        self.handler.listings[source.url] = ['1.0-candidates/', '2.0-candidates/']
        self.handler.listings[source.entry_url('1.0-candidates')] = ['build1/', 'build2/']
        self.handler.listings[source.entry_url('2.0-candidates')] = ['build1/']

        assert self.detector.poll(source) == {
            '1.0-candidates/build2',
            '2.0-candidates/build1',
        }

    def test_sub_listing_failure_fails_the_poll(self):
        source = make_source('beta', recurse=True)
        self.handler.listings[source.url] = ['a/', 'b/']
        self.handler.listings[source.entry_url('a')] = ['one/']

        with pytest.raises(SourceFetchError) as exc_info:
            self.detector.poll(source)

        assert exc_info.value.source == 'beta'
        assert exc_info.value.url == source.entry_url('b')
        assert source.last_snapshot == set()

    def test_sub_listings_are_fetched_concurrently(self):
        """Each sub-listing fetch waits for all of its siblings to start."""
        source = make_source('gamma', recurse=True)
        entries = ['a', 'b', 'c']
        barrier = threading.Barrier(len(entries), timeout=5)
        self.handler.listings[source.url] = entries
        for entry in entries:
            self.handler.listings[source.entry_url(entry)] = ['build1']
        fetch = self.handler.fetch_listing

        def fetch_listing(url):
            if url != source.url:
                barrier.wait()
            return fetch(url)
        self.handler.fetch_listing = fetch_listing

        self.detector.poll(source)

        assert source.last_snapshot == {'a/build1', 'b/build1', 'c/build1'}

    def test_failure_waits_for_sibling_fetches(self):
        source = make_source('gamma', recurse=True)
        self.handler.listings[source.url] = ['a', 'b']
        self.handler.listings[source.entry_url('b')] = ['build1']
        failed = threading.Event()
        completed = []
        fetch = self.handler.fetch_listing

        def fetch_listing(url):
            if url == source.entry_url('a'):
                failed.set()
            elif url == source.entry_url('b'):
                failed.wait(5)
                time.sleep(0.05)
                completed.append(url)
            return fetch(url)
        self.handler.fetch_listing = fetch_listing

        with pytest.raises(SourceFetchError) as exc_info:
            self.detector.poll(source)

        assert exc_info.value.url == source.entry_url('a')
        assert completed == [source.entry_url('b')]

    def test_failure_keeps_previous_snapshot(self):
        source = make_source('alpha')
        self.handler.listings[source.url] = ['a']
        self.detector.poll(source)

        del self.handler.listings[source.url]
        with pytest.raises(SourceFetchError):
            self.detector.poll(source)

        assert source.last_snapshot == {'a'}

    def test_empty_first_listing_keeps_baseline_pending(self):
        """A source that lists nothing has no baseline yet."""
        source = make_source('alpha')
        self.handler.listings[source.url] = []
        self.detector.poll(source)

        self.handler.listings[source.url] = ['a']

        assert self.detector.poll(source) == set()
        assert source.last_snapshot == {'a'}


class TestCheckSource:
    """Tests for ChangeDetector.check_source."""

    def setup_method(self):
        self.handler = FakeListingHandler()
        self.detector = ChangeDetector(lambda source: self.handler)

    def test_baseline_result(self):
        source = make_source('alpha')
        self.handler.listings[source.url] = ['a', 'b']

        result = self.detector.check_source(source)

        assert result.baseline is True
        assert result.changed is False
        assert result.total_entries == 2
        assert result.status == 'unchanged'

    def test_changed_result(self):
        source = make_source('alpha')
        self.handler.listings[source.url] = ['a']
        self.detector.check_source(source)
        self.handler.listings[source.url] = ['a', 'b']

        result = self.detector.check_source(source)

        assert result.baseline is False
        assert result.new_entries == {'b'}
        assert result.status == 'updated'
        assert '+ b' in str(result)

    def test_error_result(self):
        source = make_source('missing')

        result = self.detector.check_source(source)

        assert result.is_success is False
        assert result.status == 'error'
        assert 'missing' in result.error
        assert result.to_dict()['new_entries'] == []


class TestSnapshotStore:
    """Tests for SnapshotStore."""

    def test_replace_returns_delta_after_baseline(self):
        store = SnapshotStore()
        source = make_source('alpha')

        assert store.is_baseline(source) is True
        assert store.replace(source, {'a'}) == set()
        assert store.is_baseline(source) is False
        assert store.replace(source, {'a', 'b'}) == {'b'}

    def test_get_returns_copy(self):
        store = SnapshotStore()
        source = make_source('alpha')
        store.replace(source, {'a'})

        snapshot = store.get(source)
        snapshot.add('z')

        assert source.last_snapshot == {'a'}

    def test_clear_restarts_baseline(self):
        store = SnapshotStore()
        source = make_source('alpha')
        store.replace(source, {'a'})

        store.clear(source)

        assert store.is_baseline(source) is True
        assert store.get_all_snapshots() == {}


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
