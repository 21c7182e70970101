"""
Change Detector - Diffs remote directory listings against stored snapshots.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Set

from utils.exceptions import SourceFetchError
from core.snapshot_store import SnapshotStore
from handlers.base_handler import BaseListingHandler
from models.change_set import ChangeSet
from models.source import WatchSource

HandlerLookup = Callable[[WatchSource], BaseListingHandler]


class ChangeDetector:
    """Polls sources and reports newly appeared entries."""

    def __init__(
        self,
        get_handler: HandlerLookup,
        snapshots: Optional[SnapshotStore] = None,
        max_workers: int = 8
    ):
        """
        Initialize the detector.

        Args:
            get_handler: Returns the listing handler for a source
            snapshots: Snapshot store (a fresh one if not given)
            max_workers: Upper bound on concurrent sub-listing fetches per poll
        """
        self.get_handler = get_handler
        self.snapshots = snapshots or SnapshotStore()
        self.max_workers = max_workers
        self.logger = logging.getLogger('ChangeDetector')

    def poll(self, source: WatchSource) -> Set[str]:
        """
        Fetch the listing of a source and return the entries that are new.

        The first poll of a source returns an empty set and records the
        baseline. Fetch or parse failures raise SourceFetchError and leave
        the snapshot untouched.
        """
        candidates = self.fetch_candidates(source)
        baseline = self.snapshots.is_baseline(source)
        delta = self.snapshots.replace(source, candidates)

        if baseline:
            self.logger.info(f"Baseline for {source.key}: {len(candidates)} entries")
        elif delta:
            self.logger.info(f"{source.key} has {len(delta)} new entries: {sorted(delta)}")
        else:
            self.logger.debug(f"No new entries for {source.key}")
        return delta

    def check_source(self, source: WatchSource) -> ChangeSet:
        """Poll a source and wrap the outcome, including failures, in a ChangeSet."""
        baseline = self.snapshots.is_baseline(source)
        try:
            delta = self.poll(source)
        except SourceFetchError as e:
            self.logger.error(f"Poll failed for {source.key} ({source.url}): {e.message}")
            return ChangeSet(source=source.key, url=source.url, error=e.message)

        return ChangeSet(
            source=source.key,
            url=source.url,
            new_entries=delta,
            baseline=baseline,
            total_entries=len(self.snapshots.get(source)),
        )

    def fetch_candidates(self, source: WatchSource) -> Set[str]:
        """Fetch the filtered top level and, for recursive sources, one level below it."""
        handler = self.get_handler(source)
        top_level = [
            name for name in self._fetch(handler, source, source.url)
            if source.matches(name)
        ]

        if not source.recurse:
            return set(top_level)

        if not top_level:
            return set()

        candidates: Set[str] = set()
        workers = min(self.max_workers, len(top_level))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"poll-{source.key}") as pool:
            futures = [
                (entry, pool.submit(self._fetch, handler, source, source.entry_url(entry)))
                for entry in top_level
            ]
            # leaving the pool joins every fetch before a failure propagates
            for entry, future in futures:
                candidates.update(f"{entry}/{sub}" for sub in future.result())

        return candidates

    def _fetch(self, handler: BaseListingHandler, source: WatchSource, url: str) -> List[str]:
        try:
            return handler.fetch_listing(url)
        except SourceFetchError as e:
            raise SourceFetchError(source=source.key, url=url, reason=e.reason) from e
