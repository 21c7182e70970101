"""
Abstract base handler for all listing retrieval methods.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
import logging

from utils.exceptions import SourceFetchError

PARENT_ENTRIES = ('..', '../', 'Parent Directory')


class BaseListingHandler(ABC):
    """Abstract base class for directory listing handlers."""

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        """
        Initialize handler with HTTP settings.

        Args:
            settings: Application settings dictionary (uses the `http` section)
        """
        self.settings = settings or {}
        self.logger = logging.getLogger(self.__class__.__name__)

        http_settings = self.settings.get('http', {}) or {}
        self.timeout = http_settings.get('timeout', 30)
        self.user_agent = http_settings.get('user_agent', 'ftp-watcher/1.0')

    @abstractmethod
    def fetch_listing(self, url: str) -> List[str]:
        """
        Fetch the entry names of one directory listing.

        Args:
            url: Listing URL (with trailing slash)

        Returns:
            Entry names in listing order, trailing slashes removed, parent link excluded

        Raises:
            SourceFetchError: if the listing cannot be fetched or parsed
        """
        pass

    @abstractmethod
    def get_method_name(self) -> str:
        """
        Get the name of the retrieval method.

        Returns:
            String identifier for this method
        """
        pass

    @staticmethod
    def normalize_entries(names: List[str]) -> List[str]:
        """Strip directory slashes and drop parent links and blanks, keeping order."""
        entries = []
        for name in names:
            name = (name or '').strip()
            if not name or name in PARENT_ENTRIES:
                continue
            name = name.rstrip('/')
            if name and name not in entries:
                entries.append(name)
        return entries

    def handle_error(self, url: str, exception: Exception) -> SourceFetchError:
        """
        Log a fetch failure and wrap it for the caller to raise.

        Args:
            url: Listing URL that failed
            exception: The exception that occurred
        """
        self.logger.error(
            f"Error fetching listing {url}: "
            f"{type(exception).__name__}: {str(exception)}"
        )
        return SourceFetchError(
            source=url,
            url=url,
            reason=f"{type(exception).__name__}: {exception}",
        )
