"""
Watch Source model.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Set

DEFAULT_BASE_URL = "https://ftp.mozilla.org/pub"


@dataclass
class WatchSource:
    """Represents a remote directory listing being watched for new entries."""

    key: str
    path: str
    recurse: bool = False
    name_filter: Optional[str] = None
    filter_is_pattern: bool = False
    method: str = "html"
    base_url: str = DEFAULT_BASE_URL
    last_snapshot: Set[str] = field(default_factory=set)

    @classmethod
    def from_dict(cls, key: str, data: dict) -> 'WatchSource':
        """Create WatchSource from configuration dictionary."""
        return cls(
            key=key,
            path=data.get('path', key).strip('/'),
            recurse=bool(data.get('recurse', False)),
            name_filter=data.get('filter'),
            filter_is_pattern=bool(data.get('filter_is_pattern', False)),
            method=data.get('method', 'html'),
            base_url=data.get('base_url', DEFAULT_BASE_URL).rstrip('/'),
        )

    @property
    def url(self) -> str:
        """Listing URL for the top-level directory."""
        return f"{self.base_url}/{self.path}/"

    def entry_url(self, entry: str) -> str:
        """Listing URL for a sub-directory of this source."""
        return f"{self.base_url}/{self.path}/{entry}/"

    def matches(self, name: str) -> bool:
        """Check an entry name against the configured filter."""
        if not self.name_filter:
            return True
        if self.filter_is_pattern:
            return re.search(self.name_filter, name) is not None
        return self.name_filter in name

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'key': self.key,
            'path': self.path,
            'recurse': self.recurse,
            'filter': self.name_filter,
            'filter_is_pattern': self.filter_is_pattern,
            'method': self.method,
            'base_url': self.base_url,
        }
