"""
JSON handler for machine-readable directory listings.
Supports nginx `autoindex_format json` output and plain lists of names.
"""

import json
import requests
from typing import Optional, Dict, Any, List

from .base_handler import BaseListingHandler


class JSONListingHandler(BaseListingHandler):
    """Handler for listings served as JSON."""

    NAME_FIELDS = ('name', 'filename', 'path')

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        super().__init__(settings)

    def get_method_name(self) -> str:
        return "json"

    def fetch_listing(self, url: str) -> List[str]:
        headers = {
            'User-Agent': self.user_agent,
            'Accept': 'application/json'
        }

        try:
            self.logger.debug(f"Fetching JSON listing from {url}")
            response = requests.get(url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = json.loads(response.text)
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            raise self.handle_error(url, e) from e

        if isinstance(data, dict):
            # Some servers wrap the listing: {"entries": [...]} or {"files": [...]}
            data = data.get('entries', data.get('files', []))

        if not isinstance(data, list):
            raise self.handle_error(url, ValueError(f"unexpected listing type {type(data).__name__}"))

        return self.normalize_entries([self._entry_name(item) for item in data])

    def _entry_name(self, item: Any) -> str:
        """Extract a name from a string or an entry object."""
        if isinstance(item, str):
            return item
        if isinstance(item, dict):
            for field in self.NAME_FIELDS:
                value = item.get(field)
                if value:
                    return str(value)
        return ''
