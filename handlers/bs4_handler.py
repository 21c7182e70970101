"""
BeautifulSoup handler for HTML directory index pages.
Every anchor on the page is one entry; directories end with a slash.
"""

import requests
from bs4 import BeautifulSoup
from typing import Optional, Dict, Any, List

from .base_handler import BaseListingHandler


class BS4ListingHandler(BaseListingHandler):
    """Handler for autoindex-style HTML listings using BeautifulSoup."""

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        super().__init__(settings)
        self.selector = (self.settings.get('http', {}) or {}).get('anchor_selector', 'a')

    def get_method_name(self) -> str:
        return "html"

    def fetch_listing(self, url: str) -> List[str]:
        """
        Fetch a listing page and return the text of every anchor.

        Returns:
            Entry names, in page order
        """
        headers = {
            'User-Agent': self.user_agent,
            'Accept': 'text/html,application/xhtml+xml'
        }

        try:
            self.logger.debug(f"Fetching HTML listing from {url}")
            response = requests.get(url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise self.handle_error(url, e) from e

        try:
            soup = BeautifulSoup(response.text, 'html.parser')
            names = [anchor.get_text(strip=True) for anchor in soup.select(self.selector)]
        except Exception as e:
            raise self.handle_error(url, e) from e

        entries = self.normalize_entries(names)
        self.logger.debug(f"Found {len(entries)} entries at {url}")
        return entries
