"""
Notification Dispatcher - Announces new entries to every watching room.
"""

import html
import logging
from typing import List, Set, Tuple

from utils.exceptions import TransportError
from core.watch_registry import WatchRegistry
from models.source import WatchSource
from transport.base_transport import BaseTransport


def format_notification(source: WatchSource, entries: Set[str]) -> Tuple[str, str]:
    """
    Render a change-set as plain text and as HTML.

    Returns:
        (plain, html) pair
    """
    ordered = sorted(entries)
    count = len(ordered)
    noun = 'entry' if count == 1 else 'entries'

    plain = (
        f"{count} new {noun} under {source.path}\n"
        f"{source.path} got new uploads: {', '.join(ordered)}"
    )
    items = ''.join(f"<li>{html.escape(entry)}</li>" for entry in ordered)
    rich = (
        f"{count} new {noun} under {html.escape(source.path)}<br>"
        f"<a href=\"{html.escape(source.url, quote=True)}\">{html.escape(source.path)}</a>"
        f" got new uploads:<ul>{items}</ul>"
    )
    return plain, rich


class NotificationDispatcher:
    """Sends change-sets to the watched rooms the agent is still in."""

    def __init__(self, transport: BaseTransport, registry: WatchRegistry):
        self.transport = transport
        self.registry = registry
        self.logger = logging.getLogger('NotificationDispatcher')

    def notify(self, source: WatchSource, entries: Set[str]) -> List[str]:
        """
        Announce new entries of one source.

        Returns:
            Room ids that received the notification
        """
        if not entries:
            return []

        plain, rich = format_notification(source, entries)
        delivered = []

        for room_id in sorted(self.registry.snapshot()):
            if not self.transport.is_joined(room_id):
                self.logger.debug(f"Skipping {room_id}: no longer joined")
                continue
            try:
                self.transport.send(room_id, plain, rich)
            except TransportError as e:
                self.logger.error(f"Could not notify {room_id} about {source.key}: {e}")
                continue
            delivered.append(room_id)

        self.logger.info(f"Notified {len(delivered)} rooms about {len(entries)} new entries in {source.key}")
        return delivered
