"""
Command Dispatcher - Handles the `!ping`, `!watch` and `!leave` room commands.
"""

import logging
from typing import Callable, Dict, Iterable

from utils.exceptions import TransportError
from core.membership import is_trusted
from core.watch_registry import WatchRegistry
from models.events import MessageEvent
from transport.base_transport import BaseTransport

PING_REPLY = 'pong'
WATCH_REPLY = 'Watching...'
LEAVE_REPLY = 'Bye'


class CommandDispatcher:
    """Interprets inbound commands from trusted senders in joined rooms."""

    def __init__(
        self,
        transport: BaseTransport,
        registry: WatchRegistry,
        allow_list: Iterable[str] = (),
        ignore_own_messages: bool = True
    ):
        self.transport = transport
        self.registry = registry
        self.allow_list = frozenset(allow_list)
        self.ignore_own_messages = ignore_own_messages
        self.logger = logging.getLogger('CommandDispatcher')

        self.commands: Dict[str, Callable[[str], None]] = {
            '!ping': self.ping,
            '!watch': self.watch,
            '!leave': self.leave,
        }

    def handle(self, event: MessageEvent) -> bool:
        """
        Run the command in a message, if any.

        Returns:
            True if a command was executed
        """
        if not self.transport.is_joined(event.room_id):
            return False

        if self.ignore_own_messages and event.sender == self.transport.user_id:
            self.logger.debug(f"Skipping message from ourselves in {event.room_id}")
            return False

        if not is_trusted(self.allow_list, event.sender):
            return False

        command = self.commands.get(event.body)
        if command is None:
            return False

        self.logger.info(f"{event.sender} issued {event.body} in {event.room_id}")
        try:
            command(event.room_id)
        except TransportError as e:
            self.logger.error(f"Command {event.body} failed in {event.room_id}: {e}")
        return True

    def ping(self, room_id: str) -> None:
        self.transport.send(room_id, PING_REPLY)

    def watch(self, room_id: str) -> None:
        self.transport.send(room_id, WATCH_REPLY)
        if self.registry.add(room_id):
            self.logger.info(f"Now watching for {room_id}")

    def leave(self, room_id: str) -> None:
        self.transport.send(room_id, LEAVE_REPLY)
        self.registry.discard(room_id)
        self.transport.leave(room_id)
        self.logger.info(f"Left room {room_id}")
