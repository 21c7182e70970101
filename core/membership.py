"""
Membership Policy - Accepts or rejects room invitations.
"""

import logging
import threading
from functools import partial
from typing import FrozenSet, Iterable, List, Optional

from utils.exceptions import TransportError
from models.events import InviteEvent
from transport.base_transport import BaseTransport
from utils.backoff import Backoff, BackoffCancelled, BackoffExhausted

ACCEPT = 'accept'
REJECT = 'reject'


def is_trusted(allow_list: FrozenSet[str], actor: str) -> bool:
    """An empty allow-list trusts everyone."""
    return not allow_list or actor in allow_list


class MembershipPolicy:
    """Decides on invitations and retries the decision with capped backoff."""

    def __init__(
        self,
        transport: BaseTransport,
        allow_list: Iterable[str] = (),
        backoff: Optional[Backoff] = None,
        stop_event: Optional[threading.Event] = None
    ):
        self.transport = transport
        self.allow_list = frozenset(allow_list)
        self.backoff = backoff or Backoff()
        self.stop_event = stop_event or threading.Event()
        self.logger = logging.getLogger('MembershipPolicy')
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()

    def decide(self, inviter: str) -> str:
        """Return ACCEPT for trusted inviters, REJECT otherwise."""
        return ACCEPT if is_trusted(self.allow_list, inviter) else REJECT

    def handle_invite(self, event: InviteEvent) -> threading.Thread:
        """
        Act on an invitation in a background thread so the event stream keeps flowing.

        Returns:
            The started worker thread
        """
        worker = threading.Thread(
            target=self.apply,
            args=(event,),
            name=f"invite-{event.room_id}",
            daemon=True,
        )
        with self._threads_lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(worker)
        worker.start()
        return worker

    def apply(self, event: InviteEvent) -> bool:
        """
        Join or reject synchronously, retrying on failure.

        Returns:
            True if the action eventually succeeded
        """
        action = self.decide(event.sender)
        if action == ACCEPT:
            self.logger.info(f"Autojoining room {event.room_id} (invited by {event.sender})")
            operation = partial(self.transport.join, event.room_id)
            verb = 'join'
        else:
            self.logger.info(f"Rejecting invite to room {event.room_id} from unknown user {event.sender}")
            operation = partial(self.transport.leave, event.room_id)
            verb = 'reject'

        try:
            self.backoff.retry(
                operation,
                description=f"{verb} room {event.room_id}",
                stop_event=self.stop_event,
                should_retry=lambda exc: isinstance(exc, TransportError),
                logger=self.logger,
            )
        except BackoffExhausted as e:
            self.logger.error(f"Can't {verb} room {event.room_id} ({e.last_error})")
            return False
        except BackoffCancelled:
            self.logger.info(f"Stopped trying to {verb} room {event.room_id}")
            return False

        if action == ACCEPT:
            self.logger.info(f"Successfully joined room {event.room_id}")
        else:
            self.logger.info(f"Rejected invite to room {event.room_id}")
        return True

    def join_workers(self, timeout: float = 5.0) -> None:
        """Wait for in-flight invite workers after the stop event is set."""
        with self._threads_lock:
            threads = list(self._threads)
        for worker in threads:
            worker.join(timeout)
