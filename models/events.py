"""
Event models delivered by the messaging transport.
"""

from dataclasses import dataclass, field
from typing import List, Union


@dataclass
class InviteEvent:
    """The agent was invited into a room."""

    room_id: str
    sender: str
    target: str


@dataclass
class MessageEvent:
    """A text message posted in a joined room."""

    room_id: str
    sender: str
    body: str
    event_id: str = ""


Event = Union[InviteEvent, MessageEvent]


@dataclass
class SyncBatch:
    """One batch of events together with the token that resumes after it."""

    next_batch: str
    events: List[Event] = field(default_factory=list)
