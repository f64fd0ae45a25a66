"""
Conversation threads derived from the flat message log.

A thread is every message about one listing exchanged between one pair of
users. Its identity is a ``ThreadKey``: the listing plus the two user ids in
ascending order, so it is the same whoever sent a given message and whoever
is looking at it. Nothing here touches the database; callers hand in message
rows (anything with ``id``, ``listing_id``, ``sender_id``, ``receiver_id``,
``created_at`` and ``is_read``).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThreadKey:
    listing_id: int
    low: int
    high: int

    def __post_init__(self):
        if self.low >= self.high:
            raise ValueError("a thread needs two distinct participants in ascending order")

    @classmethod
    def between(cls, listing_id: int, user_a: int, user_b: int) -> "ThreadKey":
        if user_a == user_b:
            raise ValueError("cannot build a thread between a user and themselves")
        return cls(int(listing_id), min(user_a, user_b), max(user_a, user_b))

    @classmethod
    def for_message(cls, message) -> "ThreadKey":
        return cls.between(message.listing_id, message.sender_id, message.receiver_id)

    @classmethod
    def parse(cls, value: str) -> "ThreadKey":
        """Decode the ``<listing>-<low>-<high>`` form used in URLs."""
        parts = str(value).split("-")
        if len(parts) != 3:
            raise ValueError(f"malformed thread id: {value!r}")
        try:
            listing_id, user_a, user_b = (int(part) for part in parts)
        except ValueError:
            raise ValueError(f"malformed thread id: {value!r}") from None
        return cls.between(listing_id, user_a, user_b)

    def __str__(self):
        return f"{self.listing_id}-{self.low}-{self.high}"

    def includes(self, user_id: int) -> bool:
        return user_id in (self.low, self.high)

    def other(self, user_id: int) -> int:
        if user_id == self.low:
            return self.high
        if user_id == self.high:
            return self.low
        raise ValueError(f"user {user_id} is not part of thread {self}")


def ordering_key(message):
    # Timestamps can collide; the id breaks the tie.
    return (message.created_at, message.id)


def is_self_message(message) -> bool:
    return message.sender_id == message.receiver_id


@dataclass
class Conversation:
    key: ThreadKey
    viewer_id: int
    messages: List = field(default_factory=list)

    @property
    def last_message(self):
        return self.messages[-1]

    @property
    def unread_count(self) -> int:
        return sum(
            1 for message in self.messages
            if message.receiver_id == self.viewer_id and not message.is_read
        )

    @property
    def other_id(self) -> int:
        return self.key.other(self.viewer_id)


def group_conversations(messages: Iterable, viewer_id: int) -> List[Conversation]:
    """
    Group the viewer's messages into conversations, most recently active first.

    Rows the viewer is not part of are ignored. Self-addressed rows can only
    come from legacy data; they are logged and never assigned to a thread.
    Messages inside each conversation are ordered oldest first.
    """
    threads = {}
    for message in messages:
        if is_self_message(message):
            logger.warning("Skipping self-addressed message %s", message.id)
            continue
        if viewer_id not in (message.sender_id, message.receiver_id):
            continue
        key = ThreadKey.for_message(message)
        if key not in threads:
            threads[key] = Conversation(key=key, viewer_id=viewer_id)
        threads[key].messages.append(message)

    conversations = list(threads.values())
    for conversation in conversations:
        conversation.messages.sort(key=ordering_key)
    conversations.sort(key=lambda c: ordering_key(c.last_message), reverse=True)
    return conversations
