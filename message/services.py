"""
Messaging operations: send, project conversations, read threads, mark read.

Every function takes plain ids for the caller and the other parties; the
caller id is trusted (authentication happens in the views). Failures are
raised as REST framework exceptions so the API maps them to 400/403/404.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from django.contrib.auth import get_user_model
from django.db.models import F, Q
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from listing.models import Listing
from .models import Message
from .signals import message_created
from .threads import Conversation, ThreadKey, group_conversations

logger = logging.getLogger(__name__)
User = get_user_model()


@dataclass
class ConversationSummary:
    key: ThreadKey
    listing: Listing
    other: "User"
    last_message: Message
    unread_count: int


def _thread_filter(key: ThreadKey) -> Q:
    return Q(listing_id=key.listing_id) & (
        Q(sender_id=key.low, receiver_id=key.high) |
        Q(sender_id=key.high, receiver_id=key.low)
    )


# ---- Ingestion ----

def send_message(sender_id: int, receiver_id: int, listing_id: int, content: str) -> Message:
    if sender_id == receiver_id:
        raise ValidationError({"receiver_id": "You cannot send a message to yourself."})

    content = (content or "").strip()
    if not content:
        raise ValidationError({"content": "Message cannot be empty."})

    if not User.objects.filter(id=sender_id).exists():
        raise NotFound("Sender not found.")
    if not User.objects.filter(id=receiver_id).exists():
        raise NotFound("Receiver not found.")
    if not Listing.objects.filter(id=listing_id).exists():
        raise NotFound("Listing not found.")

    message = Message.objects.create(
        listing_id=listing_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
    )
    logger.info(
        "Message %s sent by %s to %s about listing %s",
        message.id, sender_id, receiver_id, listing_id
    )
    # Push delivery is best effort; the stored message is what counts.
    for receiver, result in message_created.send_robust(sender=Message, message_id=message.id):
        if isinstance(result, Exception):
            logger.error("Push for message %s failed in %r: %s", message.id, receiver, result)
    return message


# ---- Projection ----

def list_conversations(viewer_id: int) -> List[ConversationSummary]:
    """
    Conversations of ``viewer_id``, most recently active first.

    Unread counts are relative to the viewer: only messages the viewer
    received and has not read are counted.
    """
    messages = (
        Message.objects
        .filter(Q(sender_id=viewer_id) | Q(receiver_id=viewer_id))
        .select_related("listing", "sender", "receiver")
    )
    return [_summarize(conversation) for conversation in group_conversations(messages, viewer_id)]


def _summarize(conversation: Conversation) -> ConversationSummary:
    last = conversation.last_message
    other = last.receiver if last.sender_id == conversation.viewer_id else last.sender
    return ConversationSummary(
        key=conversation.key,
        listing=last.listing,
        other=other,
        last_message=last,
        unread_count=conversation.unread_count,
    )


def get_thread_messages(viewer_id: int, listing_id: int, other_id: int) -> List[Message]:
    if viewer_id == other_id:
        raise ValidationError("A thread needs two different participants.")
    if not Listing.objects.filter(id=listing_id).exists():
        raise NotFound("Listing not found.")

    key = ThreadKey.between(listing_id, viewer_id, other_id)
    return list(
        Message.objects.filter(_thread_filter(key))
        .select_related("sender", "receiver")
        .order_by("created_at", "id")
    )


def user_messages(user_id: int) -> List[Message]:
    """Every message the user sent or received, oldest first."""
    return list(
        Message.objects.filter(Q(sender_id=user_id) | Q(receiver_id=user_id))
        .exclude(sender_id=F("receiver_id"))
        .order_by("created_at", "id")
    )


def listing_messages(viewer_id: int, listing_id: int) -> List[Message]:
    """All of the viewer's messages about one listing, across every counterpart."""
    if not Listing.objects.filter(id=listing_id).exists():
        raise NotFound("Listing not found.")
    return list(
        Message.objects.filter(listing_id=listing_id)
        .filter(Q(sender_id=viewer_id) | Q(receiver_id=viewer_id))
        .exclude(sender_id=F("receiver_id"))
        .order_by("created_at", "id")
    )


# ---- Read state ----

def mark_read(message_id: int, caller_id: int) -> Message:
    message = Message.objects.filter(id=message_id).first()
    if message is None:
        raise NotFound("Message not found.")
    if message.receiver_id != caller_id:
        logger.info("User %s may not mark message %s as read", caller_id, message_id)
        raise PermissionDenied("Only the receiver can mark a message as read.")

    # Conditional update: a second call finds nothing to change.
    Message.objects.filter(id=message_id, receiver_id=caller_id, is_read=False).update(is_read=True)
    message.is_read = True
    return message


def mark_thread_read(viewer_id: int, key: ThreadKey) -> int:
    if not key.includes(viewer_id):
        raise NotFound("Thread not found.")
    return (
        Message.objects.filter(_thread_filter(key))
        .filter(receiver_id=viewer_id, is_read=False)
        .update(is_read=True)
    )
