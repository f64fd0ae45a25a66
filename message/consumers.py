import asyncio
import json
import logging

from asgiref.sync import async_to_sync
from django.conf import settings
from django.dispatch import receiver

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from channels.layers import get_channel_layer

from .models import Message
from .serializers import ConversationSerializer, MessageSerializer
from .services import list_conversations
from .signals import message_created

logger = logging.getLogger(__name__)


def user_group(user_id: int) -> str:
    return f"messages_{user_id}"


@receiver(message_created)
def handle_message_created(sender, message_id: int, **kwargs):
    message = Message.objects.get(id=message_id)
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return

    data = dict(MessageSerializer(message).data)
    # Both ends get it so the sender's other tabs stay in sync.
    for user_id in (message.sender_id, message.receiver_id):
        async_to_sync(channel_layer.group_send)(
            user_group(user_id),
            {
                "type": "new_message",
                "data": data,
            },
        )


@database_sync_to_async
def conversation_snapshot(user_id: int):
    return ConversationSerializer(list_conversations(user_id), many=True).data


class MessageConsumer(AsyncWebsocketConsumer):
    """
    Live feed for the logged-in user.

    Pushes ``new_message`` events as they are stored and, every
    ``MESSAGE_POLL_INTERVAL`` seconds, re-reads the conversation list and
    sends it when it changed. The REST endpoints stay the source of truth.
    """

    async def connect(self):
        user = self.scope["user"]  # type: ignore
        if not user.is_authenticated:  # type: ignore
            await self.close()
            return

        self.user_id = user.id  # type: ignore
        self.group_name = user_group(self.user_id)
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        self.poller = asyncio.create_task(self.poll_conversations())
        logger.debug("User %s connected to the message feed", self.user_id)

    async def disconnect(self, code):
        poller = getattr(self, "poller", None)
        if poller is not None:
            poller.cancel()
            try:
                await poller
            except asyncio.CancelledError:
                pass
        if hasattr(self, "group_name"):
            await self.channel_layer.group_discard(self.group_name, self.channel_name)
            logger.debug("User %s left the message feed", self.user_id)

    async def poll_conversations(self):
        snapshot = None
        while True:
            try:
                current = await conversation_snapshot(self.user_id)
                if current != snapshot:
                    snapshot = current
                    await self.send(text_data=json.dumps({
                        "type": "conversations",
                        "conversations": current,
                    }))
            except Exception:
                # Keep polling; the next tick retries.
                logger.exception("Conversation poll failed for user %s", self.user_id)
            await asyncio.sleep(settings.MESSAGE_POLL_INTERVAL)

    async def new_message(self, event):
        await self.send(text_data=json.dumps({
            "type": "new_message",
            "message": event["data"],
        }))
