import asyncio
import json
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import factory
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from faker import Faker
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from listing.models import Listing

from .consumers import MessageConsumer
from .models import Message
from .services import (
    get_thread_messages,
    list_conversations,
    listing_messages,
    mark_read,
    mark_thread_read,
    send_message,
)
from .threads import ThreadKey, group_conversations

User = get_user_model()
fake = Faker()

MOCK_CHANNEL = "message.consumers.get_channel_layer"
MOCK_ASYNC = "message.consumers.async_to_sync"
MOCK_SNAPSHOT = "message.consumers.conversation_snapshot"
MOCK_SLEEP = "message.consumers.asyncio.sleep"


# ── Factories ──────────────────────────────────────────────────────────────


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.LazyFunction(lambda: fake.unique.user_name())
    email = factory.LazyFunction(lambda: fake.unique.email())
    name = factory.LazyFunction(fake.name)
    password = factory.PostGenerationMethodCall("set_password", "testpass123")


class ListingFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Listing

    owner = factory.SubFactory(UserFactory)
    title = factory.LazyFunction(lambda: fake.sentence(nb_words=4))
    description = factory.LazyFunction(fake.paragraph)
    address = factory.LazyFunction(fake.address)
    price = 8500
    size = 65
    rooms = 3
    type = "apartment"


class MessageFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Message

    listing = factory.SubFactory(ListingFactory)
    sender = factory.SubFactory(UserFactory)
    receiver = factory.SubFactory(UserFactory)
    content = factory.LazyFunction(lambda: fake.sentence())


def _row(id, sender, receiver, listing=1, minutes=0, is_read=False):
    return SimpleNamespace(
        id=id,
        listing_id=listing,
        sender_id=sender,
        receiver_id=receiver,
        created_at=timezone.now().replace(microsecond=0) + timedelta(minutes=minutes),
        is_read=is_read,
    )


# ── Thread key & projection ────────────────────────────────────────────────


class ThreadKeyTest(SimpleTestCase):
    def test_key_ignores_participant_order(self):
        self.assertEqual(ThreadKey.between(4, 9, 2), ThreadKey.between(4, 2, 9))
        self.assertEqual(hash(ThreadKey.between(4, 9, 2)), hash(ThreadKey.between(4, 2, 9)))

    def test_different_listings_are_different_threads(self):
        self.assertNotEqual(ThreadKey.between(4, 2, 9), ThreadKey.between(5, 2, 9))

    def test_same_participant_twice_rejected(self):
        with self.assertRaises(ValueError):
            ThreadKey.between(4, 2, 2)

    def test_parse_normalizes_participant_order(self):
        key = ThreadKey.parse("42-7-3")
        self.assertEqual((key.listing_id, key.low, key.high), (42, 3, 7))
        self.assertEqual(str(key), "42-3-7")

    def test_parse_rejects_malformed_ids(self):
        for value in ["", "42", "42-3", "42-a-7", "42-3-7-1", "42-3-3"]:
            with self.subTest(value=value), self.assertRaises(ValueError):
                ThreadKey.parse(value)

    def test_other_participant(self):
        key = ThreadKey.between(1, 3, 7)
        self.assertEqual(key.other(3), 7)
        self.assertEqual(key.other(7), 3)
        with self.assertRaises(ValueError):
            key.other(5)


class GroupConversationsTest(SimpleTestCase):
    def test_messages_in_both_directions_share_a_thread(self):
        rows = [_row(1, 1, 2), _row(2, 2, 1, minutes=1)]
        conversations = group_conversations(rows, viewer_id=1)
        self.assertEqual(len(conversations), 1)
        self.assertEqual([m.id for m in conversations[0].messages], [1, 2])
        self.assertEqual(conversations[0].other_id, 2)

    def test_self_addressed_rows_are_skipped(self):
        rows = [_row(1, 1, 1), _row(2, 1, 2)]
        with self.assertLogs("message.threads", level="WARNING"):
            conversations = group_conversations(rows, viewer_id=1)
        self.assertEqual(len(conversations), 1)
        self.assertEqual([m.id for m in conversations[0].messages], [2])

    def test_rows_without_viewer_are_ignored(self):
        self.assertEqual(group_conversations([_row(1, 2, 3)], viewer_id=1), [])

    def test_equal_timestamps_ordered_by_id(self):
        first, second = _row(5, 1, 2), _row(9, 2, 1)
        second.created_at = first.created_at
        conversation = group_conversations([second, first], viewer_id=1)[0]
        self.assertEqual([m.id for m in conversation.messages], [5, 9])
        self.assertEqual(conversation.last_message.id, 9)

    def test_most_recent_conversation_first(self):
        rows = [
            _row(1, 1, 2, listing=1, minutes=0),
            _row(2, 1, 3, listing=1, minutes=5),
            _row(3, 2, 1, listing=2, minutes=3),
        ]
        keys = [str(c.key) for c in group_conversations(rows, viewer_id=1)]
        self.assertEqual(keys, ["1-1-3", "2-1-2", "1-1-2"])

    def test_unread_count_is_relative_to_viewer(self):
        rows = [_row(1, 1, 2), _row(2, 1, 2, minutes=1), _row(3, 2, 1, minutes=2, is_read=True)]
        self.assertEqual(group_conversations(rows, viewer_id=2)[0].unread_count, 2)
        self.assertEqual(group_conversations(rows, viewer_id=1)[0].unread_count, 0)


# ── Services ───────────────────────────────────────────────────────────────


class SendMessageTest(TestCase):
    def setUp(self):
        self.owner = UserFactory()
        self.tenant = UserFactory()
        self.listing = ListingFactory(owner=self.owner)

    def test_creates_unread_message(self):
        message = send_message(self.tenant.id, self.owner.id, self.listing.id, "Is this available?")
        message.refresh_from_db()
        self.assertFalse(message.is_read)
        self.assertEqual(message.sender, self.tenant)
        self.assertEqual(message.receiver, self.owner)
        self.assertIsNotNone(message.created_at)

    def test_content_is_trimmed(self):
        message = send_message(self.tenant.id, self.owner.id, self.listing.id, "  hello  ")
        self.assertEqual(message.content, "hello")

    def test_cannot_message_self(self):
        with self.assertRaises(ValidationError):
            send_message(self.owner.id, self.owner.id, self.listing.id, "x")
        self.assertEqual(Message.objects.count(), 0)

    def test_empty_content_rejected(self):
        with self.assertRaises(ValidationError):
            send_message(self.tenant.id, self.owner.id, self.listing.id, "   ")
        self.assertEqual(Message.objects.count(), 0)

    def test_unknown_receiver_rejected(self):
        with self.assertRaises(NotFound):
            send_message(self.tenant.id, 99999, self.listing.id, "hello")

    def test_unknown_listing_rejected(self):
        with self.assertRaises(NotFound):
            send_message(self.tenant.id, self.owner.id, 99999, "hello")

    def test_database_refuses_self_message(self):
        with self.assertRaises(IntegrityError), transaction.atomic():
            Message.objects.create(
                listing=self.listing, sender=self.owner, receiver=self.owner, content="x"
            )

    def test_push_failure_does_not_lose_the_message(self):
        with patch(MOCK_CHANNEL, side_effect=RuntimeError("layer down")):
            with self.assertLogs("message.services", level="ERROR"):
                message = send_message(self.tenant.id, self.owner.id, self.listing.id, "hello")
        self.assertTrue(Message.objects.filter(id=message.id).exists())


class PushNotificationTest(TestCase):
    def setUp(self):
        self.owner = UserFactory()
        self.tenant = UserFactory()
        self.listing = ListingFactory(owner=self.owner)

    def test_new_message_sent_to_both_participants(self):
        with patch(MOCK_CHANNEL, return_value=MagicMock()):
            with patch(MOCK_ASYNC) as mock_a2s:
                message = send_message(self.tenant.id, self.owner.id, self.listing.id, "hello")

        groups = [c.args[0] for c in mock_a2s.return_value.call_args_list]
        self.assertCountEqual(groups, [f"messages_{self.tenant.id}", f"messages_{self.owner.id}"])
        payload = mock_a2s.return_value.call_args_list[0].args[1]
        self.assertEqual(payload["type"], "new_message")
        self.assertEqual(payload["data"]["id"], message.id)
        self.assertEqual(payload["data"]["thread_id"], str(ThreadKey.for_message(message)))


class ConversationPollTest(SimpleTestCase):
    def setUp(self):
        self.consumer = MessageConsumer()
        self.consumer.user_id = 7
        self.consumer.send = AsyncMock()

    def _run_poll(self, snapshots, ticks):
        sleeps = [None] * (ticks - 1) + [asyncio.CancelledError()]
        with patch(MOCK_SNAPSHOT, new=AsyncMock(side_effect=snapshots)), \
                patch(MOCK_SLEEP, new=AsyncMock(side_effect=sleeps)):
            with self.assertRaises(asyncio.CancelledError):
                asyncio.run(self.consumer.poll_conversations())

    def _frames(self):
        return [json.loads(c.kwargs["text_data"]) for c in self.consumer.send.call_args_list]

    def test_unchanged_snapshot_is_sent_once(self):
        snapshot = [{"thread_id": "1-2-7", "unread_count": 1}]
        self._run_poll([snapshot, list(snapshot), list(snapshot)], ticks=3)
        frames = self._frames()
        self.assertEqual(len(frames), 1)
        self.assertEqual(frames[0], {"type": "conversations", "conversations": snapshot})

    def test_new_message_sends_another_frame(self):
        before = [{"thread_id": "1-2-7", "unread_count": 1}]
        after = [{"thread_id": "1-2-7", "unread_count": 2}]
        self._run_poll([before, before, after], ticks=3)
        self.assertEqual(
            [frame["conversations"] for frame in self._frames()],
            [before, after],
        )

    def test_poll_survives_a_failed_snapshot(self):
        snapshot = [{"thread_id": "1-2-7", "unread_count": 0}]
        with self.assertLogs("message.consumers", level="ERROR"):
            self._run_poll([RuntimeError("database unavailable"), snapshot], ticks=2)
        self.assertEqual([frame["conversations"] for frame in self._frames()], [snapshot])

    def test_disconnect_cancels_poller(self):
        consumer = self.consumer
        consumer.group_name = "messages_7"
        consumer.channel_name = "test.channel"
        consumer.channel_layer = AsyncMock()

        async def connect_then_disconnect():
            consumer.poller = asyncio.create_task(asyncio.sleep(3600))
            await asyncio.sleep(0)
            await consumer.disconnect(1000)
            return consumer.poller

        poller = asyncio.run(connect_then_disconnect())
        self.assertTrue(poller.cancelled())
        consumer.channel_layer.group_discard.assert_awaited_once_with("messages_7", "test.channel")

    def test_new_message_event_is_forwarded(self):
        asyncio.run(self.consumer.new_message({"type": "new_message", "data": {"id": 3}}))
        self.assertEqual(self._frames(), [{"type": "new_message", "message": {"id": 3}}])


class ThreadMessagesTest(TestCase):
    def setUp(self):
        self.owner = UserFactory()
        self.tenant = UserFactory()
        self.listing = ListingFactory(owner=self.owner)

    def test_thread_is_symmetric(self):
        send_message(self.tenant.id, self.owner.id, self.listing.id, "one")
        send_message(self.owner.id, self.tenant.id, self.listing.id, "two")
        as_tenant = get_thread_messages(self.tenant.id, self.listing.id, self.owner.id)
        as_owner = get_thread_messages(self.owner.id, self.listing.id, self.tenant.id)
        self.assertEqual([m.id for m in as_tenant], [m.id for m in as_owner])
        self.assertEqual([m.content for m in as_tenant], ["one", "two"])

    def test_other_listings_and_users_excluded(self):
        other_listing = ListingFactory(owner=self.owner)
        stranger = UserFactory()
        mine = MessageFactory(listing=self.listing, sender=self.tenant, receiver=self.owner)
        MessageFactory(listing=other_listing, sender=self.tenant, receiver=self.owner)
        MessageFactory(listing=self.listing, sender=stranger, receiver=self.owner)
        thread = get_thread_messages(self.owner.id, self.listing.id, self.tenant.id)
        self.assertEqual([m.id for m in thread], [mine.id])

    def test_equal_timestamps_ordered_by_id(self):
        moment = timezone.now()
        first = MessageFactory(listing=self.listing, sender=self.tenant, receiver=self.owner, created_at=moment)
        second = MessageFactory(listing=self.listing, sender=self.owner, receiver=self.tenant, created_at=moment)
        thread = get_thread_messages(self.owner.id, self.listing.id, self.tenant.id)
        self.assertEqual([m.id for m in thread], sorted([first.id, second.id]))

    def test_same_participant_twice_rejected(self):
        with self.assertRaises(ValidationError):
            get_thread_messages(self.owner.id, self.listing.id, self.owner.id)

    def test_unknown_listing(self):
        with self.assertRaises(NotFound):
            get_thread_messages(self.owner.id, 99999, self.tenant.id)

    def test_listing_messages_cover_every_counterpart(self):
        other_tenant = UserFactory()
        MessageFactory(listing=self.listing, sender=self.tenant, receiver=self.owner)
        MessageFactory(listing=self.listing, sender=other_tenant, receiver=self.owner)
        self.assertEqual(len(listing_messages(self.owner.id, self.listing.id)), 2)
        self.assertEqual(len(listing_messages(self.tenant.id, self.listing.id)), 1)


class MarkReadTest(TestCase):
    def setUp(self):
        self.owner = UserFactory()
        self.tenant = UserFactory()
        self.listing = ListingFactory(owner=self.owner)
        self.message = MessageFactory(listing=self.listing, sender=self.tenant, receiver=self.owner)

    def test_receiver_marks_read_idempotently(self):
        mark_read(self.message.id, self.owner.id)
        mark_read(self.message.id, self.owner.id)
        self.message.refresh_from_db()
        self.assertTrue(self.message.is_read)

    def test_sender_cannot_mark_read(self):
        with self.assertRaises(PermissionDenied):
            mark_read(self.message.id, self.tenant.id)
        self.message.refresh_from_db()
        self.assertFalse(self.message.is_read)

    def test_stranger_cannot_mark_read(self):
        with self.assertRaises(PermissionDenied):
            mark_read(self.message.id, UserFactory().id)
        self.message.refresh_from_db()
        self.assertFalse(self.message.is_read)

    def test_unknown_message(self):
        with self.assertRaises(NotFound):
            mark_read(99999, self.owner.id)

    def test_mark_thread_read_only_touches_inbound(self):
        reply = MessageFactory(listing=self.listing, sender=self.owner, receiver=self.tenant)
        key = ThreadKey.for_message(self.message)
        self.assertEqual(mark_thread_read(self.owner.id, key), 1)
        self.assertEqual(mark_thread_read(self.owner.id, key), 0)
        self.message.refresh_from_db()
        reply.refresh_from_db()
        self.assertTrue(self.message.is_read)
        self.assertFalse(reply.is_read)

    def test_mark_thread_read_requires_membership(self):
        key = ThreadKey.for_message(self.message)
        with self.assertRaises(NotFound):
            mark_thread_read(UserFactory().id, key)


class ListConversationsTest(TestCase):
    def setUp(self):
        self.owner = UserFactory()
        self.tenant = UserFactory()
        self.listing = ListingFactory(owner=self.owner)

    def _unread(self, viewer):
        [conversation] = list_conversations(viewer.id)
        return conversation.unread_count

    def test_unread_counts_only_messages_received_by_viewer(self):
        for _ in range(2):
            MessageFactory(listing=self.listing, sender=self.tenant, receiver=self.owner, is_read=True)
        for _ in range(3):
            MessageFactory(listing=self.listing, sender=self.owner, receiver=self.tenant)
        self.assertEqual(self._unread(self.tenant), 3)
        self.assertEqual(self._unread(self.owner), 0)

    def test_round_trip(self):
        send_message(self.tenant.id, self.owner.id, self.listing.id, "Is this available?")

        [seen_by_owner] = list_conversations(self.owner.id)
        self.assertEqual(seen_by_owner.listing, self.listing)
        self.assertEqual(seen_by_owner.other, self.tenant)
        self.assertEqual(seen_by_owner.last_message.content, "Is this available?")
        self.assertEqual(seen_by_owner.unread_count, 1)

        reply = send_message(self.owner.id, self.tenant.id, self.listing.id, "Yes!")
        [seen_by_tenant] = list_conversations(self.tenant.id)
        self.assertEqual(seen_by_tenant.key, seen_by_owner.key)
        self.assertEqual(seen_by_tenant.last_message.content, "Yes!")
        self.assertEqual(seen_by_tenant.unread_count, 1)

        mark_read(reply.id, self.tenant.id)
        self.assertEqual(self._unread(self.tenant), 0)
        self.assertEqual(self._unread(self.owner), 1)

    def test_one_conversation_per_listing_and_counterpart(self):
        second_listing = ListingFactory(owner=self.owner)
        other_tenant = UserFactory()
        send_message(self.tenant.id, self.owner.id, self.listing.id, "a")
        send_message(self.tenant.id, self.owner.id, second_listing.id, "b")
        send_message(other_tenant.id, self.owner.id, self.listing.id, "c")
        conversations = list_conversations(self.owner.id)
        self.assertEqual([c.last_message.content for c in conversations], ["c", "b", "a"])

    def test_deleting_listing_removes_its_threads(self):
        send_message(self.tenant.id, self.owner.id, self.listing.id, "hello")
        self.listing.delete()
        self.assertEqual(list_conversations(self.owner.id), [])
        self.assertEqual(Message.objects.count(), 0)


# ── API ────────────────────────────────────────────────────────────────────


class MessageApiTest(TestCase):
    def setUp(self):
        self.owner = UserFactory()
        self.tenant = UserFactory()
        self.listing = ListingFactory(owner=self.owner)
        self.client.force_login(self.tenant)

    def _send(self, **overrides):
        data = {"listing_id": self.listing.id, "receiver_id": self.owner.id, "content": "Is this available?"}
        data.update(overrides)
        return self.client.post(reverse("messages"), data, content_type="application/json")

    def test_unauthenticated_rejected(self):
        self.client.logout()
        self.assertEqual(self._send().status_code, 403)
        self.assertEqual(self.client.get(reverse("conversations")).status_code, 403)

    def test_list_all_of_my_messages(self):
        other_listing = ListingFactory()
        sent = self._send().json()["id"]
        received = MessageFactory(listing=other_listing, sender=other_listing.owner, receiver=self.tenant)
        MessageFactory(listing=self.listing, sender=self.owner, receiver=UserFactory())
        resp = self.client.get(reverse("messages"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([m["id"] for m in resp.json()], [sent, received.id])
        self.assertEqual([m["is_send_by_me"] for m in resp.json()], [True, False])

    def test_send_returns_created_message(self):
        resp = self._send()
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertEqual(body["sender_id"], self.tenant.id)
        self.assertFalse(body["is_read"])
        self.assertTrue(body["is_send_by_me"])
        self.assertEqual(body["thread_id"], str(ThreadKey.between(self.listing.id, self.tenant.id, self.owner.id)))

    def test_send_to_self_is_bad_request(self):
        self.assertEqual(self._send(receiver_id=self.tenant.id).status_code, 400)
        self.assertEqual(Message.objects.count(), 0)

    def test_send_about_unknown_listing_is_not_found(self):
        self.assertEqual(self._send(listing_id=99999).status_code, 404)

    def test_conversations_payload(self):
        self._send()
        self.client.force_login(self.owner)
        resp = self.client.get(reverse("conversations"))
        self.assertEqual(resp.status_code, 200)
        [entry] = resp.json()
        self.assertEqual(entry["listing"]["id"], self.listing.id)
        self.assertEqual(entry["listing"]["title"], self.listing.title)
        self.assertEqual(entry["listing"]["address"], self.listing.address)
        self.assertEqual(entry["other_user"], {"id": self.tenant.id, "name": self.tenant.name})
        self.assertEqual(entry["last_message"]["content"], "Is this available?")
        self.assertEqual(entry["unread_count"], 1)

    def test_thread_endpoint_is_symmetric(self):
        thread_id = self._send().json()["thread_id"]
        as_tenant = self.client.get(reverse("thread", kwargs={"thread_id": thread_id})).json()
        self.client.force_login(self.owner)
        as_owner = self.client.get(reverse("thread", kwargs={"thread_id": thread_id})).json()
        self.assertEqual(
            [m["id"] for m in as_tenant["messages"]],
            [m["id"] for m in as_owner["messages"]],
        )

    def test_thread_endpoint_rejects_malformed_id(self):
        resp = self.client.get(reverse("thread", kwargs={"thread_id": "not-a-thread"}))
        self.assertEqual(resp.status_code, 400)

    def test_thread_endpoint_hides_other_peoples_threads(self):
        thread_id = self._send().json()["thread_id"]
        self.client.force_login(UserFactory())
        resp = self.client.get(reverse("thread", kwargs={"thread_id": thread_id}))
        self.assertEqual(resp.status_code, 404)

    def test_mark_read_by_receiver(self):
        message_id = self._send().json()["id"]
        self.client.force_login(self.owner)
        resp = self.client.put(reverse("message_read", kwargs={"id": message_id}))
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["is_read"])
        self.assertEqual(self.client.put(reverse("message_read", kwargs={"id": message_id})).status_code, 200)

    def test_mark_read_by_sender_is_forbidden(self):
        message_id = self._send().json()["id"]
        resp = self.client.put(reverse("message_read", kwargs={"id": message_id}))
        self.assertEqual(resp.status_code, 403)
        self.assertFalse(Message.objects.get(id=message_id).is_read)

    def test_mark_unknown_message_is_not_found(self):
        self.assertEqual(self.client.put(reverse("message_read", kwargs={"id": 99999})).status_code, 404)

    def test_mark_thread_read(self):
        thread_id = self._send().json()["thread_id"]
        self._send(content="Anyone there?")
        self.client.force_login(self.owner)
        resp = self.client.post(reverse("thread_read", kwargs={"thread_id": thread_id}))
        self.assertEqual(resp.json()["marked"], 2)
        self.assertEqual(self.client.get(reverse("conversations")).json()[0]["unread_count"], 0)

    def test_listing_messages_endpoint(self):
        self._send()
        resp = self.client.get(reverse("listing_messages", kwargs={"id": self.listing.id}))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()), 1)
