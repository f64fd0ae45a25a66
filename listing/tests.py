import shutil
import tempfile
from io import BytesIO

import factory
from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import TestCase, override_settings
from django.urls import reverse
from faker import Faker
from PIL import Image

from message.models import Message

from .models import Listing, ListingImage
from .views import search_listings

User = get_user_model()
fake = Faker()


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


def _png(name="photo.png"):
    buffer = BytesIO()
    Image.new("RGB", (4, 4), "white").save(buffer, format="PNG")
    return SimpleUploadedFile(name, buffer.getvalue(), content_type="image/png")


class SearchListingsTest(TestCase):
    def test_only_available_listings(self):
        shown = ListingFactory()
        ListingFactory(available=False)
        self.assertEqual(list(search_listings({})), [shown])

    def test_query_matches_title_address_and_description(self):
        by_title = ListingFactory(title="Bright flat near Nørreport")
        by_address = ListingFactory(address="Nørrebrogade 12, København")
        by_description = ListingFactory(description="Five minutes from Nørreport station")
        ListingFactory(title="Villa", address="Aarhus", description="Garden")
        found = set(search_listings({"query": "nørre"}))
        self.assertEqual(found, {by_title, by_address, by_description})

    def test_type_and_bounds(self):
        cheap_room = ListingFactory(type="room", price=3000, rooms=1)
        ListingFactory(type="room", price=6000, rooms=1)
        ListingFactory(type="house", price=3000, rooms=5)
        found = list(search_listings({"type": "room", "max_price": 4000, "min_rooms": 1, "max_rooms": 2}))
        self.assertEqual(found, [cheap_room])

    def test_sort_by_price(self):
        mid = ListingFactory(price=5000)
        high = ListingFactory(price=9000)
        low = ListingFactory(price=2000)
        self.assertEqual(list(search_listings({"sort_by": "price_asc"})), [low, mid, high])
        self.assertEqual(list(search_listings({"sort_by": "price_desc"})), [high, mid, low])

    def test_price_ties_have_a_stable_order(self):
        first = ListingFactory(price=5000)
        second = ListingFactory(price=5000)
        Listing.objects.update(created_at=first.created_at)
        self.assertEqual(list(search_listings({"sort_by": "price_asc"})), [second, first])
        self.assertEqual(list(search_listings({"sort_by": "price_desc"})), [second, first])

    def test_default_sort_is_newest_first(self):
        older = ListingFactory()
        newer = ListingFactory()
        self.assertEqual(list(search_listings({})), [newer, older])


class ListingApiTest(TestCase):
    def setUp(self):
        self.owner = UserFactory()
        self.other = UserFactory()
        self.listing = ListingFactory(owner=self.owner)

    def _payload(self, **overrides):
        data = {
            "title": "Two-room flat",
            "description": "Quiet street, close to the metro.",
            "address": "Jagtvej 1, 2200 København N",
            "price": 9200,
            "size": 58,
            "rooms": 2,
            "type": "apartment",
        }
        data.update(overrides)
        return data

    def test_list_is_public_and_paginated(self):
        resp = self.client.get(reverse("listings"))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["count"], 1)
        self.assertEqual(body["results"][0]["id"], self.listing.id)
        self.assertEqual(body["results"][0]["owner"]["id"], self.owner.id)

    def test_invalid_search_parameters(self):
        resp = self.client.get(reverse("listings"), {"min_price": 5000, "max_price": 1000})
        self.assertEqual(resp.status_code, 400)
        resp = self.client.get(reverse("listings"), {"type": "castle"})
        self.assertEqual(resp.status_code, 400)

    def test_create_requires_login(self):
        resp = self.client.post(reverse("listings"), self._payload(), content_type="application/json")
        self.assertEqual(resp.status_code, 403)

    def test_create_sets_owner(self):
        self.client.force_login(self.other)
        resp = self.client.post(reverse("listings"), self._payload(), content_type="application/json")
        self.assertEqual(resp.status_code, 201)
        listing = Listing.objects.get(id=resp.json()["id"])
        self.assertEqual(listing.owner, self.other)
        self.assertTrue(listing.available)

    def test_create_rejects_zero_price(self):
        self.client.force_login(self.other)
        resp = self.client.post(reverse("listings"), self._payload(price=0), content_type="application/json")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("price", resp.json())

    def test_detail_is_public(self):
        resp = self.client.get(reverse("listing", kwargs={"id": self.listing.id}))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["title"], self.listing.title)

    def test_owner_can_update(self):
        self.client.force_login(self.owner)
        resp = self.client.patch(
            reverse("listing", kwargs={"id": self.listing.id}),
            {"price": 7000, "available": False},
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 200)
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.price, 7000)
        self.assertFalse(self.listing.available)

    def test_non_owner_update_looks_missing(self):
        self.client.force_login(self.other)
        resp = self.client.patch(
            reverse("listing", kwargs={"id": self.listing.id}),
            {"price": 1},
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 404)
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.price, 8500)

    def test_delete_cascades_messages(self):
        Message.objects.create(listing=self.listing, sender=self.other, receiver=self.owner, content="Hi")
        self.client.force_login(self.owner)
        resp = self.client.delete(reverse("listing", kwargs={"id": self.listing.id}))
        self.assertEqual(resp.status_code, 204)
        self.assertFalse(Listing.objects.filter(id=self.listing.id).exists())
        self.assertEqual(Message.objects.count(), 0)

    def test_non_owner_cannot_delete(self):
        self.client.force_login(self.other)
        resp = self.client.delete(reverse("listing", kwargs={"id": self.listing.id}))
        self.assertEqual(resp.status_code, 404)
        self.assertTrue(Listing.objects.filter(id=self.listing.id).exists())

    def test_my_listings(self):
        ListingFactory(owner=self.other)
        newest = ListingFactory(owner=self.owner)
        self.client.force_login(self.owner)
        resp = self.client.get(reverse("my_listings"))
        self.assertEqual([item["id"] for item in resp.json()], [newest.id, self.listing.id])


class ListingImageUploadTest(TestCase):
    def setUp(self):
        self.media_root = tempfile.mkdtemp()
        self.settings_override = override_settings(MEDIA_ROOT=self.media_root)
        self.settings_override.enable()
        self.owner = UserFactory()
        self.listing = ListingFactory(owner=self.owner)
        self.url = reverse("listing_images", kwargs={"id": self.listing.id})

    def tearDown(self):
        self.settings_override.disable()
        shutil.rmtree(self.media_root, ignore_errors=True)

    def test_owner_uploads_image(self):
        self.client.force_login(self.owner)
        resp = self.client.post(self.url, {"image": _png()})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(ListingImage.objects.filter(listing=self.listing).count(), 1)
        self.listing.refresh_from_db()
        self.assertTrue(self.listing.cover_img)

    def test_non_image_rejected(self):
        self.client.force_login(self.owner)
        text = SimpleUploadedFile("notes.txt", b"hello", content_type="text/plain")
        resp = self.client.post(self.url, {"image": text})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(ListingImage.objects.count(), 0)

    @override_settings(LISTING_IMAGE_MAX_BYTES=10)
    def test_oversized_image_rejected(self):
        self.client.force_login(self.owner)
        resp = self.client.post(self.url, {"image": _png()})
        self.assertEqual(resp.status_code, 400)

    def test_non_owner_cannot_upload(self):
        self.client.force_login(UserFactory())
        resp = self.client.post(self.url, {"image": _png()})
        self.assertEqual(resp.status_code, 404)
