import factory
from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from faker import Faker

from .forms import RegistrationForm

User = get_user_model()
fake = Faker()


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.LazyFunction(lambda: fake.unique.user_name())
    email = factory.LazyFunction(lambda: fake.unique.email())
    name = factory.LazyFunction(fake.name)
    password = factory.PostGenerationMethodCall("set_password", "testpass123")


class UserModelTest(TestCase):
    def test_display_name_prefers_name(self):
        user = UserFactory(name="Mette Hansen")
        self.assertEqual(user.display_name, "Mette Hansen")

    def test_display_name_falls_back_to_username(self):
        user = UserFactory(name="  ")
        self.assertEqual(user.display_name, user.username)


class RegistrationFormTest(TestCase):
    def _data(self, **overrides):
        password = fake.password(length=12, special_chars=True, digits=True)
        data = {
            "username": fake.unique.user_name(),
            "email": fake.unique.email(),
            "name": fake.name(),
            "password1": password,
            "password2": password,
        }
        data.update(overrides)
        return data

    def test_valid_data(self):
        form = RegistrationForm(self._data())
        self.assertTrue(form.is_valid(), form.errors)

    def test_duplicate_email_rejected(self):
        existing = UserFactory()
        form = RegistrationForm(self._data(email=existing.email.upper()))
        self.assertFalse(form.is_valid())
        self.assertIn("email", form.errors)

    def test_password_mismatch_rejected(self):
        data = self._data()
        data["password2"] = fake.password(length=12)
        form = RegistrationForm(data)
        self.assertFalse(form.is_valid())
        self.assertIn("password2", form.errors)

    def test_short_password_rejected(self):
        form = RegistrationForm(self._data(password1="abc12", password2="abc12"))
        self.assertFalse(form.is_valid())
        self.assertIn("password2", form.errors)

    def test_blank_name_rejected(self):
        form = RegistrationForm(self._data(name="   "))
        self.assertFalse(form.is_valid())
        self.assertIn("name", form.errors)


class AuthApiTest(TestCase):
    def _register_data(self, **overrides):
        password = fake.password(length=12, special_chars=True, digits=True)
        data = {
            "username": fake.unique.user_name(),
            "email": fake.unique.email(),
            "name": fake.name(),
            "password1": password,
            "password2": password,
        }
        data.update(overrides)
        return data

    def test_register_creates_user_and_logs_in(self):
        data = self._register_data()
        resp = self.client.post(reverse("register"), data, content_type="application/json")
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["email"], data["email"].lower())
        me = self.client.get(reverse("me"))
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["name"], data["name"])

    def test_register_with_taken_email_is_bad_request(self):
        existing = UserFactory()
        resp = self.client.post(
            reverse("register"),
            self._register_data(email=existing.email),
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 400)
        self.assertIn("email", resp.json())

    def test_login_with_email(self):
        user = UserFactory()
        resp = self.client.post(
            reverse("login"),
            {"email": user.email, "password": "testpass123"},
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["id"], user.id)

    def test_login_with_wrong_password(self):
        user = UserFactory()
        resp = self.client.post(
            reverse("login"),
            {"email": user.email, "password": "wrongpass"},
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 401)

    def test_login_with_unknown_email(self):
        resp = self.client.post(
            reverse("login"),
            {"email": fake.unique.email(), "password": "testpass123"},
            content_type="application/json",
        )
        self.assertEqual(resp.status_code, 401)

    def test_me_requires_login(self):
        self.assertEqual(self.client.get(reverse("me")).status_code, 403)

    def test_logout_ends_session(self):
        self.client.force_login(UserFactory())
        self.assertEqual(self.client.post(reverse("logout")).status_code, 200)
        self.assertEqual(self.client.get(reverse("me")).status_code, 403)
