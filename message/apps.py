from django.apps import AppConfig


class MessageConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "message"

    def ready(self):
        # Registers the push receiver for message_created.
        from . import consumers  # noqa: F401
