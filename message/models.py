from django.conf import settings
from django.db import models
from django.utils import timezone


class Message(models.Model):
    listing = models.ForeignKey(
        "listing.Listing",
        on_delete=models.CASCADE,
        related_name="messages"
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_messages"
    )
    receiver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="received_messages"
    )
    content = models.TextField()
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    is_read = models.BooleanField(default=False)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(
                condition=~models.Q(sender=models.F("receiver")),
                name="message_sender_not_receiver",
            ),
        ]
        indexes = [
            models.Index(fields=["listing", "sender", "receiver"], name="message_thread_idx"),
        ]

    def __str__(self):
        return f"{self.sender_id} -> {self.receiver_id}: {self.content[:30]}"
