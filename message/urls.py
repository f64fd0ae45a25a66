from django.urls import path

from .views import (
    conversations,
    message_list,
    listing_thread_messages,
    message_read,
    thread,
    thread_read,
)
from .consumers import MessageConsumer

urlpatterns = [
    path("api/messages/", message_list, name="messages"),
    path("api/messages/conversations/", conversations, name="conversations"),
    path("api/messages/threads/<str:thread_id>/", thread, name="thread"),
    path("api/messages/threads/<str:thread_id>/read/", thread_read, name="thread_read"),
    path("api/messages/<int:id>/read/", message_read, name="message_read"),
    path("api/listings/<int:id>/messages/", listing_thread_messages, name="listing_messages"),
]

websocket_urlpatterns = [
    path('ws/messages/', MessageConsumer.as_asgi(), name='messages'), # type: ignore
]
