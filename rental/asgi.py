"""
ASGI config for rental project.

It exposes the ASGI callable as a module-level variable named ``application``.
HTTP goes to Django; websockets carry the messaging push channel.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'rental.settings')

# Django must be set up before consumers import models.
django_asgi_app = get_asgi_application()

from channels.auth import AuthMiddlewareStack  # noqa: E402
from channels.routing import ProtocolTypeRouter, URLRouter  # noqa: E402

from message.urls import websocket_urlpatterns as message_websocket_urlpatterns  # noqa: E402

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": AuthMiddlewareStack(
        URLRouter(message_websocket_urlpatterns)
    ),
})
