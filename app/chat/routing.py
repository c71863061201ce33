"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/inbox/ - Live inbox of the connected user
    ws/chat/<chat_id>/ - Open a specific chat

Authentication:
    AuthMiddlewareStack (config/asgi.py) attaches the session user to the
    consumer's scope.
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path(
        "ws/inbox/",
        consumers.InboxConsumer.as_asgi(),
    ),
    path(
        "ws/chat/<int:chat_id>/",
        consumers.ConversationConsumer.as_asgi(),
    ),
]
