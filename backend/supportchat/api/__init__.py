"""API route handlers."""

from supportchat.api import users, conversations, messages, uploads, websocket

__all__ = [
    "users",
    "conversations",
    "messages",
    "uploads",
    "websocket",
]
