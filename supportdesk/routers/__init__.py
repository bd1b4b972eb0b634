"""HTTP routers for the channel endpoints and the management API."""

from . import chat, conversations, webhooks

__all__ = ["chat", "conversations", "webhooks"]
