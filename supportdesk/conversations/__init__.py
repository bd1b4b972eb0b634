"""Conversation flow services and schemas."""

from . import schemas
from .models import (
    Channel,
    ConversationStatus,
    EscalationDecision,
    InboundMessage,
    Industry,
    IntentResult,
    Sender,
    TurnResult,
)
from .store import ConversationStore

__all__ = [
    "Channel",
    "ConversationStatus",
    "ConversationStore",
    "EscalationDecision",
    "InboundMessage",
    "Industry",
    "IntentResult",
    "Sender",
    "TurnResult",
    "schemas",
]
