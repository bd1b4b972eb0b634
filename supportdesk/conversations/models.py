"""Domain models used by the conversation service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import ValidationError


class Channel(str, Enum):
    WEB = "web"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class Sender(str, Enum):
    CUSTOMER = "customer"
    AI = "ai"
    AGENT = "agent"
    SYSTEM = "system"


class Industry(str, Enum):
    MOBILE = "mobile"
    BANKING = "banking"
    MICROFINANCE = "microfinance"
    INSURANCE = "insurance"
    TELEVISION = "television"

    @classmethod
    def parse(cls, value: "str | Industry") -> "Industry":
        """Return the enum member for ``value``, accepting known aliases."""

        if isinstance(value, Industry):
            return value
        normalized = str(value or "").strip().lower()
        normalized = _INDUSTRY_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValidationError(f"Unsupported industry '{value}'") from exc


_INDUSTRY_ALIASES = {"tv": "television", "telecom": "mobile", "bank": "banking"}

#: Allowed lifecycle transitions; anything else is rejected by the store.
ALLOWED_TRANSITIONS: dict[ConversationStatus, frozenset[ConversationStatus]] = {
    ConversationStatus.ACTIVE: frozenset(
        {ConversationStatus.ESCALATED, ConversationStatus.RESOLVED}
    ),
    ConversationStatus.ESCALATED: frozenset({ConversationStatus.RESOLVED}),
    ConversationStatus.RESOLVED: frozenset(),
}


@dataclass
class InboundMessage:
    """Uniform representation of inbound channel messages."""

    channel: Channel
    customer_id: str
    text: str
    industry: Industry
    company_id: str | None = None
    conversation_id: str | None = None
    sender_address: str | None = None
    sender_name: str | None = None
    external_message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class IntentResult:
    intent: str
    confidence: float
    matched_pattern: str | None = None


@dataclass(frozen=True)
class EscalationDecision:
    should_escalate: bool
    reason: str | None = None


@dataclass
class EscalationEvent:
    id: str
    conversation_id: str
    reason: str | None
    created_at: datetime
    company_id: str | None = None


@dataclass
class TurnResult:
    """Outcome of one non-streaming pipeline turn."""

    conversation_id: str
    text: str
    should_respond: bool = True
    escalated: bool = False
    intent: IntentResult | None = None
    message_id: str | None = None
    failed: bool = False
