"""Pydantic schemas for conversation records and management APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .models import Channel, ConversationStatus, Industry, Sender


class ConversationContext(BaseModel):
    intent: str | None = None
    industry: Industry
    custom_data: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    id: str
    conversation_id: str
    sender: Sender
    content: str
    intent: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationSummary(BaseModel):
    id: str
    customer_id: str
    channel: Channel
    industry: Industry
    company_id: str | None = None
    status: ConversationStatus
    started_at: datetime
    ended_at: datetime | None = None
    last_message_at: datetime
    assigned_agent: str | None = None
    generation_failures: int = 0
    context: ConversationContext


class Conversation(ConversationSummary):
    messages: list[Message] = Field(default_factory=list)


class ConversationList(BaseModel):
    items: list[ConversationSummary]
    total: int


# ----------------------------------------------------------------------
# Request/response payloads


class ChatRequest(BaseModel):
    """Body of the web widget ``POST /chat`` endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str | None = Field(default=None, alias="conversationId")
    customer_id: str = Field(alias="customerId", min_length=1)
    message: str = Field(min_length=1)
    industry: str
    company_id: str | None = Field(default=None, alias="companyId")


class ConversationCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_id: str = Field(alias="customerId", min_length=1)
    channel: Channel
    industry: str
    company_id: str | None = Field(default=None, alias="companyId")
    initial_message: str | None = Field(default=None, alias="initialMessage")


class ConversationCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(serialization_alias="conversationId")
    response: str | None = None
    intent: str | None = None
    confidence: float | None = None
    requires_escalation: bool = Field(
        default=False, serialization_alias="requiresEscalation"
    )


class AgentMessageRequest(BaseModel):
    agent_id: str = Field(min_length=1)
    content: str = Field(min_length=1)


class EscalationRequest(BaseModel):
    reason: str | None = None
    agent_id: str | None = None


class EscalationEventOut(BaseModel):
    id: str
    conversation_id: str
    reason: str | None = None
    created_at: datetime
    company_id: str | None = None


class AgentMessageResponse(BaseModel):
    message_id: str
    delivered: bool = False


class StatusChangeResponse(BaseModel):
    conversation_id: str
    status: ConversationStatus
    changed: bool
