"""Conversation management API for dashboards and human agents."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from starlette.concurrency import run_in_threadpool

from ..conversations import schemas as convo_schemas
from ..conversations.models import Channel, ConversationStatus, InboundMessage, Industry
from ..dependencies import AppContext, get_context
from ..errors import DeliveryError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["conversations"])


@router.get("/conversations", response_model=convo_schemas.ConversationList)
def list_conversations(
    status_filter: Optional[ConversationStatus] = Query(default=None, alias="status"),
    channel: Optional[Channel] = None,
    company_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    ctx: AppContext = Depends(get_context),
) -> convo_schemas.ConversationList:
    items = ctx.store.list_conversations(
        status=status_filter, channel=channel, company_id=company_id, limit=limit
    )
    return convo_schemas.ConversationList(items=items, total=len(items))


@router.post(
    "/conversations",
    response_model=convo_schemas.ConversationCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_conversation(
    body: convo_schemas.ConversationCreateRequest,
    ctx: AppContext = Depends(get_context),
) -> convo_schemas.ConversationCreateResponse:
    """Open a conversation, optionally answering its first message."""
    industry = Industry.parse(body.industry)
    tenant = ctx.tenant_for_company(body.company_id)
    conversation_id = ctx.store.create_conversation(
        body.customer_id, body.channel, industry, body.company_id
    )
    if not body.initial_message or not body.initial_message.strip():
        return convo_schemas.ConversationCreateResponse(conversation_id=conversation_id)

    adapter = ctx.adapter_for(body.channel)
    result = ctx.service.process_turn(
        InboundMessage(
            channel=body.channel,
            customer_id=body.customer_id,
            text=body.initial_message.strip(),
            industry=industry,
            company_id=body.company_id,
            conversation_id=conversation_id,
        ),
        handoff_text=adapter.handoff_text,
        tenant=tenant,
        format_reply=adapter.format_reply,
    )
    return convo_schemas.ConversationCreateResponse(
        conversation_id=result.conversation_id,
        response=result.text or None,
        intent=result.intent.intent if result.intent else None,
        confidence=result.intent.confidence if result.intent else None,
        requires_escalation=result.escalated,
    )


@router.get("/conversations/{conversation_id}", response_model=convo_schemas.Conversation)
def get_conversation(
    conversation_id: str, ctx: AppContext = Depends(get_context)
) -> convo_schemas.Conversation:
    return ctx.store.get_conversation(conversation_id)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=convo_schemas.AgentMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_agent_message(
    conversation_id: str,
    body: convo_schemas.AgentMessageRequest,
    ctx: AppContext = Depends(get_context),
) -> convo_schemas.AgentMessageResponse:
    """Store an agent reply and deliver it on SMS or WhatsApp."""
    message_id = await run_in_threadpool(
        ctx.service.agent_reply, conversation_id, body.agent_id, body.content
    )
    conversation = ctx.store.get_conversation(conversation_id)
    address = conversation.context.custom_data.get("sender_address")
    if conversation.channel == Channel.WEB or not address:
        return convo_schemas.AgentMessageResponse(message_id=message_id)
    tenant = ctx.tenant_for_company(conversation.company_id)
    if tenant is None:
        return convo_schemas.AgentMessageResponse(message_id=message_id)
    adapter = ctx.adapter_for(conversation.channel)
    try:
        await run_in_threadpool(adapter.send, address, body.content, tenant=tenant)
    except DeliveryError as exc:
        logger.warning("Agent reply %s stored but not delivered: %s", message_id, exc)
        return convo_schemas.AgentMessageResponse(message_id=message_id)
    return convo_schemas.AgentMessageResponse(message_id=message_id, delivered=True)


@router.post(
    "/conversations/{conversation_id}/escalate",
    response_model=convo_schemas.StatusChangeResponse,
)
def escalate_conversation(
    conversation_id: str,
    body: Optional[convo_schemas.EscalationRequest] = None,
    ctx: AppContext = Depends(get_context),
) -> convo_schemas.StatusChangeResponse:
    body = body or convo_schemas.EscalationRequest()
    changed = ctx.store.escalate(
        conversation_id, reason=body.reason or "agent_request", agent_id=body.agent_id
    )
    return convo_schemas.StatusChangeResponse(
        conversation_id=conversation_id,
        status=ConversationStatus.ESCALATED,
        changed=changed,
    )


@router.post(
    "/conversations/{conversation_id}/resolve",
    response_model=convo_schemas.StatusChangeResponse,
)
def resolve_conversation(
    conversation_id: str, ctx: AppContext = Depends(get_context)
) -> convo_schemas.StatusChangeResponse:
    before = ctx.store.get_conversation(conversation_id).status
    ctx.store.resolve(conversation_id)
    return convo_schemas.StatusChangeResponse(
        conversation_id=conversation_id,
        status=ConversationStatus.RESOLVED,
        changed=before != ConversationStatus.RESOLVED,
    )


@router.get("/escalations", response_model=list[convo_schemas.EscalationEventOut])
def list_escalations(
    company_id: Optional[str] = None, ctx: AppContext = Depends(get_context)
) -> list[convo_schemas.EscalationEventOut]:
    return [
        convo_schemas.EscalationEventOut(
            id=event.id,
            conversation_id=event.conversation_id,
            reason=event.reason,
            created_at=event.created_at,
            company_id=event.company_id,
        )
        for event in ctx.store.escalation_queue.pending(company_id)
    ]
