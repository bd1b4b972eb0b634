"""Inbound webhooks for the SMS and WhatsApp channels."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from ..conversations.models import InboundMessage
from ..dependencies import AppContext, get_context
from ..errors import DeliveryError, SupportDeskError, ValidationError
from ..tenants import TenantConfig

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


# ----------------------------------------------------------------------
# SMS


@router.get("/webhooks/sms", response_class=PlainTextResponse)
async def sms_status() -> str:
    return "SMS webhook is active"


@router.post("/webhooks/sms", response_class=PlainTextResponse)
async def sms_inbound(request: Request, ctx: AppContext = Depends(get_context)) -> str:
    """Handle a Twilio-style form webhook and reply by SMS."""
    form = await request.form()
    adapter = ctx.sms
    inbound = adapter.parse_incoming(dict(form), request.headers)
    tenant = ctx.tenants.get(inbound.company_id)
    result = await run_in_threadpool(
        ctx.service.process_turn,
        inbound,
        handoff_text=adapter.handoff_text,
        tenant=tenant,
        format_reply=adapter.format_reply,
    )
    if result.should_respond and result.text:
        await run_in_threadpool(
            adapter.send, inbound.sender_address, result.text, tenant=tenant
        )
    return "Message received"


# ----------------------------------------------------------------------
# WhatsApp


@router.get("/webhooks/whatsapp", response_class=PlainTextResponse)
async def whatsapp_verify(request: Request, ctx: AppContext = Depends(get_context)):
    """Answer the Meta subscription handshake."""
    challenge = ctx.whatsapp.verify_subscription(request.query_params)
    if challenge is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return challenge


def _handle_whatsapp_message(
    ctx: AppContext, tenant: TenantConfig, inbound: InboundMessage
) -> None:
    adapter = ctx.whatsapp
    try:
        adapter.mark_read(tenant, inbound.external_message_id)
    except DeliveryError as exc:
        logger.warning("Could not mark WhatsApp message read: %s", exc)
    result = ctx.service.process_turn(
        inbound, handoff_text=adapter.handoff_text, tenant=tenant
    )
    if result.should_respond and result.text:
        adapter.send(inbound.sender_address, result.text, tenant=tenant)


@router.post("/webhooks/whatsapp")
async def whatsapp_inbound(request: Request, ctx: AppContext = Depends(get_context)):
    """Process a WhatsApp Cloud API notification.

    Meta retries any non-200 answer, so everything except a bad signature is
    acknowledged with 200 and failures are only logged.
    """
    body = await request.body()
    adapter = ctx.whatsapp
    try:
        payload = json.loads(body or b"{}")
        tenant = adapter.tenant_for(payload)
    except (ValueError, ValidationError) as exc:
        logger.info("Rejected WhatsApp payload: %s", exc)
        return {"status": "ignored"}
    if tenant is None:
        return {"status": "ignored"}
    secret = tenant.whatsapp.app_secret if tenant.whatsapp else None
    if not adapter.verify_signature(body, request.headers, secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )
    try:
        messages = adapter.parse_incoming(payload, request.headers)
    except ValidationError as exc:
        logger.info("Rejected WhatsApp payload: %s", exc)
        return {"status": "ignored"}
    if not messages:
        return {"status": "ignored"}

    processed = 0
    for inbound in messages:
        try:
            owner = ctx.tenants.get(inbound.company_id)
            await run_in_threadpool(_handle_whatsapp_message, ctx, owner, inbound)
            processed += 1
        except SupportDeskError as exc:
            logger.warning(
                "WhatsApp message %s not processed: %s",
                inbound.external_message_id,
                exc,
            )
        except Exception:
            logger.exception(
                "Unexpected failure processing WhatsApp message %s",
                inbound.external_message_id,
            )
    return {"status": "processed", "processed": processed}
