"""Web widget chat endpoint streaming replies as server-sent events."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from ..dependencies import AppContext, get_context
from ..errors import ValidationError
from ..rate_limits import chat_rate_limit, limiter
from ..sse_utils import SSE_HEADERS

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.post("/chat")
@limiter.limit(chat_rate_limit)
async def chat(request: Request, ctx: AppContext = Depends(get_context)):
    """Stream the reply for one customer message.

    Validation, conversation lookup and the escalation decision happen before
    the stream opens, so their errors are plain JSON responses. Once the
    stream is open every frame is flushed as soon as it is produced.
    """
    try:
        payload = json.loads(await request.body() or b"null")
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    adapter = ctx.web
    inbound = adapter.parse_incoming(payload, request.headers)
    tenant = ctx.tenant_for_company(inbound.company_id)
    turn = await run_in_threadpool(
        ctx.service.prepare_turn,
        inbound,
        handoff_text=adapter.handoff_text,
        tenant=tenant,
    )

    async def event_stream():
        events = ctx.service.stream_reply(turn)
        try:
            while True:
                if await request.is_disconnected():
                    logger.info(
                        "Client disconnected from conversation %s",
                        turn.conversation_id,
                    )
                    break
                try:
                    event = await events.__anext__()
                except StopAsyncIteration:
                    break
                yield adapter.frame(event["content"], event["done"], event.get("error"))
        finally:
            await events.aclose()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream; charset=utf-8",
        headers={**SSE_HEADERS, "X-Conversation-Id": turn.conversation_id},
    )
