"""Web widget channel adapter."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..conversations.models import Channel, InboundMessage, Industry
from ..conversations.schemas import ChatRequest
from ..errors import ValidationError
from ..sse_utils import sse_event
from ..tenants import TenantConfig
from .base import ChannelAdapter


class WebAdapter(ChannelAdapter):
    """Replies on the web channel are streamed, so ``send`` encodes a frame."""

    channel_name = "web"
    handoff_text = (
        "I understand your concern. Let me connect you with a human agent "
        "who can better assist you."
    )

    def __init__(self, *, max_message_length: int = 5000) -> None:
        super().__init__()
        self.max_message_length = max_message_length

    def parse_incoming(
        self, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None
    ) -> InboundMessage:
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object")
        try:
            request = ChatRequest.model_validate(payload)
        except PydanticValidationError as exc:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) for err in exc.errors()
            )
            raise ValidationError(f"Invalid chat request: {fields}") from exc
        text = request.message.strip()
        if not text:
            raise ValidationError("Message must not be empty")
        if len(text) > self.max_message_length:
            raise ValidationError(
                f"Message exceeds {self.max_message_length} characters"
            )
        return InboundMessage(
            channel=Channel.WEB,
            customer_id=request.customer_id,
            text=text,
            industry=Industry.parse(request.industry),
            company_id=request.company_id,
            conversation_id=request.conversation_id,
        )

    def frame(self, content: str, done: bool, error: str | None = None) -> str:
        return sse_event(content, done, error)

    def send(
        self, recipient: str, text: str, *, tenant: TenantConfig | None = None
    ) -> Mapping[str, Any]:
        return {"frame": self.frame(self.format_reply(text), True)}
