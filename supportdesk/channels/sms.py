"""SMS channel adapter for Twilio-style form webhooks."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..conversations.models import Channel, InboundMessage
from ..errors import NotFoundError, ValidationError
from ..tenants import TenantConfig, TenantDirectory
from .base import ChannelAdapter
from .gateways import GatewayFactory

logger = logging.getLogger(__name__)

CONTINUATION_MARKER = "..."


def truncate_sms(text: str, max_length: int) -> str:
    """Cut ``text`` to ``max_length`` characters, marking the cut."""

    if len(text) <= max_length:
        return text
    keep = max(max_length - len(CONTINUATION_MARKER), 0)
    return text[:keep] + CONTINUATION_MARKER


class SmsAdapter(ChannelAdapter):
    channel_name = "sms"
    handoff_text = (
        "Your message has been forwarded to a customer service representative. "
        "You will receive a call shortly."
    )

    def __init__(
        self,
        tenants: TenantDirectory,
        *,
        default_tenant: str | None = None,
        max_length: int = 300,
        gateway_factory: GatewayFactory | None = None,
    ) -> None:
        super().__init__(gateway_factory=gateway_factory)
        self.tenants = tenants
        self.default_tenant = default_tenant
        self.max_length = max_length

    def resolve_tenant(self, to_number: str | None) -> TenantConfig:
        if to_number:
            try:
                return self.tenants.by_sms_number(to_number)
            except NotFoundError:
                if not self.default_tenant:
                    raise
                logger.info("Unknown SMS number; routing to default tenant")
        if not self.default_tenant:
            raise NotFoundError("No tenant configured for inbound SMS")
        return self.tenants.get(self.default_tenant)

    def parse_incoming(
        self, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None
    ) -> InboundMessage:
        sender = str(payload.get("From") or "").strip()
        body = str(payload.get("Body") or "").strip()
        if not sender or not body:
            raise ValidationError("SMS webhook requires From and Body")
        tenant = self.resolve_tenant(payload.get("To"))
        return InboundMessage(
            channel=Channel.SMS,
            customer_id=TenantDirectory.customer_id_for_phone(tenant, sender),
            text=body,
            industry=tenant.industry,
            company_id=tenant.company_id,
            sender_address=sender,
            external_message_id=payload.get("MessageSid"),
        )

    def format_reply(self, text: str) -> str:
        return truncate_sms(text, self.max_length)
