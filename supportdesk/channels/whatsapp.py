"""WhatsApp Cloud API channel adapter."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from typing import Any

from ..conversations.models import Channel, InboundMessage
from ..errors import NotFoundError, ValidationError
from ..tenants import TenantConfig, TenantDirectory
from .base import ChannelAdapter
from .gateways import GatewayFactory

logger = logging.getLogger(__name__)


class WhatsAppAdapter(ChannelAdapter):
    channel_name = "whatsapp"
    handoff_text = (
        "Thank you for your message. A customer service representative will "
        "contact you shortly to assist you better."
    )

    def __init__(
        self,
        tenants: TenantDirectory,
        *,
        verify_token: str | None = None,
        gateway_factory: GatewayFactory | None = None,
    ) -> None:
        super().__init__(gateway_factory=gateway_factory)
        self.tenants = tenants
        self.verify_token = verify_token

    # ------------------------------------------------------------------
    # Webhook authenticity

    def verify_signature(
        self, body: bytes, headers: Mapping[str, str], secret: str | None
    ) -> bool:
        if not secret:
            return True
        received = headers.get("X-Hub-Signature-256") or headers.get(
            "x-hub-signature-256"
        )
        if not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(received, f"sha256={digest}")

    def verify_subscription(self, params: Mapping[str, str]) -> str | None:
        """Return ``hub.challenge`` when the subscription handshake is valid."""

        if params.get("hub.mode") != "subscribe":
            return None
        token = params.get("hub.verify_token")
        if not token:
            return None
        accepted = {self.verify_token} if self.verify_token else set()
        for tenant in self.tenants.all():
            if tenant.whatsapp is not None and tenant.whatsapp.verify_token:
                accepted.add(tenant.whatsapp.verify_token)
        presented = token.encode("utf-8")
        if not any(
            hmac.compare_digest(presented, candidate.encode("utf-8"))
            for candidate in accepted
        ):
            return None
        return params.get("hub.challenge", "")

    # ------------------------------------------------------------------
    # Inbound

    @staticmethod
    def _values(payload: Mapping[str, Any]) -> Iterator[Mapping[str, Any]]:
        if not isinstance(payload, Mapping):
            raise ValidationError("WhatsApp payload must be a JSON object")
        entries = payload.get("entry")
        if not isinstance(entries, list):
            raise ValidationError("WhatsApp payload has no entry list")
        for entry in entries:
            if not isinstance(entry, Mapping):
                raise ValidationError("WhatsApp entry must be an object")
            for change in entry.get("changes") or []:
                value = change.get("value") if isinstance(change, Mapping) else None
                if isinstance(value, Mapping):
                    yield value

    def tenant_for(self, payload: Mapping[str, Any]) -> TenantConfig | None:
        """Return the tenant owning the first business number in ``payload``."""

        for value in self._values(payload):
            phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
            if not phone_number_id:
                continue
            try:
                return self.tenants.by_whatsapp_phone_id(str(phone_number_id))
            except NotFoundError:
                logger.warning(
                    "Ignoring WhatsApp payload for unknown number id %s",
                    phone_number_id,
                )
                return None
        return None

    def parse_incoming(
        self, payload: Mapping[str, Any], headers: Mapping[str, str] | None = None
    ) -> list[InboundMessage]:
        """Return one canonical message per inbound text message.

        Status callbacks, empty ``messages`` arrays and non-text messages
        produce nothing.
        """

        parsed: list[InboundMessage] = []
        for value in self._values(payload):
            messages = value.get("messages") or []
            if not messages:
                continue
            business = value.get("metadata") or {}
            try:
                tenant = self.tenants.by_whatsapp_phone_id(
                    str(business.get("phone_number_id") or "")
                )
            except NotFoundError:
                logger.warning(
                    "Ignoring WhatsApp messages for unknown number id %s",
                    business.get("phone_number_id"),
                )
                continue
            contacts = {c.get("wa_id"): c for c in value.get("contacts") or []}
            for message in messages:
                if not isinstance(message, Mapping):
                    continue
                sender_id = str(message.get("from") or "")
                text = ""
                if message.get("type") == "text":
                    text = ((message.get("text") or {}).get("body") or "").strip()
                if not sender_id or not text:
                    logger.info(
                        "Skipping WhatsApp message of type %s", message.get("type")
                    )
                    continue
                contact = contacts.get(sender_id, {})
                parsed.append(
                    InboundMessage(
                        channel=Channel.WHATSAPP,
                        customer_id=TenantDirectory.customer_id_for_phone(
                            tenant, sender_id
                        ),
                        text=text,
                        industry=tenant.industry,
                        company_id=tenant.company_id,
                        sender_address=sender_id,
                        sender_name=(contact.get("profile") or {}).get("name"),
                        external_message_id=message.get("id"),
                        metadata={"wa_business_account": dict(business)},
                        sent_at=_sent_at(message.get("timestamp")),
                    )
                )
        return parsed

    # ------------------------------------------------------------------
    # Outbound

    def mark_read(self, tenant: TenantConfig, message_id: str | None) -> None:
        if not message_id or self.gateway_factory is None:
            return
        gateway = self.gateway_factory(tenant)
        mark = getattr(gateway, "mark_read", None)
        if mark is not None:
            mark(message_id)


def _sent_at(timestamp: Any) -> datetime:
    if timestamp:
        try:
            return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
        except (ValueError, TypeError, OverflowError):
            pass
    return datetime.now(timezone.utc)
