"""Outbound gateways for the SMS and WhatsApp vendor APIs.

Each gateway instance is bound to exactly one tenant's credentials.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import requests

from ..errors import DeliveryError
from ..tenants import SmsCredentials, TenantConfig, WhatsAppCredentials

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
GRAPH_API_BASE = "https://graph.facebook.com"


class OutboundGateway(Protocol):
    def send(self, recipient: str, text: str) -> Mapping[str, Any]: ...


GatewayFactory = Callable[[TenantConfig], OutboundGateway]


class TwilioSmsGateway:
    """Send SMS replies through the Twilio Messages resource."""

    def __init__(
        self,
        credentials: SmsCredentials,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.credentials = credentials
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return (
            f"{TWILIO_API_BASE}/Accounts/{self.credentials.account_sid}/Messages.json"
        )

    def send(self, recipient: str, text: str) -> Mapping[str, Any]:
        try:
            resp = self.session.post(
                self.url,
                data={
                    "From": self.credentials.from_number,
                    "To": recipient,
                    "Body": text,
                },
                auth=(self.credentials.account_sid, self.credentials.auth_token),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Twilio send failed: %s", exc)
            raise DeliveryError("SMS delivery failed") from exc
        payload = resp.json() if resp.content else {}
        return {"id": payload.get("sid"), "status": payload.get("status", "queued")}


class WhatsAppCloudGateway:
    """Send text replies and read receipts through the WhatsApp Cloud API."""

    def __init__(
        self,
        credentials: WhatsAppCredentials,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.credentials = credentials
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return (
            f"{GRAPH_API_BASE}/{self.credentials.api_version}/"
            f"{self.credentials.phone_number_id}/messages"
        )

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = self.session.post(
                self.url,
                json=body,
                headers={"Authorization": f"Bearer {self.credentials.access_token}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("WhatsApp Cloud API call failed: %s", exc)
            raise DeliveryError("WhatsApp delivery failed") from exc
        return resp.json() if resp.content else {}

    def send(self, recipient: str, text: str) -> Mapping[str, Any]:
        payload = self._post(
            {
                "messaging_product": "whatsapp",
                "recipient_type": "individual",
                "to": recipient,
                "type": "text",
                "text": {"preview_url": False, "body": text},
            }
        )
        messages = payload.get("messages") or [{}]
        return {"id": messages[0].get("id"), "status": "sent"}

    def mark_read(self, message_id: str) -> Mapping[str, Any]:
        return self._post(
            {
                "messaging_product": "whatsapp",
                "status": "read",
                "message_id": message_id,
            }
        )


def twilio_gateway_factory(timeout: float = 10.0) -> GatewayFactory:
    def build(tenant: TenantConfig) -> OutboundGateway:
        if tenant.sms is None:
            raise DeliveryError(f"Tenant {tenant.company_id} has no SMS credentials")
        return TwilioSmsGateway(tenant.sms, timeout=timeout)

    return build


def whatsapp_gateway_factory(timeout: float = 10.0) -> GatewayFactory:
    def build(tenant: TenantConfig) -> OutboundGateway:
        if tenant.whatsapp is None:
            raise DeliveryError(
                f"Tenant {tenant.company_id} has no WhatsApp credentials"
            )
        return WhatsAppCloudGateway(tenant.whatsapp, timeout=timeout)

    return build
