"""Base abstractions for channel adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from ..errors import InvalidStateError
from ..tenants import TenantConfig
from .gateways import GatewayFactory


class ChannelAdapter(ABC):
    """Translate between a vendor's wire format and canonical messages."""

    #: Lowercase channel identifier used in routes and configuration.
    channel_name: str

    #: Fixed reply sent instead of an AI answer when a conversation escalates.
    handoff_text: str

    def __init__(self, *, gateway_factory: GatewayFactory | None = None) -> None:
        self.gateway_factory = gateway_factory

    @abstractmethod
    def parse_incoming(
        self, payload: Mapping[str, Any], headers: Mapping[str, str]
    ) -> Any:
        """Convert an inbound payload into canonical message(s).

        Raises :class:`~supportdesk.errors.ValidationError` for malformed
        payloads.
        """

    def verify_signature(
        self, body: bytes, headers: Mapping[str, str], secret: str | None
    ) -> bool:
        """Validate authenticity of the webhook payload.

        The default implementation accepts every payload.
        """

        return True

    def format_reply(self, text: str) -> str:
        """Shape reply text for the channel before it is stored and sent."""

        return text

    def send(
        self, recipient: str, text: str, *, tenant: TenantConfig
    ) -> Mapping[str, Any]:
        if self.gateway_factory is None:
            raise InvalidStateError(
                f"Channel '{self.channel_name}' has no outbound gateway"
            )
        gateway = self.gateway_factory(tenant)
        return gateway.send(recipient, self.format_reply(text))
