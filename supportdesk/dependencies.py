"""Per-application service wiring shared by the routers."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from .channels import ChannelAdapter, SmsAdapter, WebAdapter, WhatsAppAdapter
from .config import Settings
from .conversations.models import Channel
from .conversations.service import ConversationService
from .conversations.store import ConversationStore
from .tenants import TenantConfig, TenantDirectory


@dataclass
class AppContext:
    settings: Settings
    store: ConversationStore
    service: ConversationService
    tenants: TenantDirectory
    web: WebAdapter
    sms: SmsAdapter
    whatsapp: WhatsAppAdapter

    def adapter_for(self, channel: Channel | str) -> ChannelAdapter:
        return {
            Channel.WEB: self.web,
            Channel.SMS: self.sms,
            Channel.WHATSAPP: self.whatsapp,
        }[Channel(channel)]

    def tenant_for_company(self, company_id: str | None) -> TenantConfig | None:
        """Return the tenant for ``company_id``; unknown companies raise 404."""
        if not company_id:
            return None
        return self.tenants.get(company_id)


def get_context(request: Request) -> AppContext:
    return request.app.state.context
