"""Tenant directory mapping channel identifiers to companies and credentials.

A tenant is one company serving one industry. Its SMS and WhatsApp
credentials belong to it alone: channel lookups return the owning tenant and
gateways are built from that tenant's credentials only.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional
from zoneinfo import ZoneInfo

from .conversations.models import Industry
from .errors import ConfigurationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class SmsCredentials:
    account_sid: str
    auth_token: str
    from_number: str


@dataclass(frozen=True)
class WhatsAppCredentials:
    phone_number_id: str
    access_token: str
    verify_token: Optional[str] = None
    app_secret: Optional[str] = None
    api_version: str = "v18.0"


@dataclass(frozen=True)
class BusinessHours:
    """Weekly opening hours in a tenant's timezone."""

    timezone: str = "UTC"
    schedule: Mapping[str, tuple[time, time]] = field(default_factory=dict)

    def is_open(self, moment: Optional[datetime] = None) -> bool:
        moment = moment or datetime.now(timezone.utc)
        local = moment.astimezone(ZoneInfo(self.timezone))
        window = self.schedule.get(_DAYS[local.weekday()])
        if window is None:
            return False
        start, end = window
        return start <= local.time().replace(tzinfo=None) <= end


@dataclass(frozen=True)
class TenantConfig:
    company_id: str
    industry: Industry
    name: str = ""
    sms: Optional[SmsCredentials] = None
    whatsapp: Optional[WhatsAppCredentials] = None
    business_hours: Optional[BusinessHours] = None
    offline_message: str = (
        "We are currently offline. We will respond during business hours."
    )

    def is_open(self, moment: Optional[datetime] = None) -> bool:
        if self.business_hours is None:
            return True
        return self.business_hours.is_open(moment)


def _digits(phone: str) -> str:
    return re.sub(r"[^0-9]", "", phone or "")


class TenantDirectory:
    """In-process registry of tenants keyed by company and channel identifiers."""

    def __init__(self, tenants: Iterable[TenantConfig] = ()) -> None:
        self._by_company: Dict[str, TenantConfig] = {}
        self._by_sms_number: Dict[str, TenantConfig] = {}
        self._by_whatsapp_id: Dict[str, TenantConfig] = {}
        for tenant in tenants:
            self.register(tenant)

    def register(self, tenant: TenantConfig) -> None:
        if tenant.company_id in self._by_company:
            raise ConfigurationError(f"Duplicate tenant '{tenant.company_id}'")
        if tenant.sms is not None:
            key = _digits(tenant.sms.from_number)
            if key in self._by_sms_number:
                raise ConfigurationError(
                    f"SMS number {tenant.sms.from_number} already belongs to "
                    f"{self._by_sms_number[key].company_id}"
                )
            self._by_sms_number[key] = tenant
        if tenant.whatsapp is not None:
            key = tenant.whatsapp.phone_number_id
            if key in self._by_whatsapp_id:
                raise ConfigurationError(
                    f"WhatsApp number id {key} already belongs to "
                    f"{self._by_whatsapp_id[key].company_id}"
                )
            self._by_whatsapp_id[key] = tenant
        self._by_company[tenant.company_id] = tenant

    def __len__(self) -> int:
        return len(self._by_company)

    def all(self) -> list[TenantConfig]:
        return list(self._by_company.values())

    def get(self, company_id: str) -> TenantConfig:
        tenant = self._by_company.get(company_id)
        if tenant is None:
            raise NotFoundError(f"Tenant '{company_id}' not found")
        return tenant

    def by_sms_number(self, number: str) -> TenantConfig:
        tenant = self._by_sms_number.get(_digits(number))
        if tenant is None:
            raise NotFoundError(f"No tenant owns SMS number {number}")
        return tenant

    def by_whatsapp_phone_id(self, phone_number_id: str) -> TenantConfig:
        tenant = self._by_whatsapp_id.get(phone_number_id)
        if tenant is None:
            raise NotFoundError(f"No tenant owns WhatsApp number id {phone_number_id}")
        return tenant

    @staticmethod
    def customer_id_for_phone(tenant: TenantConfig, phone: str) -> str:
        """Return the tenant-scoped canonical customer id for ``phone``."""

        digits = _digits(phone)
        if not digits:
            raise NotFoundError("Cannot derive a customer from an empty phone number")
        return f"{tenant.company_id}:customer_{digits}"

    # ------------------------------------------------------------------
    # Loading

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TenantDirectory":
        tenants = [_tenant_from_mapping(item) for item in data.get("tenants", [])]
        return cls(tenants)

    @classmethod
    def from_file(cls, path: str | Path) -> "TenantDirectory":
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot load tenants from {path}: {exc}") from exc
        directory = cls.from_mapping(data)
        logger.info("Loaded %d tenants from %s", len(directory), path)
        return directory


def _parse_time(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _tenant_from_mapping(item: Mapping[str, Any]) -> TenantConfig:
    try:
        sms = item.get("sms")
        whatsapp = item.get("whatsapp")
        hours = item.get("business_hours")
        business_hours = None
        if hours:
            business_hours = BusinessHours(
                timezone=hours.get("timezone", "UTC"),
                schedule={
                    day.lower(): (_parse_time(span["start"]), _parse_time(span["end"]))
                    for day, span in (hours.get("schedule") or {}).items()
                },
            )
        extra: Dict[str, Any] = {}
        if item.get("offline_message"):
            extra["offline_message"] = item["offline_message"]
        return TenantConfig(
            company_id=str(item["company_id"]),
            industry=Industry.parse(item["industry"]),
            name=item.get("name", ""),
            sms=SmsCredentials(**sms) if sms else None,
            whatsapp=WhatsAppCredentials(**whatsapp) if whatsapp else None,
            business_hours=business_hours,
            **extra,
        )
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid tenant entry: {exc}") from exc
