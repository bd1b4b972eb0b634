import asyncio
import os
import pathlib
import sys
import tempfile
from dataclasses import dataclass, field

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
# Keep log files out of the working tree when the app module is imported.
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="supportdesk-logs-"))

from fastapi.testclient import TestClient

from supportdesk.config import Settings
from supportdesk.conversations.models import Industry
from supportdesk.conversations.store import ConversationStore
from supportdesk.main import create_app
from supportdesk.rate_limits import limiter
from supportdesk.tenants import (
    SmsCredentials,
    TenantConfig,
    TenantDirectory,
    WhatsAppCredentials,
)


class ScriptedGenerator:
    """Text generator returning canned text and recording every call."""

    name = "scripted"

    def __init__(self, reply="Your balance is 42 units.", chunks=None, fail=False, fail_after=None):
        self.reply = reply
        self.chunks = chunks if chunks is not None else ["Your ", "balance ", "is ", "42."]
        self.fail = fail
        self.fail_after = fail_after
        self.prompts = []
        self.stream_closed = False

    def complete(self, prompt, history=(), params=None):
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("backend unavailable")
        return self.reply

    async def stream(self, prompt, history=(), params=None):
        self.prompts.append(prompt)
        try:
            if self.fail:
                raise RuntimeError("backend unavailable")
            for index, chunk in enumerate(self.chunks):
                if self.fail_after is not None and index == self.fail_after:
                    raise RuntimeError("stream dropped")
                yield chunk
                await asyncio.sleep(0)
        finally:
            self.stream_closed = True


class RecordingGateway:
    def __init__(self, tenant):
        self.tenant = tenant
        self.sent = []
        self.read = []

    def send(self, recipient, text):
        self.sent.append((recipient, text))
        return {"id": f"out-{len(self.sent)}", "status": "sent"}

    def mark_read(self, message_id):
        self.read.append(message_id)
        return {"success": True}


@dataclass
class RecordingGatewayFactory:
    gateways: dict = field(default_factory=dict)

    def __call__(self, tenant):
        if tenant.company_id not in self.gateways:
            self.gateways[tenant.company_id] = RecordingGateway(tenant)
        return self.gateways[tenant.company_id]

    @property
    def sent(self):
        return [item for gw in self.gateways.values() for item in gw.sent]

    @property
    def read(self):
        return [item for gw in self.gateways.values() for item in gw.read]


@dataclass
class Harness:
    client: TestClient
    app: object
    store: ConversationStore
    generator: ScriptedGenerator
    sms: RecordingGatewayFactory
    whatsapp: RecordingGatewayFactory

    @property
    def context(self):
        return self.app.state.context


ACME = TenantConfig(
    company_id="acme-mobile",
    industry=Industry.MOBILE,
    name="Acme Mobile",
    sms=SmsCredentials(account_sid="AC1", auth_token="tok1", from_number="+1 555 000 1111"),
    whatsapp=WhatsAppCredentials(
        phone_number_id="PNID-1",
        access_token="wa-token-1",
        verify_token="acme-verify",
        app_secret="acme-secret",
    ),
)
FIRST_BANK = TenantConfig(
    company_id="first-bank",
    industry=Industry.BANKING,
    name="First Bank",
    sms=SmsCredentials(account_sid="AC2", auth_token="tok2", from_number="+15550002222"),
    whatsapp=WhatsAppCredentials(phone_number_id="PNID-2", access_token="wa-token-2"),
)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def tenants():
    return TenantDirectory([ACME, FIRST_BANK])


@pytest.fixture
def settings():
    return Settings(whatsapp_verify_token="global-verify", generation_timeout=2.0, stream_stall_timeout=2.0)


@pytest.fixture
def make_harness(settings, tenants):
    def _make(generator=None, *, settings_overrides=None, tenant_directory=None, store=None):
        generator = generator or ScriptedGenerator()
        store = store or ConversationStore()
        sms = RecordingGatewayFactory()
        whatsapp = RecordingGatewayFactory()
        app = create_app(
            settings.with_overrides(**(settings_overrides or {})),
            store=store,
            generator=generator,
            tenants=tenant_directory if tenant_directory is not None else tenants,
            sms_gateway_factory=sms,
            whatsapp_gateway_factory=whatsapp,
        )
        return Harness(
            client=TestClient(app),
            app=app,
            store=store,
            generator=generator,
            sms=sms,
            whatsapp=whatsapp,
        )

    return _make


@pytest.fixture
def harness(make_harness):
    return make_harness()
