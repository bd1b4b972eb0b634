import json

import pytest
from fastapi.testclient import TestClient

from supportdesk import __version__
from supportdesk.config import Settings, load_settings
from supportdesk.errors import ConfigurationError
from supportdesk.generation import EchoTextGenerator
from supportdesk.main import create_app


def test_health_and_version(harness):
    assert harness.client.get("/api/health").json() == {"status": "ok"}
    version = harness.client.get("/api/version").json()
    assert version["version"] == __version__
    assert set(version) == {"version", "build_date", "commit_sha"}


def test_metrics_are_exposed(harness):
    harness.client.get("/api/health")
    resp = harness.client.get("/api/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text or "http_request_duration" in resp.text


def test_several_apps_can_coexist(make_harness):
    first = make_harness()
    second = make_harness()
    assert first.client.get("/api/metrics").status_code == 200
    assert second.client.get("/api/metrics").status_code == 200


def test_request_id_header_is_returned(harness):
    resp = harness.client.get("/api/version", headers={"X-Request-Id": "req-1"})
    assert resp.headers["X-Request-Id"] == "req-1"


def test_app_from_environment_uses_echo_generator(monkeypatch, tmp_path):
    tenants_file = tmp_path / "tenants.json"
    tenants_file.write_text(
        json.dumps(
            {
                "tenants": [
                    {
                        "company_id": "acme-tv",
                        "industry": "television",
                        "whatsapp": {"phone_number_id": "PN", "access_token": "t"},
                    }
                ]
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("TENANTS_FILE", str(tenants_file))
    monkeypatch.setenv("SMS_MAX_LENGTH", "160")

    settings = load_settings()
    assert settings.sms_max_length == 160
    app = create_app(settings)
    ctx = app.state.context
    assert ctx.service.generator_name == EchoTextGenerator.name
    assert ctx.tenants.get("acme-tv").whatsapp.phone_number_id == "PN"
    assert ctx.sms.max_length == 160

    client = TestClient(app)
    resp = client.post(
        "/api/conversations",
        json={
            "customerId": "c1",
            "channel": "web",
            "industry": "television",
            "companyId": "acme-tv",
            "initialMessage": "My decoder shows an error",
        },
    )
    assert resp.status_code == 201
    assert "You asked: My decoder shows an error" in resp.json()["response"]


def test_broken_tenant_file_fails_start_up(tmp_path):
    path = tmp_path / "tenants.json"
    path.write_text("{", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        create_app(Settings(tenants_file=str(path)))
