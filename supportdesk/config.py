"""Runtime settings resolved from environment variables.

Settings are read once by :func:`load_settings` and passed explicitly into the
services that need them, so tests can build isolated instances without
touching the process environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for one application instance."""

    escalation_threshold: float = 0.4
    max_generation_failures: int = 3
    history_limit: int = 10
    prompt_max_chars: int = 6000
    sms_max_length: int = 300
    generation_timeout: float = 30.0
    stream_stall_timeout: float = 15.0
    outbound_timeout: float = 10.0
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_lang: str | None = None
    tenants_file: str | None = None
    default_sms_tenant: str | None = None
    whatsapp_verify_token: str | None = None
    database_url: str | None = None
    chat_rate_limit: str = "30/minute"
    chat_max_message_length: int = 5000

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with ``overrides`` applied."""

        return replace(self, **overrides)


def load_settings() -> Settings:
    """Build :class:`Settings` from the current environment."""

    return Settings(
        escalation_threshold=_env_float("ESCALATION_CONFIDENCE_THRESHOLD", 0.4),
        max_generation_failures=_env_int("MAX_GENERATION_FAILURES", 3),
        history_limit=_env_int("HISTORY_LIMIT", 10),
        prompt_max_chars=_env_int("PROMPT_MAX_CHARS", 6000),
        sms_max_length=_env_int("SMS_MAX_LENGTH", 300),
        generation_timeout=_env_float("GENERATION_TIMEOUT_SECONDS", 30.0),
        stream_stall_timeout=_env_float("STREAM_STALL_TIMEOUT_SECONDS", 15.0),
        outbound_timeout=_env_float("OUTBOUND_TIMEOUT_SECONDS", 10.0),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        openai_lang=os.getenv("OPENAI_LANG") or None,
        tenants_file=os.getenv("TENANTS_FILE") or None,
        default_sms_tenant=os.getenv("DEFAULT_SMS_TENANT") or None,
        whatsapp_verify_token=os.getenv("WHATSAPP_VERIFY_TOKEN") or None,
        database_url=os.getenv("DATABASE_URL") or None,
        chat_rate_limit=os.getenv("CHAT_RATE_LIMIT", "30/minute"),
        chat_max_message_length=_env_int("CHAT_MAX_MESSAGE_LENGTH", 5000),
    )
