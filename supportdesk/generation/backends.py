"""Text-generation backends.

``OpenAITextGenerator`` talks to the OpenAI chat completions API. When no API
key is configured, :func:`build_text_generator` returns
``EchoTextGenerator``, a deterministic backend that keeps the service usable
in development and CI without network access.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAI

from ..config import Settings
from .prompts import CUSTOMER_MESSAGE_LABEL
from .providers import ProviderRegistry

logger = logging.getLogger(__name__)

ChatTurn = Mapping[str, str]


class TextGenerator(Protocol):
    name: str

    def complete(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        params: Mapping[str, Any] | None = None,
    ) -> str: ...

    def stream(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        params: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]: ...


def _messages(prompt: str, history: Sequence[ChatTurn]) -> list[dict[str, str]]:
    messages = [
        {"role": turn.get("role", "user"), "content": turn.get("content", "")}
        for turn in history
    ]
    messages.append({"role": "user", "content": prompt})
    return messages


class OpenAITextGenerator:
    """Chat-completions backend with blocking and streaming modes."""

    name = "openai"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout: float = 30.0,
        base_url: str | None = None,
        client: OpenAI | None = None,
        async_client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._client = client or OpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
        )
        self._async_client = async_client or AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
        )

    def complete(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        params: Mapping[str, Any] | None = None,
    ) -> str:
        completion = self._client.chat.completions.create(
            model=self._model,
            messages=_messages(prompt, history),
            **dict(params or {}),
        )
        content = completion.choices[0].message.content if completion.choices else None
        return (content or "").strip()

    async def stream(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        params: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        response = await self._async_client.chat.completions.create(
            model=self._model,
            messages=_messages(prompt, history),
            stream=True,
            **dict(params or {}),
        )
        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                token = getattr(chunk.choices[0].delta, "content", None)
                if token:
                    yield token
        finally:
            await response.close()


class EchoTextGenerator:
    """Deterministic offline backend that acknowledges the customer message."""

    name = "echo"

    def complete(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        params: Mapping[str, Any] | None = None,
    ) -> str:
        question = prompt.rsplit(CUSTOMER_MESSAGE_LABEL, 1)[-1].strip()
        return (
            f"Thanks for reaching out. You asked: {question} "
            "A member of our team can follow up if you need more detail."
        )

    async def stream(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        params: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        words = self.complete(prompt, history, params).split(" ")
        for index, word in enumerate(words):
            yield word if index == len(words) - 1 else f"{word} "
            await asyncio.sleep(0)


def build_text_generator(
    settings: Settings, registry: ProviderRegistry | None = None
) -> TextGenerator:
    """Return the OpenAI backend when credentials exist, else the echo backend."""

    overrides = {}
    if settings.openai_api_key:
        overrides["openai"] = {"api_key": settings.openai_api_key}
    registry = registry or ProviderRegistry(overrides)
    credentials = registry.get_credentials("openai")
    if credentials.configured:
        logger.info("Using OpenAI model %s for generation", settings.openai_model)
        return OpenAITextGenerator(
            api_key=credentials.api_key or "",
            model=settings.openai_model,
            timeout=settings.generation_timeout,
            base_url=credentials.base_url,
        )
    logger.warning("OPENAI_API_KEY not configured; using offline echo generator")
    return EchoTextGenerator()
