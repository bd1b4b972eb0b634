"""Response generation with bounded blocking and streaming calls."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Optional

from ..config import Settings
from ..conversations import schemas
from ..conversations.models import Channel, Industry, IntentResult
from ..errors import GenerationError
from .backends import ChatTurn, TextGenerator
from .prompts import PromptBuilder
from .responses import ResponseParameterStore

logger = logging.getLogger(__name__)


class ResponseGenerator:
    """Build prompts and call the configured text generator.

    Blocking calls are bounded by ``settings.generation_timeout``. Streaming
    calls are bounded per chunk by ``settings.stream_stall_timeout`` so a
    stalled backend cannot hold a connection open indefinitely.
    """

    def __init__(
        self,
        backend: TextGenerator,
        *,
        settings: Optional[Settings] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        response_store: Optional[ResponseParameterStore] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._settings = settings or Settings()
        self._backend = backend
        self._prompts = prompt_builder or PromptBuilder(
            max_chars=self._settings.prompt_max_chars,
            language=self._settings.openai_lang,
        )
        self._responses = response_store or ResponseParameterStore()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=8, thread_name_prefix="generation"
        )

    @property
    def backend_name(self) -> str:
        return getattr(self._backend, "name", type(self._backend).__name__)

    # ------------------------------------------------------------------
    # Prompt

    def build_prompt(
        self,
        message: str,
        industry: Industry | str,
        intent: IntentResult | str | None,
        history: Sequence[schemas.Message] = (),
    ) -> str:
        return self._prompts.build(message, industry, intent, history)

    # ------------------------------------------------------------------
    # Blocking

    def generate_response(
        self,
        prompt: str,
        *,
        channel: Channel | str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> str:
        merged = self._responses.merge(channel, params)
        future = self._executor.submit(self._backend.complete, prompt, (), merged)
        try:
            text = future.result(timeout=self._settings.generation_timeout)
        except FutureTimeout as exc:
            future.cancel()
            logger.warning(
                "Generation timed out after %.1fs", self._settings.generation_timeout
            )
            raise GenerationError("Text generation timed out") from exc
        except GenerationError:
            raise
        except Exception as exc:
            logger.warning("Generation backend %s failed: %s", self.backend_name, exc)
            raise GenerationError("Failed to generate AI response") from exc
        if not text or not text.strip():
            raise GenerationError("Text generation returned an empty response")
        return text

    # ------------------------------------------------------------------
    # Streaming

    async def generate_streaming_response(
        self,
        prompt: str,
        history: Sequence[ChatTurn] = (),
        *,
        channel: Channel | str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        """Yield text chunks as soon as the backend produces them.

        Failures surface as :class:`GenerationError` raised from the iterator.
        Closing this generator closes the backend stream.
        """

        merged = self._responses.merge(channel, params)
        iterator = self._backend.stream(prompt, history, merged)
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(
                        iterator.__anext__(), timeout=self._settings.stream_stall_timeout
                    )
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as exc:
                    logger.warning(
                        "Generation stream stalled for %.1fs",
                        self._settings.stream_stall_timeout,
                    )
                    raise GenerationError("Text generation stream stalled") from exc
                except GenerationError:
                    raise
                except Exception as exc:
                    logger.warning(
                        "Generation stream from %s failed: %s", self.backend_name, exc
                    )
                    raise GenerationError("Failed to generate streaming response") from exc
                if chunk:
                    yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
