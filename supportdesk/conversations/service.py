"""High-level conversation turn orchestration.

A turn runs: locate the conversation → classify → persist the customer
message → decide on escalation → either hand off or generate a reply. The
blocking flavour serves SMS, WhatsApp and the management API; the streaming
flavour serves the web widget.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..errors import (
    GenerationError,
    InvalidStateError,
    NotFoundError,
    TenantMismatchError,
)
from ..escalation import evaluate_escalation
from ..generation.service import ResponseGenerator
from ..nlp import IntentClassifier, RuleBasedIntentClassifier
from ..tenants import TenantConfig
from . import schemas
from .models import (
    Channel,
    ConversationStatus,
    InboundMessage,
    Industry,
    IntentResult,
    Sender,
    TurnResult,
)
from .store import ConversationStore

logger = logging.getLogger(__name__)

APOLOGY_TEXT = (
    "I apologize, but I encountered an error. Please try again or contact our "
    "support team."
)
GENERATION_FAILED = "generation_failed"


@dataclass
class PreparedTurn:
    """State of a turn after the customer message was stored.

    ``prompt`` is set when a reply still has to be generated; otherwise
    ``reply`` holds the final text (hand-off, offline notice) or is empty when
    nothing should be sent.
    """

    conversation_id: str
    channel: Channel
    industry: Industry
    intent: Optional[IntentResult] = None
    prompt: Optional[str] = None
    reply: str = ""
    should_respond: bool = True
    escalated: bool = False

    @property
    def needs_generation(self) -> bool:
        return self.prompt is not None

    def result(self, **overrides: Any) -> TurnResult:
        fields = {
            "conversation_id": self.conversation_id,
            "text": self.reply,
            "should_respond": self.should_respond,
            "escalated": self.escalated,
            "intent": self.intent,
        }
        fields.update(overrides)
        return TurnResult(**fields)


class ConversationService:
    """Coordinates the store, the classifier, the policy and the generator."""

    def __init__(
        self,
        store: ConversationStore,
        generator: ResponseGenerator,
        *,
        classifier: IntentClassifier | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self._generator = generator
        self._classifier = classifier or RuleBasedIntentClassifier()
        self._settings = settings or Settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def generator_name(self) -> str:
        return self._generator.backend_name

    # ------------------------------------------------------------------
    # Turn preparation

    def open_conversation(
        self, inbound: InboundMessage, tenant: TenantConfig | None = None
    ) -> schemas.Conversation:
        """Return the conversation ``inbound`` belongs to.

        An explicit conversation id must exist and belong to the same
        customer; a resolved id falls back to the customer's open
        conversation.
        """

        conversation = None
        if inbound.conversation_id:
            conversation = self.store.get_conversation(inbound.conversation_id)
            if conversation.customer_id != inbound.customer_id:
                raise NotFoundError(f"Conversation {inbound.conversation_id} not found")
            if conversation.status == ConversationStatus.RESOLVED:
                conversation = None
        if conversation is None:
            conversation_id = self.store.find_or_create_active(
                inbound.customer_id,
                inbound.channel,
                inbound.industry,
                inbound.company_id,
            )
            conversation = self.store.get_conversation(conversation_id)
        if tenant is not None and conversation.company_id != tenant.company_id:
            raise TenantMismatchError(
                f"Conversation {conversation.id} does not belong to tenant "
                f"{tenant.company_id}"
            )
        return conversation

    def prepare_turn(
        self,
        inbound: InboundMessage,
        *,
        handoff_text: str,
        tenant: TenantConfig | None = None,
    ) -> PreparedTurn:
        """Store the customer message and decide how the turn continues."""

        conversation = self.open_conversation(inbound, tenant)
        turn = PreparedTurn(
            conversation_id=conversation.id,
            channel=conversation.channel,
            industry=conversation.industry,
        )
        metadata = dict(inbound.metadata)
        if inbound.external_message_id:
            metadata["external_message_id"] = inbound.external_message_id
        self._remember_sender(conversation, inbound)

        if tenant is not None and not tenant.is_open(self._clock()):
            self.store.add_message(
                conversation.id, Sender.CUSTOMER, inbound.text, metadata=metadata
            )
            self.store.add_message(
                conversation.id,
                Sender.SYSTEM,
                tenant.offline_message,
                metadata={"offline": True},
            )
            logger.info("Tenant %s is outside business hours", tenant.company_id)
            turn.reply = tenant.offline_message
            return turn

        if conversation.status == ConversationStatus.ESCALATED:
            # A human owns the conversation; the customer message is queued for them.
            self.store.add_message(
                conversation.id, Sender.CUSTOMER, inbound.text, metadata=metadata
            )
            turn.should_respond = False
            turn.escalated = True
            return turn

        intent = self._classifier.detect_intent(inbound.text, conversation.industry)
        turn.intent = intent
        history = self.store.get_history(
            conversation.id, limit=self._settings.history_limit
        )
        self.store.add_message(
            conversation.id,
            Sender.CUSTOMER,
            inbound.text,
            intent=intent.intent,
            confidence=intent.confidence,
            metadata=metadata,
        )
        self.store.update_context(conversation.id, {"intent": intent.intent})

        decision = evaluate_escalation(
            intent, inbound.text, threshold=self._settings.escalation_threshold
        )
        if decision.should_escalate:
            logger.info(
                "Escalating conversation %s (intent=%s, confidence=%.2f, reason=%s)",
                conversation.id,
                intent.intent,
                intent.confidence,
                decision.reason,
            )
            if not self.store.escalate(conversation.id, reason=decision.reason):
                # Another turn escalated first and already sent the hand-off.
                turn.should_respond = False
                turn.escalated = True
                return turn
            self.store.add_message(
                conversation.id,
                Sender.SYSTEM,
                handoff_text,
                metadata={"handoff": True, "reason": decision.reason},
            )
            turn.reply = handoff_text
            turn.escalated = True
            return turn

        turn.prompt = self._generator.build_prompt(
            inbound.text, conversation.industry, intent, history
        )
        return turn

    def _remember_sender(
        self, conversation: schemas.Conversation, inbound: InboundMessage
    ) -> None:
        custom = conversation.context.custom_data
        updates = {}
        for key, value in (
            ("sender_address", inbound.sender_address),
            ("sender_name", inbound.sender_name),
        ):
            if value and custom.get(key) != value:
                updates[key] = value
        if updates:
            self.store.update_context(conversation.id, {"custom_data": updates})

    # ------------------------------------------------------------------
    # Blocking turns

    def process_turn(
        self,
        inbound: InboundMessage,
        *,
        handoff_text: str,
        tenant: TenantConfig | None = None,
        format_reply: Callable[[str], str] | None = None,
    ) -> TurnResult:
        """Run one complete turn and return the text to send back.

        ``format_reply`` shapes the generated text before it is stored, so the
        stored AI message matches what the customer receives.
        """

        turn = self.prepare_turn(inbound, handoff_text=handoff_text, tenant=tenant)
        if not turn.needs_generation:
            return turn.result()
        try:
            text = self._generator.generate_response(turn.prompt, channel=turn.channel)
        except GenerationError as exc:
            logger.warning(
                "Generation failed for conversation %s: %s", turn.conversation_id, exc
            )
            return self._record_failure(turn, format_reply)
        if format_reply is not None:
            text = format_reply(text)
        message_id = self._append_ai(turn, text)
        if message_id is None:
            return turn.result(text="", should_respond=False, escalated=True)
        self.store.reset_generation_failures(turn.conversation_id)
        return turn.result(text=text, message_id=message_id)

    # ------------------------------------------------------------------
    # Streaming turns

    async def stream_reply(self, turn: PreparedTurn) -> AsyncIterator[dict[str, Any]]:
        """Yield ``{"content", "done"}`` events for a prepared turn.

        Closing the iterator early (client disconnect) closes the generation
        stream and stores what was already sent, marked as partial. Store
        calls run in the threadpool so a slow database never blocks other
        streams.
        """

        if not turn.needs_generation:
            yield {"content": turn.reply, "done": True}
            return

        parts: list[str] = []
        finished = False
        failed = False
        stream = self._generator.generate_streaming_response(
            turn.prompt, channel=turn.channel
        )
        try:
            async for chunk in stream:
                parts.append(chunk)
                yield {"content": chunk, "done": False}
            finished = True
        except GenerationError as exc:
            logger.warning(
                "Streaming failed for conversation %s: %s", turn.conversation_id, exc
            )
            failed = True
        finally:
            await stream.aclose()
            if not finished and not failed and parts:
                logger.info(
                    "Client left conversation %s mid-stream; storing partial reply",
                    turn.conversation_id,
                )
                await run_in_threadpool(
                    self._append_ai, turn, "".join(parts), {"partial": True}
                )

        text = "".join(parts)
        if finished and text.strip():
            message_id = await run_in_threadpool(self._append_ai, turn, text)
            if message_id is not None:
                await run_in_threadpool(
                    self.store.reset_generation_failures, turn.conversation_id
                )
            yield {"content": "", "done": True}
            return

        # Failed mid-stream or the backend produced nothing.
        if text.strip():
            await run_in_threadpool(
                self._append_ai, turn, text, {"partial": True, "error": GENERATION_FAILED}
            )
            await run_in_threadpool(self._count_failure, turn)
            yield {"content": "", "done": True, "error": GENERATION_FAILED}
            return
        result = await run_in_threadpool(self._record_failure, turn)
        yield {"content": result.text, "done": True, "error": GENERATION_FAILED}

    # ------------------------------------------------------------------
    # Failure handling

    def _append_ai(
        self,
        turn: PreparedTurn,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        intent = turn.intent
        try:
            return self.store.add_message(
                turn.conversation_id,
                Sender.AI,
                text,
                intent=intent.intent if intent else None,
                confidence=intent.confidence if intent else None,
                metadata=metadata,
            )
        except InvalidStateError as exc:
            # An agent took over while the reply was being generated.
            logger.info("Dropping AI reply for %s: %s", turn.conversation_id, exc)
            return None

    def _count_failure(self, turn: PreparedTurn) -> bool:
        failures = self.store.record_generation_failure(turn.conversation_id)
        if failures < self._settings.max_generation_failures:
            return False
        logger.warning(
            "Conversation %s reached %d generation failures; escalating",
            turn.conversation_id,
            failures,
        )
        return self.store.escalate(turn.conversation_id, reason="generation_failures")

    def _record_failure(
        self,
        turn: PreparedTurn,
        format_reply: Callable[[str], str] | None = None,
    ) -> TurnResult:
        text = format_reply(APOLOGY_TEXT) if format_reply else APOLOGY_TEXT
        message_id = self._append_ai(turn, text, {"error": GENERATION_FAILED})
        escalated = self._count_failure(turn)
        return turn.result(
            text=text,
            message_id=message_id,
            failed=True,
            escalated=escalated,
            should_respond=message_id is not None,
        )

    # ------------------------------------------------------------------
    # Agent actions

    def agent_reply(self, conversation_id: str, agent_id: str, content: str) -> str:
        conversation = self.store.get_conversation(conversation_id)
        message_id = self.store.add_message(
            conversation_id, Sender.AGENT, content, metadata={"agent_id": agent_id}
        )
        if conversation.assigned_agent != agent_id:
            self.store.assign_agent(conversation_id, agent_id)
        return message_id
