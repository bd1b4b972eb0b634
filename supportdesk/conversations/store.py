"""Conversation store owning lifecycle transitions and message ordering.

Every mutation goes through :class:`ConversationStore`. Mutations on one
conversation are serialized by a lock keyed on its id, so two requests racing
on the same conversation append in a well-defined order, while requests for
different conversations never wait on each other. Finding or creating the
active conversation for a customer is serialized on ``(customer_id, channel)``
so the one-active-conversation rule holds under concurrency.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from ..errors import InvalidStateError, NotFoundError
from . import schemas
from .dispatch import EscalationQueue, InMemoryEscalationQueue
from .models import (
    ALLOWED_TRANSITIONS,
    Channel,
    ConversationStatus,
    EscalationEvent,
    Industry,
    Sender,
)
from .repository import ConversationRepository, InMemoryConversationRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KeyedLocks:
    """Reference-counted registry of locks, one per key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list[Any]] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        lock: threading.Lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ConversationStore:
    """Single source of truth for conversations and their messages."""

    def __init__(
        self,
        repository: ConversationRepository | None = None,
        *,
        escalation_queue: EscalationQueue | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository or InMemoryConversationRepository()
        self._queue = escalation_queue or InMemoryEscalationQueue()
        self._clock = clock
        self._locks = KeyedLocks()

    @property
    def escalation_queue(self) -> EscalationQueue:
        return self._queue

    # ------------------------------------------------------------------
    # Creation

    def create_conversation(
        self,
        customer_id: str,
        channel: Channel | str,
        industry: Industry | str,
        company_id: str | None = None,
    ) -> str:
        channel = Channel(channel)
        with self._locks.hold(("customer", customer_id, channel)):
            return self._create(customer_id, channel, Industry.parse(industry), company_id)

    def find_active(self, customer_id: str, channel: Channel | str) -> str | None:
        summary = self._repository.find_active(customer_id, Channel(channel))
        return summary.id if summary else None

    def find_or_create_active(
        self,
        customer_id: str,
        channel: Channel | str,
        industry: Industry | str,
        company_id: str | None = None,
    ) -> str:
        """Return the open conversation for the pair, creating one if needed.

        An escalated conversation stays open so follow-up customer messages
        reach the assigned agent instead of restarting automated replies.
        """

        channel = Channel(channel)
        with self._locks.hold(("customer", customer_id, channel)):
            existing = self._repository.find_active(customer_id, channel)
            if existing is not None:
                return existing.id
            return self._create(customer_id, channel, Industry.parse(industry), company_id)

    def _create(
        self,
        customer_id: str,
        channel: Channel,
        industry: Industry,
        company_id: str | None,
    ) -> str:
        now = self._clock()
        conversation = schemas.Conversation(
            id=uuid4().hex,
            customer_id=customer_id,
            channel=channel,
            industry=industry,
            company_id=company_id,
            status=ConversationStatus.ACTIVE,
            started_at=now,
            last_message_at=now,
            context=schemas.ConversationContext(industry=industry),
        )
        # A freshly created conversation supersedes any leftover open one
        # for the same pair, keeping at most one open at a time.
        previous = self._repository.find_active(customer_id, channel)
        if previous is not None:
            with self._locks.hold(previous.id):
                self._repository.update_conversation(
                    previous.id, status=ConversationStatus.RESOLVED, ended_at=now
                )
            logger.info(
                "Resolved superseded conversation %s for %s/%s",
                previous.id,
                customer_id,
                channel.value,
            )
        self._repository.insert_conversation(conversation)
        logger.info(
            "Created %s conversation %s for customer %s",
            channel.value,
            conversation.id,
            customer_id,
        )
        return conversation.id

    # ------------------------------------------------------------------
    # Messages

    def add_message(
        self,
        conversation_id: str,
        sender: Sender | str,
        content: str,
        intent: str | None = None,
        confidence: float | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> str:
        sender = Sender(sender)
        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id, include_messages=False)
            if conversation.status == ConversationStatus.RESOLVED:
                raise InvalidStateError(
                    f"Conversation {conversation_id} is resolved"
                )
            if (
                sender == Sender.AI
                and conversation.status == ConversationStatus.ESCALATED
            ):
                raise InvalidStateError(
                    f"Conversation {conversation_id} is escalated; AI replies are disabled"
                )
            timestamp = self._clock()
            last = self._repository.last_message_at(conversation_id)
            if last is not None and timestamp < last:
                timestamp = last
            message = schemas.Message(
                id=uuid4().hex,
                conversation_id=conversation_id,
                sender=sender,
                content=content,
                intent=intent,
                confidence=confidence,
                timestamp=timestamp,
                metadata=dict(metadata or {}),
            )
            self._repository.append_message(message)
            self._repository.update_conversation(
                conversation_id, last_message_at=timestamp
            )
        return message.id

    def get_history(
        self, conversation_id: str, limit: int | None = None
    ) -> list[schemas.Message]:
        """Return messages in chronological order (oldest first).

        ``limit`` keeps only the most recent ``limit`` messages.
        """

        self._require(conversation_id, include_messages=False)
        return self._repository.list_messages(conversation_id, limit=limit)

    # ------------------------------------------------------------------
    # Queries

    def get_conversation(self, conversation_id: str) -> schemas.Conversation:
        return self._require(conversation_id)

    def list_conversations(
        self,
        *,
        status: ConversationStatus | str | None = None,
        channel: Channel | str | None = None,
        company_id: str | None = None,
        limit: int = 50,
    ) -> list[schemas.ConversationSummary]:
        return self._repository.list_conversations(
            status=ConversationStatus(status) if status else None,
            channel=Channel(channel) if channel else None,
            company_id=company_id,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Context and lifecycle

    def update_context(self, conversation_id: str, partial: Mapping[str, Any]) -> None:
        """Shallow-merge ``partial`` into the conversation context."""

        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id, include_messages=False)
            data = conversation.context.model_dump()
            for key, value in partial.items():
                if key == "custom_data" and isinstance(value, Mapping):
                    merged = dict(data.get("custom_data") or {})
                    merged.update(value)
                    data["custom_data"] = merged
                else:
                    data[key] = value
            context = schemas.ConversationContext(**data)
            self._repository.update_conversation(conversation_id, context=context)

    def escalate(
        self,
        conversation_id: str,
        reason: str | None = None,
        agent_id: str | None = None,
    ) -> bool:
        """Move the conversation to ``escalated``.

        Returns ``True`` when the transition happened and ``False`` when the
        conversation was already escalated. Exactly one escalation event is
        published per transition.
        """

        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id, include_messages=False)
            if conversation.status == ConversationStatus.ESCALATED:
                return False
            self._check_transition(conversation, ConversationStatus.ESCALATED)
            fields: dict[str, Any] = {"status": ConversationStatus.ESCALATED}
            if agent_id:
                fields["assigned_agent"] = agent_id
            self._repository.update_conversation(conversation_id, **fields)
            event = EscalationEvent(
                id=uuid4().hex,
                conversation_id=conversation_id,
                reason=reason,
                created_at=self._clock(),
                company_id=conversation.company_id,
            )
        self._queue.publish(event)
        logger.info("Conversation %s escalated (reason=%s)", conversation_id, reason)
        return True

    def resolve(self, conversation_id: str) -> None:
        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id, include_messages=False)
            if conversation.status == ConversationStatus.RESOLVED:
                return
            self._check_transition(conversation, ConversationStatus.RESOLVED)
            self._repository.update_conversation(
                conversation_id,
                status=ConversationStatus.RESOLVED,
                ended_at=self._clock(),
            )
        self._queue.acknowledge(conversation_id)
        logger.info("Conversation %s resolved", conversation_id)

    def assign_agent(self, conversation_id: str, agent_id: str) -> None:
        with self._locks.hold(conversation_id):
            self._require(conversation_id, include_messages=False)
            self._repository.update_conversation(
                conversation_id, assigned_agent=agent_id
            )

    def record_generation_failure(self, conversation_id: str) -> int:
        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id, include_messages=False)
            failures = conversation.generation_failures + 1
            self._repository.update_conversation(
                conversation_id, generation_failures=failures
            )
        return failures

    def reset_generation_failures(self, conversation_id: str) -> None:
        with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id, include_messages=False)
            if conversation.generation_failures:
                self._repository.update_conversation(
                    conversation_id, generation_failures=0
                )

    # ------------------------------------------------------------------
    # Helpers

    def _require(
        self, conversation_id: str, *, include_messages: bool = True
    ) -> schemas.Conversation:
        conversation = self._repository.get_conversation(
            conversation_id, include_messages=include_messages
        )
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    @staticmethod
    def _check_transition(
        conversation: schemas.Conversation, target: ConversationStatus
    ) -> None:
        if target not in ALLOWED_TRANSITIONS[conversation.status]:
            raise InvalidStateError(
                f"Cannot move conversation {conversation.id} from "
                f"{conversation.status.value} to {target.value}"
            )
