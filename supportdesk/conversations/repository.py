"""Persistence backends for conversations and their messages."""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..migrations import apply_migrations
from . import schemas
from .models import Channel, ConversationStatus

_UPDATABLE_FIELDS = {
    "status",
    "ended_at",
    "last_message_at",
    "assigned_agent",
    "generation_failures",
    "context",
}


class ConversationRepository(Protocol):
    """Abstraction for persisting conversation artefacts.

    Implementations only store and load records. Lifecycle rules, ordering
    and locking are enforced by :class:`~supportdesk.conversations.store.ConversationStore`.
    """

    def insert_conversation(self, conversation: schemas.Conversation) -> None: ...

    def get_conversation(
        self, conversation_id: str, *, include_messages: bool = True
    ) -> Optional[schemas.Conversation]: ...

    def find_active(
        self, customer_id: str, channel: Channel
    ) -> Optional[schemas.ConversationSummary]:
        """Return the open (active or escalated) conversation for the pair."""
        ...

    def list_conversations(
        self,
        *,
        status: Optional[ConversationStatus] = None,
        channel: Optional[Channel] = None,
        company_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[schemas.ConversationSummary]: ...

    def append_message(self, message: schemas.Message) -> None: ...

    def list_messages(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[schemas.Message]: ...

    def last_message_at(self, conversation_id: str) -> Optional[datetime]: ...

    def update_conversation(self, conversation_id: str, **fields: Any) -> None: ...


class InMemoryConversationRepository:
    """Dictionary backed repository used for development and tests."""

    def __init__(self) -> None:
        self._conversations: Dict[str, schemas.Conversation] = {}
        self._guard = threading.Lock()

    def insert_conversation(self, conversation: schemas.Conversation) -> None:
        with self._guard:
            self._conversations[conversation.id] = conversation.model_copy(deep=True)

    def get_conversation(
        self, conversation_id: str, *, include_messages: bool = True
    ) -> Optional[schemas.Conversation]:
        with self._guard:
            stored = self._conversations.get(conversation_id)
            if stored is None:
                return None
            clone = stored.model_copy(deep=True)
        if not include_messages:
            clone.messages = []
        return clone

    def find_active(
        self, customer_id: str, channel: Channel
    ) -> Optional[schemas.ConversationSummary]:
        with self._guard:
            for conversation in self._conversations.values():
                if (
                    conversation.customer_id == customer_id
                    and conversation.channel == channel
                    and conversation.status != ConversationStatus.RESOLVED
                ):
                    return _summary(conversation)
        return None

    def list_conversations(
        self,
        *,
        status: Optional[ConversationStatus] = None,
        channel: Optional[Channel] = None,
        company_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[schemas.ConversationSummary]:
        with self._guard:
            items = [
                _summary(c)
                for c in self._conversations.values()
                if (status is None or c.status == status)
                and (channel is None or c.channel == channel)
                and (company_id is None or c.company_id == company_id)
            ]
        items.sort(key=lambda c: c.last_message_at, reverse=True)
        return items[:limit]

    def append_message(self, message: schemas.Message) -> None:
        with self._guard:
            conversation = self._conversations[message.conversation_id]
            conversation.messages.append(message.model_copy(deep=True))

    def list_messages(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[schemas.Message]:
        with self._guard:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return []
            messages = [m.model_copy(deep=True) for m in conversation.messages]
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def last_message_at(self, conversation_id: str) -> Optional[datetime]:
        with self._guard:
            conversation = self._conversations.get(conversation_id)
            if conversation is None or not conversation.messages:
                return None
            return conversation.messages[-1].timestamp

    def update_conversation(self, conversation_id: str, **fields: Any) -> None:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        with self._guard:
            conversation = self._conversations[conversation_id]
            for key, value in fields.items():
                if key == "context" and isinstance(value, schemas.ConversationContext):
                    value = value.model_copy(deep=True)
                setattr(conversation, key, value)


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`.

    A short-lived connection is opened per call so the repository can be
    shared across worker threads; each call commits on success.
    """

    def __init__(self, conninfo: str) -> None:
        self._conninfo = conninfo

    # Utility -----------------------------------------------------------------
    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self._conninfo, row_factory=dict_row)

    def ensure_schema(self) -> list[str]:
        """Apply pending migrations and return the ids applied."""
        with psycopg.connect(self._conninfo) as conn:
            return apply_migrations(conn)

    # Conversation operations --------------------------------------------------
    def insert_conversation(self, conversation: schemas.Conversation) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversations
                    (id, customer_id, channel, industry, company_id, status,
                     started_at, ended_at, last_message_at, assigned_agent,
                     generation_failures, context)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    conversation.id,
                    conversation.customer_id,
                    conversation.channel.value,
                    conversation.industry.value,
                    conversation.company_id,
                    conversation.status.value,
                    conversation.started_at,
                    conversation.ended_at,
                    conversation.last_message_at,
                    conversation.assigned_agent,
                    conversation.generation_failures,
                    Jsonb(conversation.context.model_dump(mode="json")),
                ),
            )

    def get_conversation(
        self, conversation_id: str, *, include_messages: bool = True
    ) -> Optional[schemas.Conversation]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = %s", (conversation_id,)
            ).fetchone()
            if not row:
                return None
            conversation = schemas.Conversation(**row)
            if include_messages:
                rows = conn.execute(
                    """
                    SELECT id, conversation_id, sender, content, intent, confidence,
                           "timestamp", metadata
                    FROM conversation_messages
                    WHERE conversation_id = %s
                    ORDER BY seq ASC
                    """,
                    (conversation_id,),
                ).fetchall()
                conversation.messages = [schemas.Message(**r) for r in rows]
        return conversation

    def find_active(
        self, customer_id: str, channel: Channel
    ) -> Optional[schemas.ConversationSummary]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM conversations
                WHERE customer_id = %s AND channel = %s AND status <> 'resolved'
                ORDER BY started_at DESC
                LIMIT 1
                """,
                (customer_id, channel.value),
            ).fetchone()
        if not row:
            return None
        return schemas.ConversationSummary(**row)

    def list_conversations(
        self,
        *,
        status: Optional[ConversationStatus] = None,
        channel: Optional[Channel] = None,
        company_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[schemas.ConversationSummary]:
        clauses: List[str] = []
        params: List[Any] = []
        if status is not None:
            clauses.append("status = %s")
            params.append(status.value)
        if channel is not None:
            clauses.append("channel = %s")
            params.append(channel.value)
        if company_id is not None:
            clauses.append("company_id = %s")
            params.append(company_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM conversations {where} "
                "ORDER BY last_message_at DESC LIMIT %s",
                params,
            ).fetchall()
        return [schemas.ConversationSummary(**row) for row in rows]

    def append_message(self, message: schemas.Message) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversation_messages
                    (id, conversation_id, sender, content, intent, confidence,
                     "timestamp", metadata)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    message.id,
                    message.conversation_id,
                    message.sender.value,
                    message.content,
                    message.intent,
                    message.confidence,
                    message.timestamp,
                    Jsonb(message.metadata),
                ),
            )

    def list_messages(
        self, conversation_id: str, limit: Optional[int] = None
    ) -> List[schemas.Message]:
        query = """
            SELECT id, conversation_id, sender, content, intent, confidence,
                   "timestamp", metadata, seq
            FROM conversation_messages
            WHERE conversation_id = %s
            ORDER BY seq DESC
        """
        params: List[Any] = [conversation_id]
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        rows.reverse()
        for row in rows:
            row.pop("seq", None)
        return [schemas.Message(**row) for row in rows]

    def last_message_at(self, conversation_id: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT "timestamp" FROM conversation_messages
                WHERE conversation_id = %s
                ORDER BY seq DESC
                LIMIT 1
                """,
                (conversation_id,),
            ).fetchone()
        return row["timestamp"] if row else None

    def update_conversation(self, conversation_id: str, **fields: Any) -> None:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        if not fields:
            return
        assignments: List[str] = []
        values: List[Any] = []
        for key, value in fields.items():
            assignments.append(f"{key} = %s")
            if key == "context":
                value = Jsonb(value.model_dump(mode="json"))
            elif key == "status":
                value = ConversationStatus(value).value
            values.append(value)
        values.append(conversation_id)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE conversations SET {', '.join(assignments)} WHERE id = %s",
                values,
            )


# Helpers ------------------------------------------------------------------
def _summary(conversation: schemas.Conversation) -> schemas.ConversationSummary:
    data = conversation.model_dump(exclude={"messages"})
    return schemas.ConversationSummary(**data)


def build_repository(database_url: Optional[str]) -> ConversationRepository:
    """Return the PostgreSQL repository when ``database_url`` is set."""

    if database_url:
        return PostgresConversationRepository(database_url)
    return InMemoryConversationRepository()
