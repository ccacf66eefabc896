"""Database repository for WhatsApp conversations and messages."""
from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..core.db import store_errors
from ..errors import DuplicateMessageError, StoreError
from . import schemas


class ConversationRepository(Protocol):
    """Abstraction for persisting conversations and their message log."""

    def find_active(self, tenant_id: UUID, phone: str) -> Optional[schemas.Conversation]: ...

    def create_active(
        self,
        tenant_id: UUID,
        phone: str,
        *,
        customer_id: Optional[UUID],
        customer_name: Optional[str],
    ) -> schemas.Conversation: ...

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]: ...

    def find_inbound_message(
        self, tenant_id: UUID, provider_message_id: str
    ) -> Optional[schemas.Message]: ...

    def add_message(
        self, conversation_id: UUID, payload: schemas.MessageCreate
    ) -> schemas.Message: ...

    def recent_messages(self, conversation_id: UUID, limit: int) -> List[schemas.Message]: ...

    def set_bot_active(self, conversation_id: UUID, active: bool) -> None: ...


_CONVERSATION_COLUMNS = (
    "id, tenant_id, customer_phone, customer_id, customer_name, status, "
    "bot_active, last_message_at, created_at"
)
_MESSAGE_COLUMNS = (
    "id, conversation_id, tenant_id, direction, body, kind, media_url, "
    "provider_message_id, delivery_status, metadata, created_at"
)


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # Conversation operations --------------------------------------------------
    def find_active(self, tenant_id: UUID, phone: str) -> Optional[schemas.Conversation]:
        with store_errors("find active conversation"), self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_CONVERSATION_COLUMNS} FROM whatsapp_conversations
                WHERE tenant_id = %s AND customer_phone = %s AND status = 'active'
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (tenant_id, phone),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    def create_active(
        self,
        tenant_id: UUID,
        phone: str,
        *,
        customer_id: Optional[UUID],
        customer_name: Optional[str],
    ) -> schemas.Conversation:
        # Concurrent first messages converge on the row guarded by the partial
        # unique index instead of inserting a second active conversation.
        with store_errors("create conversation"), self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO whatsapp_conversations
                    (tenant_id, customer_phone, customer_id, customer_name, status, bot_active)
                VALUES (%s, %s, %s, %s, 'active', true)
                ON CONFLICT (tenant_id, customer_phone) WHERE status = 'active'
                DO UPDATE SET
                    customer_id = COALESCE(whatsapp_conversations.customer_id, EXCLUDED.customer_id),
                    customer_name = COALESCE(whatsapp_conversations.customer_name, EXCLUDED.customer_name)
                RETURNING {_CONVERSATION_COLUMNS}
                """,
                (tenant_id, phone, customer_id, customer_name),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row)

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        with store_errors("get conversation"), self._cursor() as cur:
            cur.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM whatsapp_conversations WHERE id = %s",
                (conversation_id,),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    def find_inbound_message(
        self, tenant_id: UUID, provider_message_id: str
    ) -> Optional[schemas.Message]:
        with store_errors("find inbound message"), self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM whatsapp_messages
                WHERE tenant_id = %s AND provider_message_id = %s AND direction = 'inbound'
                LIMIT 1
                """,
                (tenant_id, provider_message_id),
            )
            row = cur.fetchone()
        return schemas.Message(**row) if row else None

    def add_message(
        self, conversation_id: UUID, payload: schemas.MessageCreate
    ) -> schemas.Message:
        created_at = payload.created_at or datetime.now(timezone.utc)
        with store_errors("append message"), self._conn.transaction(), self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO whatsapp_messages
                    (conversation_id, tenant_id, direction, body, kind, media_url,
                     provider_message_id, delivery_status, metadata, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (tenant_id, provider_message_id)
                    WHERE direction = 'inbound' AND provider_message_id IS NOT NULL
                DO NOTHING
                RETURNING {_MESSAGE_COLUMNS}
                """,
                (
                    conversation_id,
                    payload.tenant_id,
                    payload.direction,
                    payload.body,
                    payload.kind,
                    payload.media_url,
                    payload.provider_message_id,
                    payload.delivery_status,
                    Jsonb(payload.metadata),
                    created_at,
                ),
            )
            row = cur.fetchone()
            if row is None:
                # A concurrent delivery of the same provider message won the insert.
                raise DuplicateMessageError(
                    f"Inbound message {payload.provider_message_id} already recorded",
                    conversation_id=conversation_id,
                )
            cur.execute(
                """
                UPDATE whatsapp_conversations
                SET last_message_at = GREATEST(COALESCE(last_message_at, %s), %s)
                WHERE id = %s
                """,
                (created_at, created_at, conversation_id),
            )
        return schemas.Message(**row)

    def recent_messages(self, conversation_id: UUID, limit: int) -> List[schemas.Message]:
        with store_errors("load history"), self._cursor() as cur:
            cur.execute(
                f"""
                SELECT * FROM (
                    SELECT {_MESSAGE_COLUMNS} FROM whatsapp_messages
                    WHERE conversation_id = %s
                      AND body <> ''
                      AND NOT (direction = 'outbound' AND delivery_status = 'failed')
                    ORDER BY created_at DESC
                    LIMIT %s
                ) AS recent
                ORDER BY created_at ASC
                """,
                (conversation_id, limit),
            )
            rows = cur.fetchall()
        return [schemas.Message(**row) for row in rows]

    def set_bot_active(self, conversation_id: UUID, active: bool) -> None:
        with store_errors("update bot flag"), self._cursor() as cur:
            cur.execute(
                "UPDATE whatsapp_conversations SET bot_active = %s WHERE id = %s",
                (active, conversation_id),
            )


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryConversationRepository:
    def __init__(self) -> None:
        self.conversations: Dict[UUID, schemas.Conversation] = {}
        self.messages: Dict[UUID, List[schemas.Message]] = {}
        self._lock = threading.Lock()

    def find_active(self, tenant_id: UUID, phone: str) -> Optional[schemas.Conversation]:
        matches = [
            convo
            for convo in self.conversations.values()
            if convo.tenant_id == tenant_id
            and convo.customer_phone == phone
            and convo.status == "active"
        ]
        matches.sort(key=lambda convo: convo.created_at, reverse=True)
        return matches[0] if matches else None

    def create_active(
        self,
        tenant_id: UUID,
        phone: str,
        *,
        customer_id: Optional[UUID],
        customer_name: Optional[str],
    ) -> schemas.Conversation:
        with self._lock:
            existing = self.find_active(tenant_id, phone)
            if existing is not None:
                return existing
            convo = schemas.Conversation(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                customer_phone=phone,
                customer_id=customer_id,
                customer_name=customer_name,
                created_at=datetime.now(timezone.utc),
            )
            self.conversations[convo.id] = convo
            self.messages[convo.id] = []
            return convo

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        return self.conversations.get(conversation_id)

    def find_inbound_message(
        self, tenant_id: UUID, provider_message_id: str
    ) -> Optional[schemas.Message]:
        for messages in self.messages.values():
            for message in messages:
                if (
                    message.tenant_id == tenant_id
                    and message.direction == "inbound"
                    and message.provider_message_id == provider_message_id
                ):
                    return message
        return None

    def add_message(
        self, conversation_id: UUID, payload: schemas.MessageCreate
    ) -> schemas.Message:
        convo = self.conversations.get(conversation_id)
        if convo is None:
            raise StoreError(f"Conversation {conversation_id} not found")
        data = payload.model_dump()
        data["created_at"] = payload.created_at or datetime.now(timezone.utc)
        message = schemas.Message(id=uuid.uuid4(), conversation_id=conversation_id, **data)
        with self._lock:
            seen = (
                self.find_inbound_message(payload.tenant_id, payload.provider_message_id)
                if payload.direction == "inbound" and payload.provider_message_id
                else None
            )
            if seen is not None:
                raise DuplicateMessageError(
                    f"Inbound message {payload.provider_message_id} already recorded",
                    conversation_id=seen.conversation_id,
                )
            self.messages[conversation_id].append(message)
        last = convo.last_message_at
        if last is None or message.created_at > last:
            self.conversations[conversation_id] = convo.model_copy(
                update={"last_message_at": message.created_at}
            )
        return message

    def recent_messages(self, conversation_id: UUID, limit: int) -> List[schemas.Message]:
        usable = [
            msg
            for msg in self.messages.get(conversation_id, [])
            if msg.body
            and not (msg.direction == "outbound" and msg.delivery_status == "failed")
        ]
        usable.sort(key=lambda msg: msg.created_at)
        return usable[-limit:] if limit > 0 else []

    def set_bot_active(self, conversation_id: UUID, active: bool) -> None:
        convo = self.conversations[conversation_id]
        self.conversations[conversation_id] = convo.model_copy(update={"bot_active": active})


__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "PostgresConversationRepository",
]
