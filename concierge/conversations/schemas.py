"""Pydantic schemas for WhatsApp conversations and their message log."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

Direction = Literal["inbound", "outbound"]
MessageKind = Literal["text", "image", "document", "audio", "video"]
DeliveryStatus = Literal["received", "sent", "failed"]


class Conversation(BaseModel):
    id: UUID
    tenant_id: UUID
    customer_phone: str
    customer_id: UUID | None = None
    customer_name: str | None = None
    status: Literal["active", "closed"] = "active"
    bot_active: bool = True
    last_message_at: datetime | None = None
    created_at: datetime | None = None


class MessageCreate(BaseModel):
    """Payload appended to a conversation's message log."""

    tenant_id: UUID
    direction: Direction
    body: str = ""
    kind: MessageKind = "text"
    media_url: str | None = None
    provider_message_id: str | None = None
    delivery_status: DeliveryStatus = "received"
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class Message(MessageCreate):
    id: UUID
    conversation_id: UUID
    created_at: datetime


class HistoryTurn(BaseModel):
    """One prior message as the model sees it."""

    role: Literal["user", "assistant"]
    text: str
