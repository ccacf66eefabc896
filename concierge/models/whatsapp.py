"""Tables owned by the WhatsApp bot: conversations, messages and configuration."""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")
_INBOUND_WITH_PROVIDER_ID = "direction = 'inbound' AND provider_message_id IS NOT NULL"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class WhatsAppConversation(Base):
    """One conversation per customer phone.

    The partial unique index allows any number of closed conversations but at
    most one ``active`` row per (tenant_id, customer_phone).
    """

    __tablename__ = "whatsapp_conversations"
    __table_args__ = (
        Index(
            "ux_whatsapp_conversations_active_phone",
            "tenant_id",
            "customer_phone",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(length=32), nullable=False)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True
    )
    customer_name: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(length=16),
        nullable=False,
        default="active",
        server_default=text("'active'"),
    )
    bot_active: Mapped[bool] = mapped_column(
        Boolean(), nullable=False, default=True, server_default=text("true")
    )
    last_message_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class WhatsAppMessage(Base):
    """Append-only message log, used as audit trail and model memory."""

    __tablename__ = "whatsapp_messages"
    __table_args__ = (
        Index("ix_whatsapp_messages_conversation", "conversation_id", "created_at"),
        Index(
            "ux_whatsapp_messages_inbound_provider_id",
            "tenant_id",
            "provider_message_id",
            unique=True,
            postgresql_where=text(_INBOUND_WITH_PROVIDER_ID),
            sqlite_where=text(_INBOUND_WITH_PROVIDER_ID),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("whatsapp_conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    direction: Mapped[str] = mapped_column(String(length=16), nullable=False)
    body: Mapped[str] = mapped_column(Text(), nullable=False, default="")
    kind: Mapped[str] = mapped_column(
        String(length=16), nullable=False, default="text", server_default=text("'text'")
    )
    media_url: Mapped[str | None] = mapped_column(Text(), nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(length=255), nullable=True)
    delivery_status: Mapped[str] = mapped_column(String(length=16), nullable=False)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", _JSON, nullable=False, default=dict
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class AIAgentConfig(Base):
    """Per-tenant agent configuration edited by workshop admins."""

    __tablename__ = "ai_agent_config"

    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    provider: Mapped[str] = mapped_column(String(length=32), nullable=False, default="openai")
    model: Mapped[str] = mapped_column(String(length=128), nullable=False)
    temperature: Mapped[float] = mapped_column(Float(), nullable=False, default=0.7)
    max_tokens: Mapped[int] = mapped_column(Integer(), nullable=False, default=1024)
    language: Mapped[str] = mapped_column(String(length=8), nullable=False, default="es")
    personality: Mapped[str | None] = mapped_column(Text(), nullable=True)
    custom_instructions: Mapped[str | None] = mapped_column(Text(), nullable=True)
    business_hours_only: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    auto_schedule_appointments: Mapped[bool] = mapped_column(
        Boolean(), nullable=False, default=False
    )
    auto_create_orders: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=False)
    require_human_approval: Mapped[bool] = mapped_column(
        Boolean(), nullable=False, default=False
    )
    timezone: Mapped[str] = mapped_column(String(length=64), nullable=False, default="UTC")
    business_hours: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False, default=dict)
    services: Mapped[list[Any]] = mapped_column(_JSON, nullable=False, default=list)
    policies: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False, default=dict)
    faqs: Mapped[list[Any]] = mapped_column(_JSON, nullable=False, default=list)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class WhatsAppChannelConfig(Base):
    """Outbound transport selection and webhook secrets for a tenant."""

    __tablename__ = "whatsapp_channel_config"

    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    provider: Mapped[str] = mapped_column(String(length=16), nullable=False, default="meta")
    is_active: Mapped[bool] = mapped_column(Boolean(), nullable=False, default=True)
    phone_number_id: Mapped[str | None] = mapped_column(String(length=64), nullable=True)
    access_token: Mapped[str | None] = mapped_column(Text(), nullable=True)
    session_name: Mapped[str | None] = mapped_column(String(length=128), nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(Text(), nullable=True)
    verify_token: Mapped[str | None] = mapped_column(String(length=255), nullable=True)


__all__ = [
    "AIAgentConfig",
    "WhatsAppChannelConfig",
    "WhatsAppConversation",
    "WhatsAppMessage",
]
