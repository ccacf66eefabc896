"""Outbound dispatcher: send through the tenant's transport and log the result."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import requests

from ..agents.context import ContextBuilder
from ..agents.schemas import WhatsAppChannelConfig
from ..conversations.schemas import MessageCreate
from ..conversations.service import MessageStoreGateway
from ..core.settings import BotSettings, get_bot_settings
from ..errors import ConfigurationError, DispatchError
from .transports import Transport, build_transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[WhatsAppChannelConfig], Transport]


@dataclass
class DeliveryReceipt:
    success: bool
    message_id: UUID
    provider: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


class OutboundDispatcher:
    """Sends replies and always appends the outbound message to the log.

    A failed send is recorded with ``delivery_status='failed'`` so the stored
    conversation matches what the customer actually received.
    """

    def __init__(
        self,
        contexts: ContextBuilder,
        messages: MessageStoreGateway,
        *,
        transport_factory: Optional[TransportFactory] = None,
        session: requests.Session | None = None,
        settings: BotSettings | None = None,
    ) -> None:
        self._contexts = contexts
        self._messages = messages
        self._settings = settings or get_bot_settings()
        self._session = session
        self._transport_factory = transport_factory or self._default_factory

    def _default_factory(self, channel: WhatsAppChannelConfig) -> Transport:
        return build_transport(channel, session=self._session, settings=self._settings)

    def _transport_for(self, tenant_id: UUID) -> Transport:
        channel = self._contexts.load_channel_config(tenant_id)
        if channel is None or not channel.is_active:
            raise ConfigurationError(f"No active WhatsApp channel for tenant {tenant_id}")
        return self._transport_factory(channel)

    def send(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        to_phone: str,
        text: str,
        media_url: Optional[str] = None,
    ) -> DeliveryReceipt:
        provider: Optional[str] = None
        provider_message_id: Optional[str] = None
        error: Optional[str] = None
        error_kind: Optional[str] = None
        try:
            transport = self._transport_for(tenant_id)
            provider = transport.name
            provider_message_id = transport.send(to_phone, text, media_url)
        except (ConfigurationError, DispatchError) as exc:
            error, error_kind = str(exc), exc.kind
            logger.error(
                "Outbound message not delivered: %s",
                exc,
                extra={
                    "event": "dispatch_failed",
                    "tenant_id": str(tenant_id),
                    "conversation_id": str(conversation_id),
                    "error_kind": exc.kind,
                },
            )

        metadata = {"provider": provider} if provider else {}
        if error:
            metadata["error"] = error
        message_id = self._messages.append_message(
            conversation_id,
            MessageCreate(
                tenant_id=tenant_id,
                direction="outbound",
                body=text,
                kind="image" if media_url else "text",
                media_url=media_url,
                provider_message_id=provider_message_id,
                delivery_status="failed" if error else "sent",
                metadata=metadata,
            ),
        )
        return DeliveryReceipt(
            success=error is None,
            message_id=message_id,
            provider=provider,
            provider_message_id=provider_message_id,
            error=error,
            error_kind=error_kind,
        )


__all__ = ["DeliveryReceipt", "OutboundDispatcher"]
