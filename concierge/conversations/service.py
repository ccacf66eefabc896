"""Message store gateway: conversation resolution and the message log."""

from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from ..adapters.customers import CustomerResolver
from ..errors import StoreError
from . import schemas
from .repository import ConversationRepository

logger = logging.getLogger(__name__)


class MessageStoreGateway:
    """Persists conversations and messages for the inbound pipeline."""

    def __init__(
        self,
        repository: ConversationRepository,
        customers: CustomerResolver,
    ) -> None:
        self._repository = repository
        self._customers = customers

    # ------------------------------------------------------------------
    # Conversations

    def resolve_or_create_conversation(
        self, tenant_id: UUID, phone: str, *, customer_name: Optional[str] = None
    ) -> schemas.Conversation:
        """Return the active conversation for ``phone``, creating it on first contact.

        Creating a conversation first get-or-creates the customer for the
        normalized phone, so a new phone yields exactly one customer and one
        active conversation.
        """

        normalized = self._customers.normalize(phone)
        if not normalized:
            raise StoreError("Cannot resolve a conversation without a phone number")
        conversation = self._repository.find_active(tenant_id, normalized)
        if conversation is not None:
            return conversation

        customer = self._customers.get_or_create(tenant_id, customer_name, normalized)
        conversation = self._repository.create_active(
            tenant_id,
            normalized,
            customer_id=customer.id,
            customer_name=customer.name,
        )
        logger.info(
            "Opened conversation for new contact",
            extra={
                "event": "conversation_created",
                "tenant_id": str(tenant_id),
                "conversation_id": str(conversation.id),
            },
        )
        return conversation

    def get_conversation(self, conversation_id: UUID) -> schemas.Conversation:
        conversation = self._repository.get_conversation(conversation_id)
        if conversation is None:
            raise StoreError(f"Conversation {conversation_id} not found")
        return conversation

    def set_bot_active(self, conversation_id: UUID, active: bool) -> None:
        self._repository.set_bot_active(conversation_id, active)

    # ------------------------------------------------------------------
    # Messages

    def find_inbound(
        self, tenant_id: UUID, provider_message_id: Optional[str]
    ) -> Optional[schemas.Message]:
        """The recorded inbound message carrying ``provider_message_id``, if any."""

        if not provider_message_id:
            return None
        return self._repository.find_inbound_message(tenant_id, provider_message_id)

    def append_message(self, conversation_id: UUID, message: schemas.MessageCreate) -> UUID:
        """Append to the log; inbound provider ids are recorded once per tenant.

        Raises :class:`~concierge.errors.DuplicateMessageError` on a repeat.
        """

        stored = self._repository.add_message(conversation_id, message)
        return stored.id

    def recent_history(self, conversation_id: UUID, limit: int) -> List[schemas.HistoryTurn]:
        """The latest ``limit`` usable messages, oldest first, as model turns."""

        if limit <= 0:
            return []
        messages = self._repository.recent_messages(conversation_id, limit)
        return [
            schemas.HistoryTurn(
                role="user" if message.direction == "inbound" else "assistant",
                text=message.body,
            )
            for message in messages
        ]


__all__ = ["MessageStoreGateway"]
