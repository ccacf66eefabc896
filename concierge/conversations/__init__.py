"""Conversation persistence for the WhatsApp bot."""

from . import schemas
from .models import NormalizedMessage
from .repository import (
    ConversationRepository,
    InMemoryConversationRepository,
    PostgresConversationRepository,
)
from .service import MessageStoreGateway

__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "MessageStoreGateway",
    "NormalizedMessage",
    "PostgresConversationRepository",
    "schemas",
]
