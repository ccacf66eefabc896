"""SQLAlchemy declarative base and the tables used by the WhatsApp bot.

The repositories talk to Postgres through psycopg; these models mirror the
DDL kept in ``concierge/migrations`` so constraints (notably the
get-or-create uniqueness guarantees) are declared next to the schema and can
be exercised against SQLite in tests.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export models for convenience so callers can import them via
# ``from concierge.models import Customer`` instead of touching submodules.
from .whatsapp import (  # noqa: E402
    AIAgentConfig,
    WhatsAppChannelConfig,
    WhatsAppConversation,
    WhatsAppMessage,
)
from .workshop import Appointment, Customer, Organization, Vehicle, WorkOrder  # noqa: E402

__all__ = [
    "AIAgentConfig",
    "Appointment",
    "Base",
    "Customer",
    "Organization",
    "Vehicle",
    "WhatsAppChannelConfig",
    "WhatsAppConversation",
    "WhatsAppMessage",
    "WorkOrder",
]
