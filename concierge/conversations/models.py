"""Transient records flowing through the inbound pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

MESSAGE_KINDS = ("text", "image", "document", "audio", "video")


@dataclass
class NormalizedMessage:
    """Uniform representation of an inbound WhatsApp message.

    Every channel adapter translates its provider payload into this shape
    before the message enters the pipeline.
    """

    tenant_id: UUID
    from_phone: str
    to_phone: str | None
    body: str
    kind: str = "text"
    media_url: str | None = None
    provider_message_id: str | None = None
    provider_metadata: dict[str, Any] = field(default_factory=dict)
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sender_name: str | None = None
    direction: str = "inbound"
