"""Base abstractions for WhatsApp provider webhook adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from ..conversations.models import NormalizedMessage


class ChannelAdapter(ABC):
    """Abstract base class encapsulating provider-specific webhook parsing."""

    #: Lowercase channel identifier used in routes.
    channel_name: str

    #: Whether the webhook body is form encoded instead of JSON.
    form_encoded: bool = False

    def __init__(self, *, tenant_id: UUID) -> None:
        self.tenant_id = tenant_id

    @abstractmethod
    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> Iterable[NormalizedMessage]:
        """Convert a webhook payload into normalized inbound messages.

        Delivery receipts, status callbacks and echoes of our own outbound
        messages yield nothing.
        """

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
        *,
        url: str | None = None,
    ) -> bool:
        """Validate authenticity of the webhook payload.

        Adapters can override this to implement signature checks. The default
        implementation returns ``True``.
        """

        return True
