"""Error taxonomy shared by the WhatsApp orchestrator.

Every error carries a stable ``kind`` string that ends up in structured log
entries and in :class:`~concierge.pipeline.WebhookResult` so operators can
tell configuration problems apart from transient failures.
"""

from __future__ import annotations

from uuid import UUID


class ConciergeError(RuntimeError):
    """Base class for all orchestrator errors."""

    kind = "internal"


class ConfigurationError(ConciergeError):
    """Tenant or credential configuration is missing or invalid."""

    kind = "configuration"


class TenantNotConfiguredError(ConfigurationError):
    """No agent configuration exists for the tenant."""

    kind = "not_configured"


class StoreError(ConciergeError):
    """Persistence failure in the external store."""

    kind = "store"


class ProviderError(ConciergeError):
    """The LLM provider call failed or timed out."""

    kind = "provider"

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class AdapterError(ConciergeError):
    """A domain operation requested by a tool call was rejected."""

    kind = "adapter"


class DispatchError(ConciergeError):
    """Sending a message through a WhatsApp transport failed."""

    kind = "dispatch"


class DuplicateMessageError(ConciergeError):
    """An inbound message with this provider id was already recorded."""

    kind = "duplicate"

    def __init__(self, message: str, *, conversation_id: UUID | None = None) -> None:
        super().__init__(message)
        self.conversation_id = conversation_id
