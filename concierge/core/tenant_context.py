"""Runtime helpers for storing the tenant served by the current turn.

The webhook router calls ``set_tenant_context`` before running the inbound
pipeline and passes the returned token back to ``reset_tenant_context`` once
the response is ready. Repositories and the logging formatter call
``get_current_tenant_id`` to discover which tenant is being served without
threading the identifier through every call.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import TypedDict

__all__ = [
    "TenantRuntimeContext",
    "get_current_channel",
    "get_current_tenant_id",
    "reset_tenant_context",
    "set_tenant_context",
]


class TenantRuntimeContext(TypedDict):
    """Values stored in the tenant context during a webhook request."""

    tenant_id: str
    channel: str


_tenant_context: ContextVar[TenantRuntimeContext | None] = ContextVar(
    "tenant_runtime_context", default=None
)


def set_tenant_context(tenant_id: str, channel: str) -> Token[TenantRuntimeContext | None]:
    """Persist the tenant metadata in the request-scoped context variable.

    Args:
        tenant_id: Identifier of the tenant taken from the webhook path.
        channel: Inbound channel name (``meta``, ``twilio`` or ``waha``).

    Returns:
        ``Token`` returned by :meth:`contextvars.ContextVar.set`. Callers must
        pass it to :func:`reset_tenant_context` to restore the previous value.
    """

    return _tenant_context.set({"tenant_id": tenant_id, "channel": channel})


def reset_tenant_context(token: Token[TenantRuntimeContext | None]) -> None:
    """Restore the tenant context to the state prior to ``set_tenant_context``."""

    _tenant_context.reset(token)


def get_current_tenant_id() -> str | None:
    """Return the tenant identifier for the current execution context, if any."""

    context = _tenant_context.get()
    if context is None:
        return None
    return context["tenant_id"]


def get_current_channel() -> str | None:
    context = _tenant_context.get()
    if context is None:
        return None
    return context["channel"]
