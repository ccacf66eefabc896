"""Sampling parameters sent with every provider call of a turn."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from . import schemas

# WhatsApp replies are short; the caps leave room for tool-call arguments.
PROVIDER_DEFAULTS: Mapping[str, Mapping[str, Any]] = {
    "openai": {"temperature": 0.7, "max_tokens": 1024},
    "anthropic": {"temperature": 0.2, "max_tokens": 2048},
}
FALLBACK_DEFAULTS: Mapping[str, Any] = {"temperature": 0.5, "max_tokens": 1024}


class ResponseParameterStore:
    """Provider defaults, optionally overridden per deployment, then per tenant."""

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None):
        self._defaults = {name: dict(params) for name, params in PROVIDER_DEFAULTS.items()}
        for name, params in (overrides or {}).items():
            self._defaults.setdefault(name.lower(), dict(FALLBACK_DEFAULTS)).update(params)

    def defaults_for_provider(self, provider: str) -> dict[str, Any]:
        return dict(self._defaults.get(provider.lower(), FALLBACK_DEFAULTS))

    def for_tenant(self, config: schemas.TenantAgentConfig) -> dict[str, Any]:
        """Defaults for the tenant's provider with its temperature and token cap on top."""

        params = self.defaults_for_provider(config.provider)
        tenant_values = {"temperature": config.temperature, "max_tokens": config.max_tokens}
        params.update({key: value for key, value in tenant_values.items() if value is not None})
        return params
