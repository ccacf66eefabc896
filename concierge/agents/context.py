"""Per-turn context: tenant configuration, business facts and the hours gate."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from uuid import UUID

from pydantic import ValidationError

from ..adapters.appointments import day_name, parse_clock
from ..errors import ConfigurationError, TenantNotConfiguredError
from . import schemas
from .repository import AgentConfigRepository

logger = logging.getLogger(__name__)


def is_within_business_hours(
    hours: Mapping[str, schemas.DayHours | None], now: datetime
) -> bool:
    """Whether ``now`` falls inside its weekday's window, bounds included.

    ``now`` must already be expressed in the tenant's timezone. Days without
    a window are closed.
    """

    window = hours.get(day_name(now.date()))
    if window is None:
        return False
    return parse_clock(window.start) <= now.time() <= parse_clock(window.end)


class ContextBuilder:
    """Loads the configuration the orchestrator needs for a turn."""

    def __init__(self, repository: AgentConfigRepository) -> None:
        self._repository = repository

    def load_config(self, tenant_id: UUID) -> schemas.TenantAgentConfig:
        try:
            config = self._repository.get_agent_config(tenant_id)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid bot configuration for tenant {tenant_id}") from exc
        if config is None:
            raise TenantNotConfiguredError(f"Tenant {tenant_id} has no bot configuration")
        return config

    def load_business_facts(self, tenant_id: UUID) -> schemas.BusinessFacts:
        facts = self._repository.get_business_facts(tenant_id)
        if facts is None:
            raise TenantNotConfiguredError(f"Tenant {tenant_id} has no organization record")
        return facts

    def load_channel_config(self, tenant_id: UUID) -> schemas.WhatsAppChannelConfig | None:
        return self._repository.get_channel_config(tenant_id)

    @staticmethod
    def is_open(config: schemas.TenantAgentConfig, now: datetime | None = None) -> bool:
        """Apply the business-hours gate in the tenant's timezone."""

        if not config.business_hours_only:
            return True
        moment = (now or datetime.now(timezone.utc)).astimezone(config.tz)
        return is_within_business_hours(config.business_hours, moment)


__all__ = ["ContextBuilder", "is_within_business_hours"]
