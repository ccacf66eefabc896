"""Persistence for tenant bot configuration and business facts."""
from __future__ import annotations

from typing import Dict, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row

from ..core.db import store_errors
from . import schemas


class AgentConfigRepository(Protocol):
    def get_agent_config(self, tenant_id: UUID) -> Optional[schemas.TenantAgentConfig]: ...

    def get_business_facts(self, tenant_id: UUID) -> Optional[schemas.BusinessFacts]: ...

    def get_channel_config(self, tenant_id: UUID) -> Optional[schemas.WhatsAppChannelConfig]: ...


class PostgresAgentConfigRepository:
    """Reads ``ai_agent_config``, ``organizations`` and ``whatsapp_channel_config``."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def get_agent_config(self, tenant_id: UUID) -> Optional[schemas.TenantAgentConfig]:
        with store_errors("load agent config"), self.cursor() as cur:
            cur.execute(
                """
                SELECT tenant_id, enabled, provider, model, temperature, max_tokens, language,
                       personality, custom_instructions, business_hours_only,
                       auto_schedule_appointments, auto_create_orders, require_human_approval,
                       timezone, business_hours, services, policies, faqs
                FROM ai_agent_config
                WHERE tenant_id = %s
                """,
                (tenant_id,),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.TenantAgentConfig(**row)

    def get_business_facts(self, tenant_id: UUID) -> Optional[schemas.BusinessFacts]:
        with store_errors("load business facts"), self.cursor() as cur:
            cur.execute(
                "SELECT name, address, phone, email FROM organizations WHERE id = %s",
                (tenant_id,),
            )
            row = cur.fetchone()
        return schemas.BusinessFacts(**row) if row else None

    def get_channel_config(self, tenant_id: UUID) -> Optional[schemas.WhatsAppChannelConfig]:
        with store_errors("load channel config"), self.cursor() as cur:
            cur.execute(
                """
                SELECT tenant_id, provider, is_active, phone_number_id, access_token,
                       session_name, webhook_secret, verify_token
                FROM whatsapp_channel_config
                WHERE tenant_id = %s
                """,
                (tenant_id,),
            )
            row = cur.fetchone()
        return schemas.WhatsAppChannelConfig(**row) if row else None


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryAgentConfigRepository:
    def __init__(self) -> None:
        self.configs: Dict[UUID, schemas.TenantAgentConfig] = {}
        self.facts: Dict[UUID, schemas.BusinessFacts] = {}
        self.channels: Dict[UUID, schemas.WhatsAppChannelConfig] = {}

    def get_agent_config(self, tenant_id: UUID) -> Optional[schemas.TenantAgentConfig]:
        config = self.configs.get(tenant_id)
        return config.model_copy(deep=True) if config else None

    def get_business_facts(self, tenant_id: UUID) -> Optional[schemas.BusinessFacts]:
        return self.facts.get(tenant_id)

    def get_channel_config(self, tenant_id: UUID) -> Optional[schemas.WhatsAppChannelConfig]:
        return self.channels.get(tenant_id)


__all__ = [
    "AgentConfigRepository",
    "InMemoryAgentConfigRepository",
    "PostgresAgentConfigRepository",
]
