"""Pydantic schemas for tenant bot configuration and the model transcript."""

from __future__ import annotations

import json
import re
from typing import Any, Literal
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..adapters.schemas import ServiceInfo

_CLOCK = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")

ProviderName = Literal["openai", "anthropic"]


class DayHours(BaseModel):
    """Opening window for one weekday, ``HH:MM`` in the tenant's timezone."""

    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _check_clock(cls, value: str) -> str:
        value = value.strip()
        if not _CLOCK.match(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        hour, minute = value.split(":")
        return f"{int(hour):02d}:{minute}"


class Policies(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_methods: list[str] = Field(default_factory=list)
    cancellation_policy: str | None = None
    warranty_policy: str | None = None
    deposit_required: bool = False
    deposit_percentage: float | None = None
    escalation_keywords: list[str] = Field(default_factory=list)


class FAQ(BaseModel):
    question: str
    answer: str


class TenantAgentConfig(BaseModel):
    """Bot configuration of one tenant, loaded fresh for every turn."""

    model_config = ConfigDict(extra="ignore")

    tenant_id: UUID
    enabled: bool = False
    provider: ProviderName = "openai"
    model: str
    temperature: float = 0.7
    max_tokens: int = 1024
    language: str = "es"
    personality: str | None = None
    custom_instructions: str | None = None
    business_hours_only: bool = False
    auto_schedule_appointments: bool = False
    auto_create_orders: bool = False
    require_human_approval: bool = False
    timezone: str = "UTC"
    business_hours: dict[str, DayHours | None] = Field(default_factory=dict)
    services: list[ServiceInfo] = Field(default_factory=list)
    policies: Policies = Field(default_factory=Policies)
    faqs: list[FAQ] = Field(default_factory=list)

    @field_validator("business_hours", mode="before")
    @classmethod
    def _lower_weekdays(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(day).strip().lower(): hours or None for day, hours in value.items()}
        return value

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def hours_for(self, weekday: str) -> DayHours | None:
        return self.business_hours.get(weekday)


class BusinessFacts(BaseModel):
    name: str
    address: str | None = None
    phone: str | None = None
    email: str | None = None


class WhatsAppChannelConfig(BaseModel):
    """Outbound transport selection and webhook secrets of a tenant."""

    tenant_id: UUID
    provider: Literal["meta", "waha"] = "meta"
    is_active: bool = True
    phone_number_id: str | None = None
    access_token: str | None = None
    session_name: str | None = None
    webhook_secret: str | None = None
    verify_token: str | None = None


# ---------------------------------------------------------------------------
# Transcript records


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None

    def to_content(self) -> str:
        """Serialise for the tool-result slot of a provider transcript."""

        payload = self.model_dump(exclude_none=True, mode="json")
        return json.dumps(payload, ensure_ascii=False, default=str)


class ProviderResponse(BaseModel):
    """Provider-neutral model reply: final text or a batch of tool calls."""

    text: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @property
    def requests_tools(self) -> bool:
        return bool(self.tool_calls)


class TranscriptEntry(BaseModel):
    role: Literal["user", "assistant", "tool"]
    content: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


__all__ = [
    "BusinessFacts",
    "DayHours",
    "FAQ",
    "Policies",
    "ProviderResponse",
    "ServiceInfo",
    "TenantAgentConfig",
    "ToolCall",
    "ToolResult",
    "TranscriptEntry",
    "WhatsAppChannelConfig",
]
