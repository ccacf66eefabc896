"""Records exchanged between the domain adapters and the tool registry."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

AppointmentStatus = Literal[
    "scheduled", "confirmed", "in_progress", "completed", "cancelled", "no_show"
]

PLACEHOLDER_CUSTOMER_NAME = "Cliente WhatsApp"


class Customer(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    phone: str
    source: str = "whatsapp_bot"
    created_at: datetime | None = None


class Vehicle(BaseModel):
    id: UUID
    tenant_id: UUID
    customer_id: UUID
    description: str


class AppointmentCreate(BaseModel):
    tenant_id: UUID
    customer_id: UUID
    vehicle_id: UUID | None = None
    service_type: str
    start_at: datetime
    duration_minutes: int = 60
    status: AppointmentStatus = "scheduled"
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Appointment(AppointmentCreate):
    id: UUID
    created_at: datetime | None = None

    @property
    def end_at(self) -> datetime:
        return self.start_at + timedelta(minutes=self.duration_minutes)


class WorkOrderCreate(BaseModel):
    tenant_id: UUID
    customer_id: UUID
    vehicle_id: UUID | None = None
    service_name: str
    estimated_cost: float | None = None
    status: str = "pending"
    notes: str | None = None


class WorkOrder(WorkOrderCreate):
    id: UUID
    created_at: datetime | None = None


class BookedSlot(BaseModel):
    start: str
    end: str
    service_type: str


class AvailabilityReport(BaseModel):
    """Answer of ``check_availability`` for one calendar day."""

    date: str
    day_name: str
    available: bool
    business_hours: dict[str, str] | None = None
    booked_slots: list[BookedSlot] = Field(default_factory=list)
    free_slots: list[str] = Field(default_factory=list)


class QuoteLine(BaseModel):
    service_name: str
    price: float
    duration_minutes: int | None = None


class Quote(BaseModel):
    customer_name: str
    vehicle: str | None = None
    services: list[QuoteLine]
    not_found: list[str] = Field(default_factory=list)
    subtotal: float
    tax_rate: float
    tax: float
    total: float

    def as_tool_data(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ServiceInfo(BaseModel):
    """One entry of the tenant's priced service catalogue."""

    name: str
    price: float = 0.0
    duration_minutes: int | None = None
    description: str | None = None
