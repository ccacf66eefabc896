"""Persistence for the workshop records the bot creates."""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import ContextManager, Dict, Iterator, List, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..core.db import store_errors
from . import schemas


class WorkshopRepository(Protocol):
    """Narrow view of the ERP store used by the domain adapters."""

    def find_customer_by_phone(self, tenant_id: UUID, phone: str) -> Optional[schemas.Customer]: ...

    def upsert_customer(self, tenant_id: UUID, name: str, phone: str) -> schemas.Customer: ...

    def find_vehicle(
        self, tenant_id: UUID, customer_id: UUID, description: str
    ) -> Optional[schemas.Vehicle]: ...

    def create_vehicle(
        self, tenant_id: UUID, customer_id: UUID, description: str
    ) -> schemas.Vehicle: ...

    def day_lock(self, tenant_id: UUID, day: date) -> ContextManager[None]: ...

    def list_appointments(
        self, tenant_id: UUID, start: datetime, end: datetime
    ) -> List[schemas.Appointment]: ...

    def insert_appointment(self, payload: schemas.AppointmentCreate) -> schemas.Appointment: ...

    def insert_work_order(self, payload: schemas.WorkOrderCreate) -> schemas.WorkOrder: ...


_CUSTOMER_COLUMNS = "id, tenant_id, name, phone, source, created_at"
_APPOINTMENT_COLUMNS = (
    "id, tenant_id, customer_id, vehicle_id, service_type, start_at, "
    "duration_minutes, status, notes, metadata, created_at"
)


class PostgresWorkshopRepository:
    """psycopg implementation of :class:`WorkshopRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # Customers ----------------------------------------------------------------
    def find_customer_by_phone(self, tenant_id: UUID, phone: str) -> Optional[schemas.Customer]:
        with store_errors("find customer"), self.cursor() as cur:
            cur.execute(
                f"SELECT {_CUSTOMER_COLUMNS} FROM customers WHERE tenant_id = %s AND phone = %s",
                (tenant_id, phone),
            )
            row = cur.fetchone()
        return schemas.Customer(**row) if row else None

    def upsert_customer(self, tenant_id: UUID, name: str, phone: str) -> schemas.Customer:
        placeholder = schemas.PLACEHOLDER_CUSTOMER_NAME
        with store_errors("upsert customer"), self.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO customers (tenant_id, name, phone, source)
                VALUES (%s, %s, %s, 'whatsapp_bot')
                ON CONFLICT (tenant_id, phone) DO UPDATE
                SET name = CASE
                    WHEN customers.name = %s AND EXCLUDED.name <> %s THEN EXCLUDED.name
                    ELSE customers.name
                END
                RETURNING {_CUSTOMER_COLUMNS}
                """,
                (tenant_id, name, phone, placeholder, placeholder),
            )
            row = cur.fetchone()
        return schemas.Customer(**row)

    # Vehicles -----------------------------------------------------------------
    def find_vehicle(
        self, tenant_id: UUID, customer_id: UUID, description: str
    ) -> Optional[schemas.Vehicle]:
        with store_errors("find vehicle"), self.cursor() as cur:
            cur.execute(
                """
                SELECT id, tenant_id, customer_id, description FROM vehicles
                WHERE tenant_id = %s AND customer_id = %s AND lower(description) = lower(%s)
                ORDER BY created_at ASC
                LIMIT 1
                """,
                (tenant_id, customer_id, description),
            )
            row = cur.fetchone()
        return schemas.Vehicle(**row) if row else None

    def create_vehicle(
        self, tenant_id: UUID, customer_id: UUID, description: str
    ) -> schemas.Vehicle:
        with store_errors("create vehicle"), self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO vehicles (tenant_id, customer_id, description)
                VALUES (%s, %s, %s)
                RETURNING id, tenant_id, customer_id, description
                """,
                (tenant_id, customer_id, description),
            )
            row = cur.fetchone()
        return schemas.Vehicle(**row)

    # Appointments -------------------------------------------------------------
    @contextmanager
    def day_lock(self, tenant_id: UUID, day: date) -> Iterator[None]:
        """Serialize bookings for one tenant and day until the block exits."""

        with store_errors("lock appointment day"), self._conn.transaction():
            with self._conn.cursor() as cur:
                cur.execute(
                    "SELECT pg_advisory_xact_lock(hashtext(%s))",
                    (f"appointments:{tenant_id}:{day.isoformat()}",),
                )
            yield

    def list_appointments(
        self, tenant_id: UUID, start: datetime, end: datetime
    ) -> List[schemas.Appointment]:
        with store_errors("list appointments"), self.cursor() as cur:
            cur.execute(
                f"""
                SELECT {_APPOINTMENT_COLUMNS} FROM appointments
                WHERE tenant_id = %s AND status <> 'cancelled'
                  AND start_at >= %s AND start_at < %s
                ORDER BY start_at ASC
                """,
                (tenant_id, start, end),
            )
            rows = cur.fetchall()
        return [schemas.Appointment(**row) for row in rows]

    def insert_appointment(self, payload: schemas.AppointmentCreate) -> schemas.Appointment:
        with store_errors("insert appointment"), self.cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO appointments
                    (tenant_id, customer_id, vehicle_id, service_type, start_at,
                     duration_minutes, status, notes, metadata)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_APPOINTMENT_COLUMNS}
                """,
                (
                    payload.tenant_id,
                    payload.customer_id,
                    payload.vehicle_id,
                    payload.service_type,
                    payload.start_at,
                    payload.duration_minutes,
                    payload.status,
                    payload.notes,
                    Jsonb(payload.metadata),
                ),
            )
            row = cur.fetchone()
        return schemas.Appointment(**row)

    # Work orders --------------------------------------------------------------
    def insert_work_order(self, payload: schemas.WorkOrderCreate) -> schemas.WorkOrder:
        with store_errors("insert work order"), self.cursor() as cur:
            cur.execute(
                """
                INSERT INTO work_orders
                    (tenant_id, customer_id, vehicle_id, service_name, estimated_cost, status, notes)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id, tenant_id, customer_id, vehicle_id, service_name,
                          estimated_cost, status, notes, created_at
                """,
                (
                    payload.tenant_id,
                    payload.customer_id,
                    payload.vehicle_id,
                    payload.service_name,
                    payload.estimated_cost,
                    payload.status,
                    payload.notes,
                ),
            )
            row = cur.fetchone()
        data = dict(row)
        if data.get("estimated_cost") is not None:
            data["estimated_cost"] = float(data["estimated_cost"])
        return schemas.WorkOrder(**data)


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryWorkshopRepository:
    def __init__(self) -> None:
        self.customers: Dict[UUID, schemas.Customer] = {}
        self.vehicles: Dict[UUID, schemas.Vehicle] = {}
        self.appointments: Dict[UUID, schemas.Appointment] = {}
        self.work_orders: Dict[UUID, schemas.WorkOrder] = {}
        self._lock = threading.RLock()

    def find_customer_by_phone(self, tenant_id: UUID, phone: str) -> Optional[schemas.Customer]:
        for customer in self.customers.values():
            if customer.tenant_id == tenant_id and customer.phone == phone:
                return customer
        return None

    def upsert_customer(self, tenant_id: UUID, name: str, phone: str) -> schemas.Customer:
        with self._lock:
            existing = self.find_customer_by_phone(tenant_id, phone)
            if existing is None:
                customer = schemas.Customer(
                    id=uuid.uuid4(),
                    tenant_id=tenant_id,
                    name=name,
                    phone=phone,
                    created_at=datetime.now(timezone.utc),
                )
                self.customers[customer.id] = customer
                return customer
            if existing.name == schemas.PLACEHOLDER_CUSTOMER_NAME and name != existing.name:
                existing = existing.model_copy(update={"name": name})
                self.customers[existing.id] = existing
            return existing

    def find_vehicle(
        self, tenant_id: UUID, customer_id: UUID, description: str
    ) -> Optional[schemas.Vehicle]:
        wanted = description.lower()
        for vehicle in self.vehicles.values():
            if (
                vehicle.tenant_id == tenant_id
                and vehicle.customer_id == customer_id
                and vehicle.description.lower() == wanted
            ):
                return vehicle
        return None

    def create_vehicle(
        self, tenant_id: UUID, customer_id: UUID, description: str
    ) -> schemas.Vehicle:
        vehicle = schemas.Vehicle(
            id=uuid.uuid4(), tenant_id=tenant_id, customer_id=customer_id, description=description
        )
        self.vehicles[vehicle.id] = vehicle
        return vehicle

    @contextmanager
    def day_lock(self, tenant_id: UUID, day: date) -> Iterator[None]:
        with self._lock:
            yield

    def list_appointments(
        self, tenant_id: UUID, start: datetime, end: datetime
    ) -> List[schemas.Appointment]:
        items = [
            apt
            for apt in self.appointments.values()
            if apt.tenant_id == tenant_id
            and apt.status != "cancelled"
            and start <= apt.start_at < end
        ]
        items.sort(key=lambda apt: apt.start_at)
        return items

    def insert_appointment(self, payload: schemas.AppointmentCreate) -> schemas.Appointment:
        appointment = schemas.Appointment(
            id=uuid.uuid4(), created_at=datetime.now(timezone.utc), **payload.model_dump()
        )
        self.appointments[appointment.id] = appointment
        return appointment

    def insert_work_order(self, payload: schemas.WorkOrderCreate) -> schemas.WorkOrder:
        order = schemas.WorkOrder(
            id=uuid.uuid4(), created_at=datetime.now(timezone.utc), **payload.model_dump()
        )
        self.work_orders[order.id] = order
        return order


__all__ = [
    "InMemoryWorkshopRepository",
    "PostgresWorkshopRepository",
    "WorkshopRepository",
]
