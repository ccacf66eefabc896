"""Appointment availability and booking for the WhatsApp bot.

Slot listing and booking share :func:`overlaps`, so a slot reported free is
exactly a window :meth:`AppointmentScheduler.create_from_bot` accepts.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, List, Mapping, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from ..core.settings import BotSettings, get_bot_settings
from ..errors import AdapterError
from . import schemas
from .repository import WorkshopRepository

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

BOT_APPOINTMENT_NOTE = "📱 Cita agendada por WhatsApp Bot"

# Longest appointment that can spill over from an earlier start into a window.
_LOOKBEHIND = timedelta(days=1)


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open interval overlap: ``[start, end)`` against ``[other_start, other_end)``."""

    return start < other_end and end > other_start


def parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise AdapterError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def parse_clock(value: str) -> time:
    try:
        hour, minute = value.strip().split(":")[:2]
        return time(int(hour), int(minute))
    except (AttributeError, ValueError) as exc:
        raise AdapterError(f"Invalid time '{value}', expected HH:MM") from exc


def day_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def _conflicting(
    appointments: Iterable[schemas.Appointment], start: datetime, end: datetime
) -> List[schemas.Appointment]:
    return [apt for apt in appointments if overlaps(start, end, apt.start_at, apt.end_at)]


class AppointmentScheduler:
    """Checks availability and creates appointments without double-booking."""

    def __init__(
        self, repository: WorkshopRepository, settings: Optional[BotSettings] = None
    ) -> None:
        self._repository = repository
        self._settings = settings or get_bot_settings()

    # ------------------------------------------------------------------
    # Queries

    def conflicts(
        self, tenant_id: UUID, start: datetime, duration_minutes: int
    ) -> List[schemas.Appointment]:
        """Non-cancelled appointments of the tenant overlapping the window."""

        end = start + timedelta(minutes=duration_minutes)
        existing = self._repository.list_appointments(tenant_id, start - _LOOKBEHIND, end)
        return _conflicting(existing, start, end)

    def check_availability(
        self,
        tenant_id: UUID,
        day: date,
        hours_for_day: Optional[Mapping[str, str]],
        slot_minutes: Optional[int] = None,
        tz: tzinfo = ZoneInfo("UTC"),
    ) -> schemas.AvailabilityReport:
        """List booked and free slots for ``day`` inside its business hours.

        Slots start at opening time and advance by ``slot_minutes``; a slot is
        free when it ends by closing time and overlaps no booked appointment.
        """

        step = slot_minutes or self._settings.slot_minutes
        if step <= 0:
            raise AdapterError("slot_minutes must be positive")
        report = schemas.AvailabilityReport(
            date=day.isoformat(), day_name=day_name(day), available=False
        )
        if not hours_for_day:
            return report

        opens_at, closes_at = self._window(day, hours_for_day, tz)
        existing = self._repository.list_appointments(
            tenant_id, opens_at - _LOOKBEHIND, closes_at
        )
        report.business_hours = {"start": hours_for_day["start"], "end": hours_for_day["end"]}
        report.booked_slots = [
            schemas.BookedSlot(
                start=apt.start_at.astimezone(tz).strftime("%H:%M"),
                end=apt.end_at.astimezone(tz).strftime("%H:%M"),
                service_type=apt.service_type,
            )
            for apt in existing
            if overlaps(opens_at, closes_at, apt.start_at, apt.end_at)
        ]

        cursor = opens_at
        delta = timedelta(minutes=step)
        while cursor + delta <= closes_at:
            if not _conflicting(existing, cursor, cursor + delta):
                report.free_slots.append(cursor.strftime("%H:%M"))
            cursor += delta
        report.available = bool(report.free_slots)
        return report

    # ------------------------------------------------------------------
    # Commands

    def create_from_bot(
        self,
        tenant_id: UUID,
        customer_id: UUID,
        vehicle_id: Optional[UUID],
        service_type: str,
        day: str,
        clock: str,
        *,
        hours_for_day: Optional[Mapping[str, str]] = None,
        tz: tzinfo = ZoneInfo("UTC"),
        duration_minutes: Optional[int] = None,
        notes: Optional[str] = None,
        require_human_approval: bool = False,
        customer_phone: Optional[str] = None,
    ) -> schemas.Appointment:
        """Book an appointment, refusing closed days, out-of-hours and overlaps.

        The stored notes end with :data:`BOT_APPOINTMENT_NOTE` and the metadata
        records the booking source and, when known, the customer's phone.
        """

        if not (service_type or "").strip():
            raise AdapterError("service_type is required")
        booking_day = parse_day(day)
        start_clock = parse_clock(clock)
        duration = duration_minutes or self._settings.default_duration_minutes
        if duration <= 0:
            raise AdapterError("duration must be positive")
        if not hours_for_day:
            raise AdapterError(f"The workshop is closed on {day_name(booking_day)}")

        start = datetime.combine(booking_day, start_clock, tzinfo=tz)
        end = start + timedelta(minutes=duration)
        opens_at, closes_at = self._window(booking_day, hours_for_day, tz)
        if start < opens_at or end > closes_at:
            raise AdapterError(
                f"{clock} is outside business hours "
                f"({hours_for_day['start']}-{hours_for_day['end']})"
            )

        status = "scheduled" if require_human_approval else "confirmed"
        extra_notes = (notes or "").strip()
        stored_notes = (
            f"{extra_notes}\n\n{BOT_APPOINTMENT_NOTE}" if extra_notes else BOT_APPOINTMENT_NOTE
        )
        metadata = {"source": "whatsapp_bot"}
        if customer_phone:
            metadata["customer_phone"] = customer_phone
        with self._repository.day_lock(tenant_id, booking_day):
            clashes = self.conflicts(tenant_id, start, duration)
            if clashes:
                raise AdapterError(f"The slot {booking_day.isoformat()} {clock} is already booked")
            appointment = self._repository.insert_appointment(
                schemas.AppointmentCreate(
                    tenant_id=tenant_id,
                    customer_id=customer_id,
                    vehicle_id=vehicle_id,
                    service_type=service_type.strip(),
                    start_at=start,
                    duration_minutes=duration,
                    status=status,
                    notes=stored_notes,
                    metadata=metadata,
                )
            )
        logger.info(
            "Appointment %s booked for %s",
            appointment.id,
            start.isoformat(),
            extra={"event": "appointment_created", "tenant_id": str(tenant_id)},
        )
        return appointment

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _window(
        day: date, hours_for_day: Mapping[str, str], tz: tzinfo
    ) -> tuple[datetime, datetime]:
        opens_at = datetime.combine(day, parse_clock(hours_for_day["start"]), tzinfo=tz)
        closes_at = datetime.combine(day, parse_clock(hours_for_day["end"]), tzinfo=tz)
        if closes_at <= opens_at:
            raise AdapterError("Business hours for the day are invalid")
        return opens_at, closes_at


__all__ = [
    "AppointmentScheduler",
    "WEEKDAYS",
    "day_name",
    "overlaps",
    "parse_clock",
    "parse_day",
]
