"""Domain adapters exposing narrow ERP operations to the bot's tools."""

from . import schemas
from .appointments import AppointmentScheduler, overlaps
from .customers import CustomerResolver, normalize_phone
from .orders import WorkOrderCreator
from .pricing import create_quote, find_service, get_service_price
from .repository import (
    InMemoryWorkshopRepository,
    PostgresWorkshopRepository,
    WorkshopRepository,
)
from .vehicles import VehicleRegistry

__all__ = [
    "AppointmentScheduler",
    "CustomerResolver",
    "InMemoryWorkshopRepository",
    "PostgresWorkshopRepository",
    "VehicleRegistry",
    "WorkOrderCreator",
    "WorkshopRepository",
    "create_quote",
    "find_service",
    "get_service_price",
    "normalize_phone",
    "overlaps",
    "schemas",
]
