"""Vehicle lookup used when the bot books work for a customer."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from . import schemas
from .repository import WorkshopRepository


class VehicleRegistry:
    def __init__(self, repository: WorkshopRepository) -> None:
        self._repository = repository

    def get_or_create(
        self, tenant_id: UUID, customer_id: UUID, description: Optional[str]
    ) -> Optional[schemas.Vehicle]:
        """Return the customer's vehicle matching ``description``, creating it if new.

        Matching is a case-insensitive comparison of the free-text description
        the customer gave. ``None`` is returned when no description was given.
        """

        text = " ".join((description or "").split())
        if not text:
            return None
        existing = self._repository.find_vehicle(tenant_id, customer_id, text)
        if existing is not None:
            return existing
        return self._repository.create_vehicle(tenant_id, customer_id, text)


__all__ = ["VehicleRegistry"]
