"""Work orders opened by the bot for later review by the workshop."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from ..errors import AdapterError
from . import schemas
from .repository import WorkshopRepository

logger = logging.getLogger(__name__)


class WorkOrderCreator:
    def __init__(self, repository: WorkshopRepository) -> None:
        self._repository = repository

    def create_from_bot(
        self,
        tenant_id: UUID,
        customer_id: UUID,
        service_name: str,
        *,
        vehicle_id: Optional[UUID] = None,
        estimated_cost: Optional[float] = None,
        notes: Optional[str] = None,
    ) -> schemas.WorkOrder:
        if not (service_name or "").strip():
            raise AdapterError("service_name is required")
        order = self._repository.insert_work_order(
            schemas.WorkOrderCreate(
                tenant_id=tenant_id,
                customer_id=customer_id,
                vehicle_id=vehicle_id,
                service_name=service_name.strip(),
                estimated_cost=estimated_cost,
                notes=notes,
            )
        )
        logger.info(
            "Work order %s opened",
            order.id,
            extra={"event": "work_order_created", "tenant_id": str(tenant_id)},
        )
        return order


__all__ = ["WorkOrderCreator"]
