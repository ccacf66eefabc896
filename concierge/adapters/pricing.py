"""Service price lookups and quote calculation."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from ..errors import AdapterError
from . import schemas

_CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def find_service(
    services: Sequence[schemas.ServiceInfo], query: str
) -> Optional[schemas.ServiceInfo]:
    """Match ``query`` against the catalogue.

    An exact case-insensitive name wins; otherwise the first entry, in
    catalogue order, whose name contains the query.
    """

    needle = (query or "").strip().lower()
    if not needle:
        return None
    for service in services:
        if service.name.strip().lower() == needle:
            return service
    for service in services:
        if needle in service.name.lower():
            return service
    return None


def get_service_price(
    services: Sequence[schemas.ServiceInfo], service_name: str
) -> schemas.ServiceInfo:
    service = find_service(services, service_name)
    if service is None:
        raise AdapterError(f"Service '{service_name}' not found")
    return service


def create_quote(
    services: Sequence[schemas.ServiceInfo],
    customer_name: str,
    requested: Sequence[str],
    tax_rate: float,
    vehicle: Optional[str] = None,
) -> schemas.Quote:
    """Price ``requested`` services: ``total = subtotal + subtotal * tax_rate``."""

    if not requested:
        raise AdapterError("At least one service is required for a quote")
    lines: list[schemas.QuoteLine] = []
    missing: list[str] = []
    for name in requested:
        service = find_service(services, name)
        if service is None:
            missing.append(name)
            continue
        lines.append(
            schemas.QuoteLine(
                service_name=service.name,
                price=service.price,
                duration_minutes=service.duration_minutes,
            )
        )
    if not lines:
        raise AdapterError("None of the requested services were found")

    rate = Decimal(str(tax_rate))
    subtotal = _money(sum((Decimal(str(line.price)) for line in lines), Decimal("0")))
    tax = _money(subtotal * rate)
    return schemas.Quote(
        customer_name=customer_name,
        vehicle=vehicle or None,
        services=lines,
        not_found=missing,
        subtotal=float(subtotal),
        tax_rate=float(rate),
        tax=float(tax),
        total=float(subtotal + tax),
    )


__all__ = ["create_quote", "find_service", "get_service_price"]
