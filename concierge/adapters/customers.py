"""Customer lookup and get-or-create on behalf of the WhatsApp bot."""

from __future__ import annotations

import logging
import re
from typing import Optional
from uuid import UUID

from ..core.settings import BotSettings, get_bot_settings
from ..errors import AdapterError
from . import schemas
from .repository import WorkshopRepository

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s\-().]")
_MEXICO = "52"


def normalize_phone(phone: str, country_code: str = _MEXICO) -> str:
    """Return the E.164 form used as the customer and conversation key.

    Provider decorations (``whatsapp:`` prefixes, ``@c.us`` suffixes) and
    separators are removed. Ten digit local numbers get ``+<country_code>``;
    eleven or more digits are already international, which is how Meta and
    WAHA send every sender. Mexican mobiles written with the legacy ``1``
    after ``52`` are collapsed so both spellings map to the same customer.
    """

    value = (phone or "").strip()
    if value.lower().startswith("whatsapp:"):
        value = value[len("whatsapp:") :]
    value = value.split("@", 1)[0]
    value = _SEPARATORS.sub("", value)
    if not value:
        return ""

    digits = value.lstrip("+")
    if not digits.isdigit():
        return value
    if value.startswith("+") or len(digits) >= 11:
        normalized = f"+{digits}"
    elif len(digits) == 10:
        normalized = f"+{country_code}{digits}"
    else:
        return value

    if normalized.startswith("+521") and len(normalized) == 14:
        normalized = "+52" + normalized[4:]
    return normalized


class CustomerResolver:
    """Find or create the customer behind a WhatsApp phone number."""

    def __init__(
        self, repository: WorkshopRepository, settings: Optional[BotSettings] = None
    ) -> None:
        self._repository = repository
        self._settings = settings or get_bot_settings()

    def normalize(self, phone: str) -> str:
        return normalize_phone(phone, self._settings.default_country_code)

    def find_by_phone(self, tenant_id: UUID, phone: str) -> Optional[schemas.Customer]:
        normalized = self.normalize(phone)
        if not normalized:
            return None
        return self._repository.find_customer_by_phone(tenant_id, normalized)

    def get_or_create(
        self, tenant_id: UUID, name: Optional[str], phone: str
    ) -> schemas.Customer:
        """Idempotent: at most one customer exists per (tenant, normalized phone)."""

        normalized = self.normalize(phone)
        if not normalized:
            raise AdapterError("A phone number is required to identify the customer")
        clean_name = (name or "").strip() or schemas.PLACEHOLDER_CUSTOMER_NAME
        customer = self._repository.upsert_customer(tenant_id, clean_name, normalized)
        logger.debug("Resolved customer %s for tenant %s", customer.id, tenant_id)
        return customer


__all__ = ["CustomerResolver", "normalize_phone"]
