"""Database helpers for tenant-aware psycopg connections."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

import psycopg

from ..errors import StoreError
from .tenant_context import get_current_tenant_id

logger = logging.getLogger(__name__)


def connect(dsn: str | None = None) -> psycopg.Connection:
    """Open an autocommit connection to the ERP store.

    Each repository call commits on its own so inbound and outbound messages
    stay recorded even when a later step of the turn fails. Multi-statement
    writes open an explicit ``conn.transaction()`` block.
    """

    url = dsn or os.getenv("DATABASE_URL")
    if not url:
        raise StoreError("DATABASE_URL not configured")
    try:
        return psycopg.connect(url, autocommit=True)
    except psycopg.Error as exc:
        raise StoreError(f"Could not connect to the database: {exc}") from exc


def apply_tenant_settings(
    conn: psycopg.Connection, tenant_id: str | UUID | None = None
) -> None:
    """Ensure ``app.tenant_id`` is configured for the provided connection.

    Uses a session-level setting so row level security policies keep working
    across the short transactions issued by the repositories.
    """

    effective = tenant_id or get_current_tenant_id()
    if effective is None:
        raise RuntimeError("tenant_id is required for tenant-scoped operations")

    tenant_value = str(effective)
    if not tenant_value:
        raise RuntimeError("tenant_id cannot be empty")

    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT set_config('app.tenant_id', %s, false)",
                (tenant_value,),
            )
    except psycopg.Error as exc:
        logger.exception("Failed to apply tenant settings to connection")
        raise StoreError("Failed to configure tenant") from exc


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate driver failures raised inside the block into ``StoreError``."""

    try:
        yield
    except psycopg.Error as exc:
        logger.warning("Store operation %s failed: %s", operation, exc)
        raise StoreError(f"{operation} failed") from exc
