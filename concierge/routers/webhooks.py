"""Webhook routes receiving WhatsApp messages from Meta, Twilio and WAHA."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from ..channels import get_adapter
from ..core.db import apply_tenant_settings, connect
from ..core.rate_limit import WEBHOOK_RATE_LIMIT, limiter
from ..core.tenant_context import reset_tenant_context, set_tenant_context
from ..errors import StoreError
from ..pipeline import InboundMessageHandler, create_postgres_handler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks/whatsapp", tags=["webhooks"])


@contextmanager
def _service_context(tenant_id: UUID) -> Iterator[InboundMessageHandler]:
    try:
        conn = connect()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    try:
        apply_tenant_settings(conn, tenant_id)
        yield create_postgres_handler(conn)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    finally:
        conn.close()


def _channel_config(handler: InboundMessageHandler, tenant_id: UUID) -> dict[str, Any]:
    channel = handler.contexts.load_channel_config(tenant_id)
    return channel.model_dump(mode="json") if channel else {}


@router.get("/{tenant_id}/meta")
def verify_meta_webhook(tenant_id: UUID, request: Request) -> Response:
    """Answer Meta's subscription handshake with ``hub.challenge``."""

    params = request.query_params
    if params.get("hub.mode") != "subscribe":
        raise HTTPException(status_code=400, detail="Unsupported hub.mode")
    with _service_context(tenant_id) as handler:
        config = _channel_config(handler, tenant_id)
    expected = config.get("verify_token")
    if not expected or params.get("hub.verify_token") != expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid verify token")
    return PlainTextResponse(params.get("hub.challenge", ""))


@router.post("/{tenant_id}/{channel}")
@limiter.limit(WEBHOOK_RATE_LIMIT)
async def receive_whatsapp_webhook(tenant_id: UUID, channel: str, request: Request) -> Response:
    try:
        adapter_cls = get_adapter(channel)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    body_bytes = await request.body()
    payload: dict[str, Any]
    if adapter_cls.form_encoded:
        form = await request.form()
        payload = {key: value for key, value in form.items() if isinstance(value, str)}
    else:
        try:
            payload = json.loads(body_bytes.decode("utf-8")) if body_bytes else {}
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise HTTPException(status_code=400, detail=f"Invalid JSON payload: {exc}") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Payload must be a JSON object")

    adapter = adapter_cls(tenant_id=tenant_id)
    token = set_tenant_context(str(tenant_id), adapter.channel_name)
    try:
        with _service_context(tenant_id) as handler:
            config = await run_in_threadpool(_channel_config, handler, tenant_id)
            if not adapter.verify_signature(
                body_bytes, request.headers, config, url=str(request.url)
            ):
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
                )
            messages = list(adapter.parse_incoming(payload, request.headers, config))
            results = []
            for message in messages:
                result = await run_in_threadpool(handler.handle, message)
                results.append(result.model_dump(mode="json"))
    finally:
        reset_tenant_context(token)

    logger.info(
        "Processed %s inbound message(s)",
        len(results),
        extra={"event": "webhook_processed", "tenant_id": str(tenant_id)},
    )
    return JSONResponse({"processed": len(results), "results": results})
