"""Logging setup for the webhook service.

Two rotating files are written under ``LOG_DIR``: ``app.log`` for the
``concierge`` logger and ``access.log`` for ``uvicorn.access``. Access lines
are produced by an HTTP middleware, one JSON document per request, with
provider signatures, tokens and API keys masked.

With ``LOG_JSON=true`` application records are emitted as JSON and keep the
structured extras the inbound pipeline attaches (``event``, ``tenant_id``,
``conversation_id``, ``error_kind``, ``tool``), so a failed turn shows up as a
single searchable entry.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from urllib.parse import parse_qsl
from uuid import uuid4

from fastapi import FastAPI, Request

from .core.rate_limit import get_client_ip
from .core.tenant_context import get_current_channel, get_current_tenant_id

STRUCTURED_FIELDS = ("event", "tenant_id", "conversation_id", "error_kind", "tool")

SENSITIVE_FIELDS = {
    "authorization",
    "cookie",
    "set-cookie",
    "password",
    "token",
    "access_token",
    "refresh_token",
    "api_key",
    "x-api-key",
    "x-hub-signature-256",
    "x-twilio-signature",
    "x-webhook-hmac",
}

UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})


@dataclasses.dataclass(frozen=True)
class LogOptions:
    directory: str
    level: int
    as_json: bool
    retention_days: int
    rotate_utc: bool
    request_bodies: bool

    @classmethod
    def from_env(cls) -> "LogOptions":
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        return cls(
            directory=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, level_name, logging.INFO),
            as_json=_env_flag("LOG_JSON"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=_env_flag("LOG_ROTATE_UTC"),
            request_bodies=_env_flag("LOG_REQUEST_BODIES"),
        )


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


class JsonFormatter(logging.Formatter):
    """Render a record and its structured extras as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (name, str(getattr(record, name)))
            for name in STRUCTURED_FIELDS
            if getattr(record, name, None) is not None
        )
        # Records logged without explicit ids inherit the webhook's tenant.
        payload.setdefault("tenant_id", get_current_tenant_id())
        payload["channel"] = get_current_channel()
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps({key: value for key, value in payload.items() if value})


def _scrub(data: object) -> object:
    """Mask sensitive keys at any depth of dicts and lists."""

    if isinstance(data, list):
        return [_scrub(item) for item in data]
    if not isinstance(data, dict):
        return data
    masked: dict[Any, object] = {}
    for key, value in data.items():
        if isinstance(key, str) and key.lower() in SENSITIVE_FIELDS:
            masked[key] = "***"
        else:
            masked[key] = _scrub(value)
    return masked


def _decode_body(raw: bytes, content_type: str) -> object:
    """Best-effort structured view of a request body for the access log.

    Meta and WAHA post JSON, Twilio posts form fields; anything else is kept
    as text.
    """

    if content_type.startswith("application/x-www-form-urlencoded"):
        return _scrub(dict(parse_qsl(raw.decode("utf-8", errors="replace"))))
    try:
        return _scrub(json.loads(raw))
    except ValueError:
        return raw.decode("utf-8", errors="replace")


def _install_access_logging(app: FastAPI, options: LogOptions) -> None:
    access_logger = logging.getLogger("uvicorn.access")

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        body: object = None
        if options.request_bodies:
            raw = await request.body()

            async def replay() -> dict:  # pragma: no cover - exercised by routes
                return {"type": "http.request", "body": raw, "more_body": False}

            # The route reads the same body again through the replayed receive.
            request._receive = replay  # type: ignore[attr-defined]
            if raw:
                body = _decode_body(raw, request.headers.get("content-type", ""))

        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": get_client_ip(request),
            "headers": _scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body
        access_logger.info(json.dumps(entry, default=str))
        return response


def _rotating_handler(
    options: LogOptions, filename: str, formatter: logging.Formatter
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(options.directory, filename),
        when="midnight",
        backupCount=options.retention_days,
        utc=options.rotate_utc,
    )
    handler.setFormatter(formatter)
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    """Attach file handlers and, when ``app`` is given, the access middleware."""

    options = LogOptions.from_env()
    os.makedirs(options.directory, exist_ok=True)
    formatter: logging.Formatter = (
        JsonFormatter()
        if options.as_json
        else logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")
    )

    app_logger = logging.getLogger("concierge")
    if not app_logger.handlers:
        app_logger.addHandler(_rotating_handler(options, "app.log", formatter))
    app_logger.setLevel(options.level)

    # Replaced on every call so a reloaded app writes to the current LOG_DIR.
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.handlers.clear()
    access_logger.addHandler(_rotating_handler(options, "access.log", formatter))
    access_logger.setLevel(options.level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app, options)
