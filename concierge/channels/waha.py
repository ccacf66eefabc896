"""WAHA (self-hosted WhatsApp HTTP API) webhook adapter."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..conversations.models import NormalizedMessage
from .base import ChannelAdapter

# Sessions subscribed to both events get every incoming message twice;
# "message.any" adds only our own outgoing messages, which are skipped anyway.
_MESSAGE_EVENTS = {"message"}


def _jid_to_phone(jid: str | None) -> str:
    return (jid or "").split("@", 1)[0]


def _kind_for(mimetype: str | None) -> str:
    major = (mimetype or "").split("/", 1)[0]
    if major in {"image", "audio", "video"}:
        return major
    return "document"


class WahaAdapter(ChannelAdapter):
    channel_name = "waha"

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
        *,
        url: str | None = None,
    ) -> bool:
        """Accept a matching ``X-Webhook-Hmac`` (SHA-512) or ``X-Api-Key``."""

        secret = (config or {}).get("webhook_secret")
        if not secret:
            return True
        received_hmac = headers.get("X-Webhook-Hmac") or headers.get("x-webhook-hmac")
        if received_hmac:
            digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()
            return hmac.compare_digest(received_hmac, digest)
        api_key = headers.get("X-Api-Key") or headers.get("x-api-key")
        return bool(api_key) and hmac.compare_digest(api_key, secret)

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> Iterable[NormalizedMessage]:
        event = payload.get("event")
        if event not in _MESSAGE_EVENTS:
            return
        message = payload.get("payload") or {}
        if message.get("fromMe") in (True, "true"):
            return
        chat = message.get("chatId") or message.get("from") or ""
        if "@g.us" in chat:
            return
        sender = _jid_to_phone(message.get("from"))
        if not sender:
            return
        kind = "text"
        media_url = None
        media = message.get("media") or {}
        if message.get("hasMedia") and media:
            media_url = media.get("url")
            kind = _kind_for(media.get("mimetype"))
        timestamp = message.get("timestamp")
        try:
            sent_at = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            sent_at = datetime.now(timezone.utc)
        yield NormalizedMessage(
            tenant_id=self.tenant_id,
            from_phone=sender,
            to_phone=_jid_to_phone(message.get("to")) or None,
            body=str(message.get("body") or ""),
            kind=kind,
            media_url=media_url,
            provider_message_id=message.get("id"),
            provider_metadata={"provider": self.channel_name, "session": payload.get("session")},
            sent_at=sent_at,
            sender_name=(message.get("_data") or {}).get("notifyName"),
        )
