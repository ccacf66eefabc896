"""Meta WhatsApp Cloud API webhook adapter."""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..conversations.models import NormalizedMessage
from .base import ChannelAdapter

_MEDIA_KINDS = {"image": "image", "sticker": "image", "audio": "audio", "voice": "audio",
                "video": "video", "document": "document"}


def _parse_timestamp(value: Any) -> datetime:
    if value:
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        except (ValueError, TypeError, OverflowError):
            pass
    return datetime.now(timezone.utc)


class MetaCloudAdapter(ChannelAdapter):
    channel_name = "meta"

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
        *,
        url: str | None = None,
    ) -> bool:
        secret = (config or {}).get("webhook_secret")
        if not secret:
            return True
        received = headers.get("X-Hub-Signature-256") or headers.get("x-hub-signature-256")
        if not received:
            return False
        digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        expected = f"sha256={digest}"
        return hmac.compare_digest(received, expected)

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> Iterable[NormalizedMessage]:
        for entry in payload.get("entry", []) or []:
            for change in entry.get("changes", []) or []:
                value = change.get("value", {}) or {}
                business = value.get("metadata", {}) or {}
                contacts = {c.get("wa_id"): c for c in value.get("contacts", []) or []}
                # Status-only changes carry ``statuses`` and no ``messages``.
                for message in value.get("messages", []) or []:
                    sender = str(message.get("from") or "")
                    if not sender:
                        continue
                    contact = contacts.get(sender, {})
                    message_type = message.get("type") or "text"
                    body = ""
                    kind = "text"
                    media_url = None
                    extra: dict[str, Any] = {}
                    if message_type == "text":
                        body = (message.get("text") or {}).get("body", "")
                    elif message_type in _MEDIA_KINDS:
                        media = message.get(message_type, {}) or {}
                        kind = _MEDIA_KINDS[message_type]
                        body = media.get("caption", "") or ""
                        media_url = media.get("link") or media.get("url")
                        extra = {"media_id": media.get("id"), "mime_type": media.get("mime_type")}
                    elif message_type == "interactive":
                        interactive = message.get("interactive", {}) or {}
                        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
                        body = reply.get("title") or ""
                    elif message_type == "button":
                        body = (message.get("button") or {}).get("text", "")
                    elif message_type == "location":
                        location = message.get("location", {}) or {}
                        body = location.get("address") or location.get("name") or ""
                    yield NormalizedMessage(
                        tenant_id=self.tenant_id,
                        from_phone=sender,
                        to_phone=business.get("display_phone_number"),
                        body=body,
                        kind=kind,
                        media_url=media_url,
                        provider_message_id=message.get("id"),
                        provider_metadata={
                            "provider": self.channel_name,
                            "type": message_type,
                            "phone_number_id": business.get("phone_number_id"),
                            **{k: v for k, v in extra.items() if v},
                        },
                        sent_at=_parse_timestamp(message.get("timestamp")),
                        sender_name=(contact.get("profile") or {}).get("name"),
                    )
