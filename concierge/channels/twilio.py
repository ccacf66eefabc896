"""Twilio WhatsApp webhook adapter (form encoded callbacks)."""

from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import parse_qsl

from ..conversations.models import NormalizedMessage
from .base import ChannelAdapter

_PREFIX = "whatsapp:"


def _strip(value: str | None) -> str:
    value = (value or "").strip()
    return value[len(_PREFIX):] if value.lower().startswith(_PREFIX) else value


def _kind_for(content_type: str | None) -> str:
    major = (content_type or "").split("/", 1)[0]
    if major in {"image", "audio", "video"}:
        return major
    return "document"


class TwilioAdapter(ChannelAdapter):
    channel_name = "twilio"
    form_encoded = True

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
        *,
        url: str | None = None,
    ) -> bool:
        """Check ``X-Twilio-Signature``: HMAC-SHA1 of URL plus sorted form params."""

        secret = (config or {}).get("webhook_secret")
        if not secret:
            return True
        received = headers.get("X-Twilio-Signature") or headers.get("x-twilio-signature")
        if not received or not url:
            return False
        params = sorted(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
        signed = url + "".join(f"{key}{value}" for key, value in params)
        digest = hmac.new(secret.encode("utf-8"), signed.encode("utf-8"), hashlib.sha1).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(received, expected)

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> Iterable[NormalizedMessage]:
        # Delivery status callbacks carry MessageStatus and no Body.
        if "Body" not in payload and not payload.get("NumMedia"):
            return
        sender = _strip(payload.get("From"))
        if not sender:
            return
        body = str(payload.get("Body") or "")
        kind = "text"
        media_url = None
        try:
            num_media = int(payload.get("NumMedia") or 0)
        except (TypeError, ValueError):
            num_media = 0
        if num_media > 0:
            media_url = payload.get("MediaUrl0")
            kind = _kind_for(payload.get("MediaContentType0"))
        yield NormalizedMessage(
            tenant_id=self.tenant_id,
            from_phone=sender,
            to_phone=_strip(payload.get("To")) or None,
            body=body,
            kind=kind,
            media_url=media_url,
            provider_message_id=payload.get("MessageSid") or payload.get("SmsMessageSid"),
            provider_metadata={
                "provider": self.channel_name,
                "account_sid": payload.get("AccountSid"),
                "num_media": num_media,
            },
            sender_name=payload.get("ProfileName"),
        )
