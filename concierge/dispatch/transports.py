"""HTTP transports for the two WhatsApp sending styles."""

from __future__ import annotations

import logging
import re
from typing import Any, Optional, Protocol

import requests

from ..agents.schemas import WhatsAppChannelConfig
from ..core.settings import BotSettings, get_bot_settings
from ..errors import ConfigurationError, DispatchError

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


def digits_only(phone: str) -> str:
    return _NON_DIGITS.sub("", phone or "")


class Transport(Protocol):
    name: str

    def send(self, to_phone: str, text: str, media_url: Optional[str] = None) -> Optional[str]:
        """Deliver one message and return the provider message id."""


def _post(
    session: requests.Session,
    url: str,
    *,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
    provider: str,
) -> dict[str, Any]:
    try:
        response = session.post(url, json=payload, headers=headers, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise DispatchError(f"{provider} send failed: {exc}") from exc
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class MetaCloudTransport:
    """WhatsApp Cloud API: ``POST /{phone_number_id}/messages`` with a bearer token."""

    name = "meta"

    def __init__(
        self,
        channel: WhatsAppChannelConfig,
        *,
        session: requests.Session | None = None,
        settings: BotSettings | None = None,
    ) -> None:
        if not channel.phone_number_id or not channel.access_token:
            raise ConfigurationError("Meta channel needs phone_number_id and access_token")
        self._channel = channel
        self._session = session or requests.Session()
        self._settings = settings or get_bot_settings()

    @property
    def url(self) -> str:
        return f"{self._settings.meta_graph_url}/{self._channel.phone_number_id}/messages"

    def send(self, to_phone: str, text: str, media_url: Optional[str] = None) -> Optional[str]:
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": digits_only(to_phone),
        }
        if media_url:
            payload["type"] = "image"
            payload["image"] = {"link": media_url, "caption": text}
        else:
            payload["type"] = "text"
            payload["text"] = {"preview_url": False, "body": text}
        body = _post(
            self._session,
            self.url,
            payload=payload,
            headers={"Authorization": f"Bearer {self._channel.access_token}"},
            timeout=self._settings.dispatch_timeout_seconds,
            provider=self.name,
        )
        messages = body.get("messages") or [{}]
        return messages[0].get("id")


class WahaTransport:
    """Self-hosted WAHA server: ``/api/sendText`` and ``/api/sendImage``."""

    name = "waha"

    def __init__(
        self,
        channel: WhatsAppChannelConfig,
        *,
        session: requests.Session | None = None,
        settings: BotSettings | None = None,
    ) -> None:
        self._settings = settings or get_bot_settings()
        if not self._settings.waha_api_url:
            raise ConfigurationError("WAHA_API_URL is not set")
        self._channel = channel
        self._session = session or requests.Session()

    @property
    def session_name(self) -> str:
        return self._channel.session_name or f"org_{self._channel.tenant_id}"

    @staticmethod
    def chat_id(phone: str) -> str:
        return f"{digits_only(phone)}@c.us"

    def send(self, to_phone: str, text: str, media_url: Optional[str] = None) -> Optional[str]:
        headers = {}
        if self._settings.waha_api_key:
            headers["X-Api-Key"] = self._settings.waha_api_key
        payload: dict[str, Any] = {"chatId": self.chat_id(to_phone), "session": self.session_name}
        if media_url:
            endpoint = "sendImage"
            payload["file"] = {"url": media_url}
            payload["caption"] = text
        else:
            endpoint = "sendText"
            payload["text"] = text
        body = _post(
            self._session,
            f"{self._settings.waha_api_url}/api/{endpoint}",
            payload=payload,
            headers=headers,
            timeout=self._settings.dispatch_timeout_seconds,
            provider=self.name,
        )
        message_id = body.get("id")
        if isinstance(message_id, dict):
            message_id = message_id.get("_serialized") or message_id.get("id")
        return message_id


def build_transport(
    channel: WhatsAppChannelConfig,
    *,
    session: requests.Session | None = None,
    settings: BotSettings | None = None,
) -> Transport:
    if channel.provider == "meta":
        return MetaCloudTransport(channel, session=session, settings=settings)
    if channel.provider == "waha":
        return WahaTransport(channel, session=session, settings=settings)
    raise ConfigurationError(f"Unsupported WhatsApp provider '{channel.provider}'")


__all__ = [
    "MetaCloudTransport",
    "Transport",
    "WahaTransport",
    "build_transport",
    "digits_only",
]
