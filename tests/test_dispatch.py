import pytest
import requests

from concierge.agents.context import ContextBuilder
from concierge.agents.schemas import WhatsAppChannelConfig
from concierge.adapters import CustomerResolver
from concierge.conversations import MessageStoreGateway
from concierge.core.settings import BotSettings
from concierge.dispatch import MetaCloudTransport, OutboundDispatcher, WahaTransport, build_transport
from concierge.errors import ConfigurationError, DispatchError
from conftest import FakeTransport


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def meta_channel(tenant_id):
    return WhatsAppChannelConfig(
        tenant_id=tenant_id, provider="meta", phone_number_id="1234567890", access_token="tok"
    )


def test_meta_transport_posts_digits_only_phone(meta_channel, settings):
    session = FakeSession(FakeResponse(payload={"messages": [{"id": "wamid.ABC"}]}))
    transport = MetaCloudTransport(meta_channel, session=session, settings=settings)

    message_id = transport.send("+52 1 55 1234 5678", "Tu cita quedó confirmada.")

    post = session.posts[0]
    assert message_id == "wamid.ABC"
    assert post["url"] == "https://graph.facebook.com/v21.0/1234567890/messages"
    assert post["headers"] == {"Authorization": "Bearer tok"}
    assert post["json"]["to"] == "5215512345678"
    assert post["json"]["text"]["body"] == "Tu cita quedó confirmada."
    assert post["timeout"] == settings.dispatch_timeout_seconds


def test_meta_transport_sends_media_with_caption(meta_channel, settings):
    session = FakeSession()
    MetaCloudTransport(meta_channel, session=session, settings=settings).send(
        "5215512345678", "Tu cotización", media_url="https://cdn.test/quote.png"
    )

    payload = session.posts[0]["json"]
    assert payload["type"] == "image"
    assert payload["image"] == {"link": "https://cdn.test/quote.png", "caption": "Tu cotización"}


def test_waha_transport_uses_chat_id_and_default_session(tenant_id, settings):
    channel = WhatsAppChannelConfig(tenant_id=tenant_id, provider="waha")
    session = FakeSession(FakeResponse(payload={"id": {"_serialized": "true_5215512345678@c.us_XYZ"}}))
    transport = WahaTransport(channel, session=session, settings=settings)

    message_id = transport.send("whatsapp:+5215512345678", "Hola")

    post = session.posts[0]
    assert post["url"] == "http://waha.test/api/sendText"
    assert post["headers"] == {"X-Api-Key": "waha-key"}
    assert post["json"] == {
        "chatId": "5215512345678@c.us",
        "session": f"org_{tenant_id}",
        "text": "Hola",
    }
    assert message_id == "true_5215512345678@c.us_XYZ"


def test_transport_failures_raise_dispatch_error(meta_channel, settings):
    failing = MetaCloudTransport(
        meta_channel, session=FakeSession(FakeResponse(status_code=500)), settings=settings
    )
    unreachable = MetaCloudTransport(
        meta_channel, session=FakeSession(error=requests.ConnectionError("boom")), settings=settings
    )

    with pytest.raises(DispatchError):
        failing.send("5215512345678", "hola")
    with pytest.raises(DispatchError):
        unreachable.send("5215512345678", "hola")


def test_transport_configuration_is_validated(tenant_id):
    with pytest.raises(ConfigurationError):
        build_transport(WhatsAppChannelConfig(tenant_id=tenant_id, provider="meta"))
    with pytest.raises(ConfigurationError):
        build_transport(
            WhatsAppChannelConfig(tenant_id=tenant_id, provider="waha"),
            settings=BotSettings(waha_api_url=None),
        )


@pytest.fixture
def gateway(conversation_repo, workshop_repo, settings):
    return MessageStoreGateway(conversation_repo, CustomerResolver(workshop_repo, settings))


def test_dispatcher_records_sent_message(agent_repo, gateway, conversation_repo, tenant_id, settings):
    transport = FakeTransport()
    dispatcher = OutboundDispatcher(
        ContextBuilder(agent_repo), gateway, transport_factory=lambda channel: transport, settings=settings
    )
    convo = gateway.resolve_or_create_conversation(tenant_id, "5215512345678")

    receipt = dispatcher.send(tenant_id, convo.id, "5215512345678", "¡Listo!")

    assert receipt.success
    assert receipt.provider_message_id == "wamid.1"
    (stored,) = conversation_repo.messages[convo.id]
    assert stored.id == receipt.message_id
    assert stored.direction == "outbound"
    assert stored.delivery_status == "sent"
    assert stored.metadata == {"provider": "meta"}


def test_dispatcher_records_failed_send(agent_repo, gateway, conversation_repo, tenant_id, settings):
    dispatcher = OutboundDispatcher(
        ContextBuilder(agent_repo),
        gateway,
        transport_factory=lambda channel: FakeTransport(fail=True),
        settings=settings,
    )
    convo = gateway.resolve_or_create_conversation(tenant_id, "5215512345678")

    receipt = dispatcher.send(tenant_id, convo.id, "5215512345678", "¡Listo!")

    assert not receipt.success
    assert receipt.error_kind == "dispatch"
    (stored,) = conversation_repo.messages[convo.id]
    assert stored.delivery_status == "failed"
    assert stored.body == "¡Listo!"


def test_dispatcher_without_active_channel_still_records(
    agent_repo, gateway, conversation_repo, tenant_id, settings
):
    agent_repo.channels[tenant_id] = agent_repo.channels[tenant_id].model_copy(update={"is_active": False})
    dispatcher = OutboundDispatcher(ContextBuilder(agent_repo), gateway, settings=settings)
    convo = gateway.resolve_or_create_conversation(tenant_id, "5215512345678")

    receipt = dispatcher.send(tenant_id, convo.id, "5215512345678", "hola")

    assert not receipt.success
    assert receipt.error_kind == "configuration"
    assert conversation_repo.messages[convo.id][0].delivery_status == "failed"
