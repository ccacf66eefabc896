import pathlib
import sys
import uuid
from datetime import datetime, timezone

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from concierge.adapters import (
    AppointmentScheduler,
    CustomerResolver,
    InMemoryWorkshopRepository,
    VehicleRegistry,
    WorkOrderCreator,
)
from concierge.agents import schemas as agent_schemas
from concierge.agents.repository import InMemoryAgentConfigRepository
from concierge.agents.tools import ToolContext, ToolRegistry, ToolServices
from concierge.conversations import InMemoryConversationRepository, MessageStoreGateway
from concierge.core.settings import BotSettings, reset_bot_settings_cache
from concierge.errors import DispatchError
from concierge.pipeline import build_handler

# 10:00 on Wednesday 2024-06-05 in Mexico City (UTC-6).
WEDNESDAY_MORNING = datetime(2024, 6, 5, 16, 0, tzinfo=timezone.utc)
# 12:00 on Sunday 2024-06-09 in Mexico City.
SUNDAY_NOON = datetime(2024, 6, 9, 18, 0, tzinfo=timezone.utc)

CUSTOMER_PHONE = "+5215512345678"


class StubProvider:
    """Scripted LLM provider recording every call it receives.

    ``errors`` is consumed one entry per call (``None`` means no error);
    ``always`` is returned on every call when set, otherwise ``responses``
    are returned in order.
    """

    name = "stub"

    def __init__(self, responses=None, *, always=None, errors=None):
        self.responses = list(responses or [])
        self.always = always
        self.errors = list(errors or [])
        self.calls = []

    def send_turn(self, system_prompt, transcript, tools, parameters):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "transcript": list(transcript),
                "tools": [tool.name for tool in tools],
                "parameters": dict(parameters),
            }
        )
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        if self.always is not None:
            return self.always
        if self.responses:
            return self.responses.pop(0)
        return agent_schemas.ProviderResponse(text="ok")


class FakeTransport:
    name = "meta"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, to_phone, text, media_url=None):
        if self.fail:
            raise DispatchError("meta send failed: 500 Server Error")
        self.sent.append({"to": to_phone, "text": text, "media_url": media_url})
        return f"wamid.{len(self.sent)}"


def tool_call(name, call_id="call_1", **arguments):
    return agent_schemas.ToolCall(id=call_id, name=name, arguments=arguments)


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    reset_bot_settings_cache()
    yield
    reset_bot_settings_cache()


@pytest.fixture
def tenant_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def settings() -> BotSettings:
    return BotSettings(
        max_tool_rounds=3,
        provider_retry_backoff_seconds=0.0,
        waha_api_url="http://waha.test",
        waha_api_key="waha-key",
    )


@pytest.fixture
def agent_config(tenant_id) -> agent_schemas.TenantAgentConfig:
    weekday = {"start": "09:00", "end": "18:00"}
    return agent_schemas.TenantAgentConfig(
        tenant_id=tenant_id,
        enabled=True,
        provider="openai",
        model="gpt-4o-mini",
        language="es",
        business_hours_only=True,
        auto_schedule_appointments=True,
        auto_create_orders=False,
        timezone="America/Mexico_City",
        business_hours={
            "Monday": weekday,
            "Tuesday": weekday,
            "Wednesday": weekday,
            "Thursday": weekday,
            "Friday": weekday,
            "Saturday": {"start": "09:00", "end": "14:00"},
            "Sunday": None,
        },
        services=[
            {"name": "Oil change", "price": 300, "duration_minutes": 60},
            {"name": "Brake inspection", "price": 450, "duration_minutes": 90},
            {"name": "Oil filter", "price": 150, "duration_minutes": 30},
        ],
        policies={"payment_methods": ["cash", "card"], "escalation_keywords": ["queja"]},
        faqs=[{"question": "¿Tienen estacionamiento?", "answer": "Sí, gratuito."}],
    )


@pytest.fixture
def workshop_repo() -> InMemoryWorkshopRepository:
    return InMemoryWorkshopRepository()


@pytest.fixture
def conversation_repo() -> InMemoryConversationRepository:
    return InMemoryConversationRepository()


@pytest.fixture
def agent_repo(tenant_id, agent_config) -> InMemoryAgentConfigRepository:
    repo = InMemoryAgentConfigRepository()
    repo.configs[tenant_id] = agent_config
    repo.facts[tenant_id] = agent_schemas.BusinessFacts(
        name="Taller Rápido", address="Av. Insurgentes 100", phone="5550001111"
    )
    repo.channels[tenant_id] = agent_schemas.WhatsAppChannelConfig(
        tenant_id=tenant_id,
        provider="meta",
        phone_number_id="1234567890",
        access_token="meta-token",
        webhook_secret="meta-secret",
        verify_token="verify-me",
    )
    return repo


@pytest.fixture
def tool_services(workshop_repo, conversation_repo, settings) -> ToolServices:
    customers = CustomerResolver(workshop_repo, settings)
    return ToolServices(
        customers=customers,
        vehicles=VehicleRegistry(workshop_repo),
        scheduler=AppointmentScheduler(workshop_repo, settings),
        orders=WorkOrderCreator(workshop_repo),
        conversations=MessageStoreGateway(conversation_repo, customers),
    )


@pytest.fixture
def tool_registry(tool_services, settings) -> ToolRegistry:
    return ToolRegistry(tool_services, settings=settings)


@pytest.fixture
def tool_context(tenant_id, agent_config, tool_services) -> ToolContext:
    conversation = tool_services.conversations.resolve_or_create_conversation(
        tenant_id, CUSTOMER_PHONE, customer_name="Ana López"
    )
    return ToolContext(
        tenant_id=tenant_id,
        conversation_id=conversation.id,
        customer_phone=conversation.customer_phone,
        config=agent_config,
        customer_name="Ana López",
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_handler(conversation_repo, agent_repo, workshop_repo, settings, transport):
    def _make(provider=None, *, now=WEDNESDAY_MORNING, **overrides):
        provider = provider if provider is not None else StubProvider()
        overrides.setdefault("provider_factory", lambda config: provider)
        overrides.setdefault("transport_factory", lambda channel: transport)
        return build_handler(
            conversation_repo,
            agent_repo,
            workshop_repo,
            settings=settings,
            clock=lambda: now,
            **overrides,
        )

    return _make
