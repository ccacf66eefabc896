import logging
import uuid
from datetime import datetime, timezone

from concierge.agents.prompts import canned_text
from concierge.agents.schemas import ProviderResponse
from concierge.conversations.models import NormalizedMessage
from concierge.errors import ConfigurationError, ProviderError, StoreError
from conftest import SUNDAY_NOON, StubProvider, tool_call

PHONE = "5215512345678"


def _inbound(tenant_id, body, phone=PHONE, **kwargs):
    return NormalizedMessage(
        tenant_id=tenant_id,
        from_phone=phone,
        to_phone="15550001111",
        body=body,
        provider_message_id=kwargs.pop("provider_message_id", None) or f"wamid.{uuid.uuid4().hex}",
        sent_at=datetime(2024, 6, 5, 16, 0, tzinfo=timezone.utc),
        sender_name=kwargs.pop("sender_name", "Ana López"),
        **kwargs,
    )


def test_booking_scenario_creates_one_appointment_and_one_reply(
    make_handler, tenant_id, workshop_repo, conversation_repo, transport
):
    provider = StubProvider(
        [
            ProviderResponse(
                tool_calls=[
                    tool_call(
                        "create_appointment_request",
                        service_type="Oil change",
                        vehicle_description="Nissan Versa 2019",
                        date="2024-06-07",
                        time="14:00",
                    )
                ]
            ),
            ProviderResponse(text="¡Listo! Tu cita es el viernes 7 a las 14:00."),
        ]
    )
    handler = make_handler(provider)

    result = handler.handle(
        _inbound(
            tenant_id,
            "Quiero agendar un cambio de aceite para el viernes a las 14:00",
            provider_message_id="wamid.in",
        )
    )

    assert result.status == "replied"
    assert result.delivered
    assert result.provider_calls == 2
    (appointment,) = workshop_repo.appointments.values()
    assert appointment.service_type == "Oil change"
    assert appointment.status == "confirmed"
    assert transport.sent == [
        {"to": PHONE, "text": "¡Listo! Tu cita es el viernes 7 a las 14:00.", "media_url": None}
    ]
    stored = conversation_repo.messages[result.conversation_id]
    assert [(m.direction, m.delivery_status) for m in stored] == [
        ("inbound", "received"),
        ("outbound", "sent"),
    ]
    assert stored[0].provider_message_id == "wamid.in"
    prompt = provider.calls[0]["system_prompt"]
    assert "2024-06-05 (Miércoles)" in prompt


def test_sunday_message_gets_closed_reply_without_provider_calls(
    make_handler, tenant_id, transport, agent_config
):
    provider = StubProvider()
    handler = make_handler(provider, now=SUNDAY_NOON)

    result = handler.handle(_inbound(tenant_id, "¿Abren hoy?"))

    assert result.status == "closed"
    assert provider.calls == []
    assert result.provider_calls == 0
    assert transport.sent[0]["text"].startswith("¡Gracias por escribirnos! En este momento estamos cerrados.")


def test_replayed_first_contact_creates_single_conversation_and_customer(
    make_handler, tenant_id, workshop_repo, conversation_repo
):
    handler = make_handler(StubProvider(always=ProviderResponse(text="Hola")))

    first = handler.handle(_inbound(tenant_id, "hola"))
    second = handler.handle(_inbound(tenant_id, "hola", phone="+52 1 55 1234 5678"))

    assert first.conversation_id == second.conversation_id
    assert len(conversation_repo.conversations) == 1
    assert len(workshop_repo.customers) == 1
    (customer,) = workshop_repo.customers.values()
    assert customer.name == "Ana López"


def test_redelivered_message_is_acknowledged_without_a_second_turn(
    make_handler, tenant_id, conversation_repo, transport
):
    provider = StubProvider(always=ProviderResponse(text="Hola, ¿en qué te ayudo?"))
    handler = make_handler(provider)

    first = handler.handle(_inbound(tenant_id, "hola", provider_message_id="wamid.again"))
    again = handler.handle(_inbound(tenant_id, "hola", provider_message_id="wamid.again"))

    assert first.status == "replied"
    assert again.status == "duplicate"
    assert again.conversation_id == first.conversation_id
    assert not again.delivered
    assert len(provider.calls) == 1
    assert len(transport.sent) == 1
    stored = conversation_repo.messages[first.conversation_id]
    assert [m.direction for m in stored] == ["inbound", "outbound"]


def test_history_excludes_the_current_message(make_handler, tenant_id):
    provider = StubProvider(always=ProviderResponse(text="¿Qué servicio necesitas?"))
    handler = make_handler(provider)

    handler.handle(_inbound(tenant_id, "hola"))
    handler.handle(_inbound(tenant_id, "quiero una cita"))

    transcript = provider.calls[1]["transcript"]
    assert [(e.role, e.content) for e in transcript] == [
        ("user", "hola"),
        ("assistant", "¿Qué servicio necesitas?"),
        ("user", "quiero una cita"),
    ]


def test_media_without_caption_reaches_the_model_as_kind(make_handler, tenant_id):
    provider = StubProvider()
    handler = make_handler(provider)

    handler.handle(_inbound(tenant_id, "", kind="image", media_url="https://cdn.test/a.jpg"))

    assert provider.calls[0]["transcript"][-1].content == "[image]"


def test_unconfigured_tenant_gets_no_reply(
    make_handler, tenant_id, agent_repo, transport, conversation_repo, caplog
):
    del agent_repo.configs[tenant_id]
    handler = make_handler()

    with caplog.at_level(logging.WARNING, logger="concierge"):
        result = handler.handle(_inbound(tenant_id, "hola"))

    assert result.status == "not_configured"
    assert result.error_kind == "not_configured"
    assert transport.sent == []
    assert len(conversation_repo.messages[result.conversation_id]) == 1
    assert any(getattr(r, "event", None) == "tenant_not_configured" for r in caplog.records)


def test_disabled_bot_and_paused_conversation_stay_silent(
    make_handler, tenant_id, agent_repo, conversation_repo, transport
):
    handler = make_handler()
    agent_repo.configs[tenant_id] = agent_repo.configs[tenant_id].model_copy(update={"enabled": False})
    assert handler.handle(_inbound(tenant_id, "hola")).status == "disabled"

    agent_repo.configs[tenant_id] = agent_repo.configs[tenant_id].model_copy(update={"enabled": True})
    convo_id = next(iter(conversation_repo.conversations))
    conversation_repo.set_bot_active(convo_id, False)
    assert handler.handle(_inbound(tenant_id, "hola?")).status == "bot_paused"
    assert transport.sent == []


def test_escalation_pauses_following_turns(make_handler, tenant_id, transport):
    provider = StubProvider(
        [
            ProviderResponse(tool_calls=[tool_call("escalate_to_human", reason="queja")]),
            ProviderResponse(text="Un asesor te contactará en breve."),
        ]
    )
    handler = make_handler(provider)

    first = handler.handle(_inbound(tenant_id, "Tengo una queja"))
    second = handler.handle(_inbound(tenant_id, "¿hola?"))

    assert first.escalated
    assert second.status == "bot_paused"
    assert len(transport.sent) == 1


def test_missing_credentials_yield_apology(make_handler, tenant_id, transport):
    def no_key(config):
        raise ConfigurationError("No API key configured for provider 'openai'")

    result = make_handler(provider_factory=no_key).handle(_inbound(tenant_id, "hola"))

    assert result.status == "failed"
    assert result.error_kind == "configuration"
    assert transport.sent[0]["text"] == canned_text("es", "apology")


def test_provider_outage_yields_apology_after_one_retry(make_handler, tenant_id, transport):
    provider = StubProvider(errors=[ProviderError("timeout"), ProviderError("timeout")])

    result = make_handler(provider).handle(_inbound(tenant_id, "hola"))

    assert result.status == "failed"
    assert result.error_kind == "provider"
    assert result.provider_calls == 2
    assert transport.sent[0]["text"] == canned_text("es", "apology")


def test_exhausted_loop_sends_fallback(make_handler, tenant_id, transport, settings):
    provider = StubProvider(always=ProviderResponse(tool_calls=[tool_call("get_services_info")]))

    result = make_handler(provider).handle(_inbound(tenant_id, "precios"))

    assert result.status == "fallback"
    assert result.provider_calls == settings.max_tool_rounds + 1
    assert transport.sent[0]["text"] == canned_text("es", "fallback")


def test_store_failure_before_the_turn_is_reported(
    make_handler, tenant_id, conversation_repo, transport
):
    def broken(conversation_id, limit):
        raise StoreError("load history failed")

    conversation_repo.recent_messages = broken

    result = make_handler().handle(_inbound(tenant_id, "hola"))

    assert result.status == "failed"
    assert result.error_kind == "store"
    assert transport.sent == []


def test_store_failure_during_tool_call_apologizes(make_handler, tenant_id, workshop_repo, transport):
    def broken(*args, **kwargs):
        raise StoreError("upsert customer failed")

    provider = StubProvider(
        [
            ProviderResponse(text="Hola, ¿en qué te ayudo?"),
            ProviderResponse(
                tool_calls=[
                    tool_call(
                        "create_appointment_request",
                        service_type="Oil change",
                        vehicle_description="Versa",
                        date="2024-06-07",
                        time="14:00",
                    )
                ]
            )
        ]
    )

    handler = make_handler(provider)
    handler.handle(_inbound(tenant_id, "hola"))
    workshop_repo.upsert_customer = broken

    result = handler.handle(_inbound(tenant_id, "agenda"))

    assert result.status == "failed"
    assert result.error_kind == "store"
    assert transport.sent[-1]["text"] == canned_text("es", "apology")


def test_unexpected_errors_never_escape(make_handler, tenant_id):
    def explode(config):
        raise RuntimeError("boom")

    result = make_handler(provider_factory=explode).handle(_inbound(tenant_id, "hola"))

    assert result.status == "failed"
    assert result.error_kind == "internal"
