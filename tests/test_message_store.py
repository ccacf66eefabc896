from datetime import datetime, timedelta, timezone

import pytest

from concierge.adapters import CustomerResolver
from concierge.conversations import MessageStoreGateway
from concierge.conversations.schemas import MessageCreate
from concierge.errors import DuplicateMessageError, StoreError


@pytest.fixture
def gateway(conversation_repo, workshop_repo, settings):
    return MessageStoreGateway(conversation_repo, CustomerResolver(workshop_repo, settings))


def _message(tenant_id, direction, body, minutes, status=None):
    return MessageCreate(
        tenant_id=tenant_id,
        direction=direction,
        body=body,
        delivery_status=status or ("received" if direction == "inbound" else "sent"),
        created_at=datetime(2024, 6, 5, 16, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )


def test_replaying_first_contact_creates_one_conversation_and_customer(
    gateway, conversation_repo, workshop_repo, tenant_id
):
    first = gateway.resolve_or_create_conversation(tenant_id, "5215512345678", customer_name="Ana")
    again = gateway.resolve_or_create_conversation(tenant_id, "whatsapp:+525512345678")

    assert first.id == again.id
    assert len(conversation_repo.conversations) == 1
    assert len(workshop_repo.customers) == 1
    assert first.customer_phone == "+525512345678"
    assert first.customer_name == "Ana"
    assert first.customer_id == next(iter(workshop_repo.customers))


def test_closed_conversation_is_not_reused(gateway, conversation_repo, tenant_id):
    first = gateway.resolve_or_create_conversation(tenant_id, "5512345678")
    conversation_repo.conversations[first.id] = first.model_copy(update={"status": "closed"})

    second = gateway.resolve_or_create_conversation(tenant_id, "5512345678")

    assert second.id != first.id


def test_history_is_latest_usable_messages_oldest_first(gateway, tenant_id):
    convo = gateway.resolve_or_create_conversation(tenant_id, "5512345678")
    gateway.append_message(convo.id, _message(tenant_id, "inbound", "hola", 0))
    gateway.append_message(convo.id, _message(tenant_id, "outbound", "¡Hola!", 1))
    gateway.append_message(convo.id, _message(tenant_id, "outbound", "not delivered", 2, "failed"))
    gateway.append_message(convo.id, _message(tenant_id, "inbound", "", 3))
    gateway.append_message(convo.id, _message(tenant_id, "inbound", "precio?", 4))
    gateway.append_message(convo.id, _message(tenant_id, "outbound", "$300", 5))

    history = gateway.recent_history(convo.id, 3)

    assert [(turn.role, turn.text) for turn in history] == [
        ("assistant", "¡Hola!"),
        ("user", "precio?"),
        ("assistant", "$300"),
    ]
    assert gateway.recent_history(convo.id, 0) == []


def test_append_updates_last_message_time(gateway, tenant_id):
    convo = gateway.resolve_or_create_conversation(tenant_id, "5512345678")
    gateway.append_message(convo.id, _message(tenant_id, "inbound", "hola", 7))

    stored = gateway.get_conversation(convo.id)

    assert stored.last_message_at == datetime(2024, 6, 5, 16, 7, tzinfo=timezone.utc)


def test_store_errors_for_unknown_conversation_and_missing_phone(gateway, tenant_id):
    import uuid

    with pytest.raises(StoreError):
        gateway.get_conversation(uuid.uuid4())
    with pytest.raises(StoreError):
        gateway.append_message(uuid.uuid4(), _message(tenant_id, "inbound", "hola", 0))
    with pytest.raises(StoreError):
        gateway.resolve_or_create_conversation(tenant_id, "")


def test_bot_flag_can_be_toggled(gateway, tenant_id):
    convo = gateway.resolve_or_create_conversation(tenant_id, "5512345678")

    gateway.set_bot_active(convo.id, False)

    assert gateway.get_conversation(convo.id).bot_active is False


def test_inbound_provider_ids_are_recorded_once_per_tenant(
    gateway, conversation_repo, tenant_id
):
    convo = gateway.resolve_or_create_conversation(tenant_id, "5512345678")
    inbound = _message(tenant_id, "inbound", "hola", 0).model_copy(
        update={"provider_message_id": "wamid.1"}
    )
    gateway.append_message(convo.id, inbound)

    with pytest.raises(DuplicateMessageError) as excinfo:
        gateway.append_message(convo.id, inbound)

    assert excinfo.value.conversation_id == convo.id
    assert gateway.find_inbound(tenant_id, "wamid.1").conversation_id == convo.id
    assert gateway.find_inbound(tenant_id, None) is None

    # Outbound rows may carry the same id, e.g. a transport echo.
    outbound = _message(tenant_id, "outbound", "¡Hola!", 1).model_copy(
        update={"provider_message_id": "wamid.1"}
    )
    gateway.append_message(convo.id, outbound)
    assert len(conversation_repo.messages[convo.id]) == 2
