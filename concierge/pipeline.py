"""Inbound message handling: one webhook message in, at most one reply out.

The handler never raises. Every outcome, including turn-fatal failures, comes
back as a :class:`WebhookResult` so the webhook route can always answer the
provider with a structured body.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Literal, Optional
from uuid import UUID

import psycopg
from pydantic import BaseModel

from .adapters import (
    AppointmentScheduler,
    CustomerResolver,
    PostgresWorkshopRepository,
    VehicleRegistry,
    WorkOrderCreator,
    WorkshopRepository,
)
from .adapters.schemas import PLACEHOLDER_CUSTOMER_NAME
from .agents.context import ContextBuilder
from .agents.orchestrator import ConversationOrchestrator, LoopState
from .agents.prompts import build_system_prompt, canned_text, closed_message
from .agents.providers import LLMProvider, ProviderRegistry, build_provider
from .agents.repository import AgentConfigRepository, PostgresAgentConfigRepository
from .agents.schemas import TenantAgentConfig
from .agents.tools import ToolContext, ToolRegistry, ToolServices
from .conversations.models import NormalizedMessage
from .conversations.repository import ConversationRepository, PostgresConversationRepository
from .conversations.schemas import Conversation, MessageCreate
from .conversations.service import MessageStoreGateway
from .core.settings import BotSettings, get_bot_settings
from .dispatch import OutboundDispatcher
from .errors import (
    ConfigurationError,
    DuplicateMessageError,
    StoreError,
    TenantNotConfiguredError,
)

logger = logging.getLogger(__name__)

TurnStatus = Literal[
    "replied",
    "fallback",
    "duplicate",
    "closed",
    "disabled",
    "bot_paused",
    "not_configured",
    "failed",
]

ProviderFactory = Callable[[TenantAgentConfig], LLMProvider]


class WebhookResult(BaseModel):
    """Structured outcome of handling one inbound message."""

    status: TurnStatus
    conversation_id: Optional[UUID] = None
    reply: Optional[str] = None
    delivered: bool = False
    provider_calls: int = 0
    tool_rounds: int = 0
    escalated: bool = False
    error_kind: Optional[str] = None


class InboundMessageHandler:
    """Drives one turn from a normalized message to the dispatched reply."""

    def __init__(
        self,
        messages: MessageStoreGateway,
        contexts: ContextBuilder,
        tools: ToolRegistry,
        dispatcher: OutboundDispatcher,
        *,
        orchestrator: Optional[ConversationOrchestrator] = None,
        provider_factory: Optional[ProviderFactory] = None,
        settings: Optional[BotSettings] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._messages = messages
        self._contexts = contexts
        self._tools = tools
        self._dispatcher = dispatcher
        self._settings = settings or get_bot_settings()
        self._orchestrator = orchestrator or ConversationOrchestrator(
            tools, settings=self._settings
        )
        self._provider_factory = provider_factory or self._default_provider
        self._clock = clock

    @property
    def contexts(self) -> ContextBuilder:
        return self._contexts

    def _default_provider(self, config: TenantAgentConfig) -> LLMProvider:
        return build_provider(config, ProviderRegistry(), self._settings)

    def handle(self, message: NormalizedMessage) -> WebhookResult:
        try:
            return self._handle(message)
        except Exception:
            logger.exception(
                "Unexpected failure while handling inbound message",
                extra={
                    "event": "turn_failed",
                    "tenant_id": str(message.tenant_id),
                    "error_kind": "internal",
                },
            )
            return WebhookResult(status="failed", error_kind="internal")

    # ------------------------------------------------------------------

    def _handle(self, message: NormalizedMessage) -> WebhookResult:
        tenant_id = message.tenant_id
        try:
            # Providers redeliver on timeouts; a repeat never runs a second turn.
            seen = self._messages.find_inbound(tenant_id, message.provider_message_id)
            if seen is not None:
                return self._duplicate(message, seen.conversation_id)
            conversation = self._messages.resolve_or_create_conversation(
                tenant_id, message.from_phone, customer_name=message.sender_name
            )
            # History is read before the new message lands so it is not sent twice.
            history = self._messages.recent_history(
                conversation.id, self._settings.history_limit
            )
            self._messages.append_message(
                conversation.id,
                MessageCreate(
                    tenant_id=tenant_id,
                    direction="inbound",
                    body=message.body,
                    kind=message.kind,
                    media_url=message.media_url,
                    provider_message_id=message.provider_message_id,
                    delivery_status="received",
                    metadata=dict(message.provider_metadata),
                    created_at=message.sent_at,
                ),
            )
        except DuplicateMessageError as exc:
            return self._duplicate(message, exc.conversation_id)
        except StoreError as exc:
            self._log_fatal(tenant_id, None, exc)
            return WebhookResult(status="failed", error_kind=exc.kind)

        try:
            return self._run_turn(message, conversation, history)
        except StoreError as exc:
            self._log_fatal(tenant_id, conversation.id, exc)
            return self._apologize(message, conversation, None, exc.kind)

    def _run_turn(self, message, conversation: Conversation, history) -> WebhookResult:
        tenant_id = message.tenant_id
        try:
            config = self._contexts.load_config(tenant_id)
            facts = self._contexts.load_business_facts(tenant_id)
        except TenantNotConfiguredError as exc:
            logger.warning(
                "Inbound message for a tenant without bot configuration: %s",
                exc,
                extra={
                    "event": "tenant_not_configured",
                    "tenant_id": str(tenant_id),
                    "conversation_id": str(conversation.id),
                    "error_kind": exc.kind,
                },
            )
            return WebhookResult(
                status="not_configured", conversation_id=conversation.id, error_kind=exc.kind
            )
        except ConfigurationError as exc:
            self._log_fatal(tenant_id, conversation.id, exc)
            return self._apologize(message, conversation, None, exc.kind)

        if not config.enabled:
            return WebhookResult(status="disabled", conversation_id=conversation.id)
        if not conversation.bot_active:
            return WebhookResult(status="bot_paused", conversation_id=conversation.id)

        now = self._clock()
        if not self._contexts.is_open(config, now):
            reply = closed_message(config)
            receipt = self._dispatcher.send(
                tenant_id, conversation.id, message.from_phone, reply
            )
            return WebhookResult(
                status="closed",
                conversation_id=conversation.id,
                reply=reply,
                delivered=receipt.success,
            )

        try:
            provider = self._provider_factory(config)
        except ConfigurationError as exc:
            self._log_fatal(tenant_id, conversation.id, exc)
            return self._apologize(message, conversation, config, exc.kind)

        customer_name = conversation.customer_name
        if not customer_name or customer_name == PLACEHOLDER_CUSTOMER_NAME:
            customer_name = message.sender_name
        context = ToolContext(
            tenant_id=tenant_id,
            conversation_id=conversation.id,
            customer_phone=conversation.customer_phone,
            config=config,
            customer_name=customer_name,
        )
        system_prompt = build_system_prompt(config, facts, self._tools.names(config), now=now)
        user_message = message.body or f"[{message.kind}]"
        outcome = self._orchestrator.run(provider, system_prompt, history, user_message, context)

        receipt = self._dispatcher.send(
            tenant_id, conversation.id, message.from_phone, outcome.reply
        )
        if outcome.state is LoopState.DONE:
            status = "replied"
        elif outcome.state is LoopState.EXHAUSTED:
            status = "fallback"
        else:
            status = "failed"
        return WebhookResult(
            status=status,
            conversation_id=conversation.id,
            reply=outcome.reply,
            delivered=receipt.success,
            provider_calls=outcome.provider_calls,
            tool_rounds=outcome.rounds,
            escalated=outcome.escalated,
            error_kind=outcome.error_kind,
        )

    def _apologize(
        self,
        message: NormalizedMessage,
        conversation: Conversation,
        config: Optional[TenantAgentConfig],
        error_kind: str,
    ) -> WebhookResult:
        reply = canned_text(config.language if config else None, "apology")
        delivered = False
        try:
            receipt = self._dispatcher.send(
                message.tenant_id, conversation.id, message.from_phone, reply
            )
            delivered = receipt.success
        except StoreError as exc:
            logger.error(
                "Could not record apology: %s",
                exc,
                extra={
                    "event": "apology_failed",
                    "tenant_id": str(message.tenant_id),
                    "conversation_id": str(conversation.id),
                    "error_kind": exc.kind,
                },
            )
        return WebhookResult(
            status="failed",
            conversation_id=conversation.id,
            reply=reply,
            delivered=delivered,
            error_kind=error_kind,
        )

    @staticmethod
    def _duplicate(message: NormalizedMessage, conversation_id: Optional[UUID]) -> WebhookResult:
        logger.info(
            "Ignoring redelivered message %s",
            message.provider_message_id,
            extra={
                "event": "duplicate_message",
                "tenant_id": str(message.tenant_id),
                "conversation_id": str(conversation_id) if conversation_id else None,
            },
        )
        return WebhookResult(status="duplicate", conversation_id=conversation_id)

    @staticmethod
    def _log_fatal(tenant_id: UUID, conversation_id: Optional[UUID], exc: Exception) -> None:
        logger.error(
            "Turn aborted: %s",
            exc,
            extra={
                "event": "turn_failed",
                "tenant_id": str(tenant_id),
                "conversation_id": str(conversation_id) if conversation_id else None,
                "error_kind": getattr(exc, "kind", "internal"),
            },
        )


def build_handler(
    conversations: ConversationRepository,
    agent_configs: AgentConfigRepository,
    workshop: WorkshopRepository,
    *,
    settings: Optional[BotSettings] = None,
    **kwargs,
) -> InboundMessageHandler:
    """Wire the gateway, adapters, tools and dispatcher over three repositories."""

    settings = settings or get_bot_settings()
    customers = CustomerResolver(workshop, settings)
    messages = MessageStoreGateway(conversations, customers)
    contexts = ContextBuilder(agent_configs)
    services = ToolServices(
        customers=customers,
        vehicles=VehicleRegistry(workshop),
        scheduler=AppointmentScheduler(workshop, settings),
        orders=WorkOrderCreator(workshop),
        conversations=messages,
    )
    tools = ToolRegistry(services, settings=settings)
    dispatcher = OutboundDispatcher(
        contexts,
        messages,
        transport_factory=kwargs.pop("transport_factory", None),
        settings=settings,
    )
    return InboundMessageHandler(
        messages, contexts, tools, dispatcher, settings=settings, **kwargs
    )


def create_postgres_handler(
    connection: psycopg.Connection, settings: Optional[BotSettings] = None
) -> InboundMessageHandler:
    return build_handler(
        PostgresConversationRepository(connection),
        PostgresAgentConfigRepository(connection),
        PostgresWorkshopRepository(connection),
        settings=settings,
    )


__all__ = [
    "InboundMessageHandler",
    "WebhookResult",
    "build_handler",
    "create_postgres_handler",
]
