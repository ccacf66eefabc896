"""Bounded tool-calling loop driving one conversation turn.

The loop is a small state machine::

    AWAITING_MODEL --text--> DONE
    AWAITING_MODEL --tool calls--> EXECUTING_TOOLS --> AWAITING_MODEL
    AWAITING_MODEL --tool calls, round budget spent--> EXHAUSTED
    AWAITING_MODEL --provider error--> FAILED

It only sees the provider-neutral :class:`~concierge.agents.schemas.ProviderResponse`,
so adding a provider never touches this module.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Optional

from ..conversations.schemas import HistoryTurn
from ..core.settings import BotSettings, get_bot_settings
from ..errors import ProviderError
from . import schemas
from .prompts import canned_text
from .providers import LLMProvider
from .responses import ResponseParameterStore
from .tools import ToolContext, ToolDeclaration, ToolRegistry

logger = logging.getLogger(__name__)


class LoopState(str, enum.Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass
class TurnOutcome:
    state: LoopState
    reply: str
    rounds: int = 0
    provider_calls: int = 0
    tool_results: list[tuple[schemas.ToolCall, schemas.ToolResult]] = field(default_factory=list)
    error_kind: Optional[str] = None
    escalated: bool = False


class ConversationOrchestrator:
    def __init__(
        self,
        tools: ToolRegistry,
        responses: Optional[ResponseParameterStore] = None,
        settings: Optional[BotSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._tools = tools
        self._responses = responses or ResponseParameterStore()
        self._settings = settings or get_bot_settings()
        self._sleep = sleep

    def run(
        self,
        provider: LLMProvider,
        system_prompt: str,
        history: Sequence[HistoryTurn],
        user_message: str,
        context: ToolContext,
    ) -> TurnOutcome:
        """Drive the model until it answers, the round budget runs out or it fails."""

        config = context.config
        max_rounds = self._settings.max_tool_rounds
        declarations = self._tools.declarations(config)
        parameters = self._responses.for_tenant(config)
        transcript: list[schemas.TranscriptEntry] = [
            schemas.TranscriptEntry(role=turn.role, content=turn.text) for turn in history
        ]
        transcript.append(schemas.TranscriptEntry(role="user", content=user_message))

        outcome = TurnOutcome(state=LoopState.AWAITING_MODEL, reply="")
        response = schemas.ProviderResponse()
        while True:
            if outcome.state is LoopState.AWAITING_MODEL:
                try:
                    response = self._call_provider(
                        provider, system_prompt, transcript, declarations, parameters, outcome
                    )
                except ProviderError as exc:
                    logger.error(
                        "Provider %s failed: %s",
                        provider.name,
                        exc,
                        extra={
                            "event": "provider_failed",
                            "tenant_id": str(context.tenant_id),
                            "conversation_id": str(context.conversation_id),
                            "error_kind": exc.kind,
                        },
                    )
                    outcome.state = LoopState.FAILED
                    outcome.error_kind = exc.kind
                    outcome.reply = canned_text(config.language, "apology")
                    break
                if not response.requests_tools:
                    outcome.state = LoopState.DONE
                    outcome.reply = (response.text or "").strip() or canned_text(
                        config.language, "fallback"
                    )
                    break
                if outcome.rounds >= max_rounds:
                    logger.warning(
                        "Tool round budget of %s exhausted",
                        max_rounds,
                        extra={
                            "event": "tool_rounds_exhausted",
                            "tenant_id": str(context.tenant_id),
                            "conversation_id": str(context.conversation_id),
                        },
                    )
                    outcome.state = LoopState.EXHAUSTED
                    outcome.reply = canned_text(config.language, "fallback")
                    break
                outcome.state = LoopState.EXECUTING_TOOLS

            elif outcome.state is LoopState.EXECUTING_TOOLS:
                outcome.rounds += 1
                transcript.append(
                    schemas.TranscriptEntry(
                        role="assistant", content=response.text, tool_calls=response.tool_calls
                    )
                )
                # Sequential: a later call may depend on what an earlier one changed.
                for call in response.tool_calls:
                    result = self._tools.execute(call, context)
                    outcome.tool_results.append((call, result))
                    transcript.append(
                        schemas.TranscriptEntry(
                            role="tool",
                            content=result.to_content(),
                            tool_call_id=call.id,
                            name=call.name,
                        )
                    )
                outcome.state = LoopState.AWAITING_MODEL

        outcome.escalated = context.escalated
        return outcome

    def _call_provider(
        self,
        provider: LLMProvider,
        system_prompt: str,
        transcript: Sequence[schemas.TranscriptEntry],
        declarations: Sequence[ToolDeclaration],
        parameters: dict,
        outcome: TurnOutcome,
    ) -> schemas.ProviderResponse:
        """One provider call, retried once after a backoff when retryable."""

        attempts = 2
        for attempt in range(1, attempts + 1):
            outcome.provider_calls += 1
            try:
                return provider.send_turn(system_prompt, transcript, declarations, parameters)
            except ProviderError as exc:
                if not exc.retryable or attempt == attempts:
                    raise
                logger.warning("Provider %s failed, retrying once: %s", provider.name, exc)
                self._sleep(self._settings.provider_retry_backoff_seconds)
        raise AssertionError("unreachable")


__all__ = ["ConversationOrchestrator", "LoopState", "TurnOutcome"]
