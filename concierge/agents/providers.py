"""LLM provider strategies and credential resolution.

The orchestration loop talks to :class:`LLMProvider` only; each strategy
translates the provider-neutral transcript and tool declarations to its
vendor's wire format and back.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import anthropic
import openai

from ..core.settings import BotSettings, get_bot_settings
from ..errors import ConfigurationError, ProviderError
from . import schemas
from .tools import ToolDeclaration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCredentials:
    """Container for credentials resolved for a provider."""

    provider: str
    api_key: str | None
    extras: dict[str, str]


class ProviderRegistry:
    """Resolve provider credentials from environment or explicit overrides."""

    _DEFAULT_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
    }
    _BASE_URL_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_BASE_URL",
        "anthropic": "ANTHROPIC_BASE_URL",
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {
            (k.lower() if isinstance(k, str) else k): dict(v)
            for k, v in (overrides or {}).items()
        }

    def get_credentials(self, provider: str) -> ProviderCredentials:
        """Return credentials for ``provider``.

        The lookup order prefers explicit overrides (e.g. injected during
        testing) and falls back to environment variables using
        ``_DEFAULT_ENV_MAP``.
        """

        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=provider,
                api_key=override.get("api_key"),
                extras={k: v for k, v in override.items() if k != "api_key"},
            )
        env_var = self._DEFAULT_ENV_MAP.get(key)
        api_key = os.getenv(env_var) if env_var else None
        extras: dict[str, str] = {}
        base_url_var = self._BASE_URL_ENV_MAP.get(key)
        base_url = os.getenv(base_url_var) if base_url_var else None
        if base_url:
            extras["base_url"] = base_url
        return ProviderCredentials(provider=provider, api_key=api_key, extras=extras)


class LLMProvider(Protocol):
    name: str

    def send_turn(
        self,
        system_prompt: str,
        transcript: Sequence[schemas.TranscriptEntry],
        tools: Sequence[ToolDeclaration],
        parameters: Mapping[str, Any],
    ) -> schemas.ProviderResponse: ...


def _parse_arguments(raw: str | None, tool_name: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        logger.warning("Discarding malformed arguments for tool %s", tool_name)
        return {}
    return value if isinstance(value, dict) else {}


# ---------------------------------------------------------------------------
# OpenAI


class OpenAIProvider:
    """Chat Completions with ``tools`` / ``tool_calls``."""

    name = "openai"

    def __init__(self, client: Any, model: str) -> None:
        self._client = client
        self._model = model

    @staticmethod
    def render_tools(tools: Sequence[ToolDeclaration]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    @staticmethod
    def render_messages(
        system_prompt: str, transcript: Sequence[schemas.TranscriptEntry]
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        for entry in transcript:
            if entry.role == "tool":
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": entry.tool_call_id,
                        "content": entry.content or "",
                    }
                )
            elif entry.role == "assistant" and entry.tool_calls:
                messages.append(
                    {
                        "role": "assistant",
                        "content": entry.content,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {
                                    "name": call.name,
                                    "arguments": json.dumps(call.arguments, ensure_ascii=False),
                                },
                            }
                            for call in entry.tool_calls
                        ],
                    }
                )
            else:
                messages.append({"role": entry.role, "content": entry.content or ""})
        return messages

    def send_turn(
        self,
        system_prompt: str,
        transcript: Sequence[schemas.TranscriptEntry],
        tools: Sequence[ToolDeclaration],
        parameters: Mapping[str, Any],
    ) -> schemas.ProviderResponse:
        request: dict[str, Any] = {
            "model": self._model,
            "messages": self.render_messages(system_prompt, transcript),
            **parameters,
        }
        if tools:
            request["tools"] = self.render_tools(tools)
        try:
            response = self._client.chat.completions.create(**request)
        except (
            openai.AuthenticationError,
            openai.PermissionDeniedError,
            openai.BadRequestError,
            openai.NotFoundError,
        ) as exc:
            raise ProviderError(f"OpenAI rejected the request: {exc}", retryable=False) from exc
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI call failed: {exc}") from exc

        message = response.choices[0].message
        calls = [
            schemas.ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=_parse_arguments(call.function.arguments, call.function.name),
            )
            for call in (message.tool_calls or [])
        ]
        return schemas.ProviderResponse(text=message.content, tool_calls=calls)


# ---------------------------------------------------------------------------
# Anthropic


class AnthropicProvider:
    """Messages API with ``tool_use`` / ``tool_result`` content blocks."""

    name = "anthropic"

    def __init__(self, client: Any, model: str) -> None:
        self._client = client
        self._model = model

    @staticmethod
    def render_tools(tools: Sequence[ToolDeclaration]) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
            for tool in tools
        ]

    @staticmethod
    def render_messages(
        transcript: Sequence[schemas.TranscriptEntry],
    ) -> list[dict[str, Any]]:
        """Build alternating user/assistant messages.

        Tool results of one round share a single user message, and consecutive
        plain text turns of the same role are merged.
        """

        messages: list[dict[str, Any]] = []
        for entry in transcript:
            if entry.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": entry.tool_call_id,
                    "content": entry.content or "",
                }
                last = messages[-1] if messages else None
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                    and all(part.get("type") == "tool_result" for part in last["content"])
                ):
                    last["content"].append(block)
                else:
                    messages.append({"role": "user", "content": [block]})
                continue

            if entry.role == "assistant" and entry.tool_calls:
                blocks: list[dict[str, Any]] = []
                if entry.content:
                    blocks.append({"type": "text", "text": entry.content})
                blocks.extend(
                    {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
                    for call in entry.tool_calls
                )
                messages.append({"role": "assistant", "content": blocks})
                continue

            text = entry.content or ""
            last = messages[-1] if messages else None
            if last is not None and last["role"] == entry.role and isinstance(last["content"], str):
                last["content"] = f"{last['content']}\n{text}"
            else:
                messages.append({"role": entry.role, "content": text})

        while messages and messages[0]["role"] != "user":
            messages.pop(0)
        return messages

    def send_turn(
        self,
        system_prompt: str,
        transcript: Sequence[schemas.TranscriptEntry],
        tools: Sequence[ToolDeclaration],
        parameters: Mapping[str, Any],
    ) -> schemas.ProviderResponse:
        request: dict[str, Any] = {
            "model": self._model,
            "system": system_prompt,
            "messages": self.render_messages(transcript),
            **parameters,
        }
        if tools:
            request["tools"] = self.render_tools(tools)
        try:
            response = self._client.messages.create(**request)
        except (
            anthropic.AuthenticationError,
            anthropic.PermissionDeniedError,
            anthropic.BadRequestError,
            anthropic.NotFoundError,
        ) as exc:
            raise ProviderError(f"Anthropic rejected the request: {exc}", retryable=False) from exc
        except anthropic.AnthropicError as exc:
            raise ProviderError(f"Anthropic call failed: {exc}") from exc

        texts: list[str] = []
        calls: list[schemas.ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(
                    schemas.ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
                )
        return schemas.ProviderResponse(text="\n".join(texts) or None, tool_calls=calls)


def build_provider(
    config: schemas.TenantAgentConfig,
    registry: ProviderRegistry | None = None,
    settings: BotSettings | None = None,
) -> LLMProvider:
    """Select the strategy for the tenant, failing fast on missing credentials."""

    registry = registry or ProviderRegistry()
    settings = settings or get_bot_settings()
    credentials = registry.get_credentials(config.provider)
    if not credentials.api_key:
        raise ConfigurationError(f"No API key configured for provider '{config.provider}'")
    base_url = credentials.extras.get("base_url")
    if config.provider == "openai":
        client = openai.OpenAI(
            api_key=credentials.api_key,
            base_url=base_url,
            timeout=settings.provider_timeout_seconds,
            max_retries=0,
        )
        return OpenAIProvider(client, config.model)
    if config.provider == "anthropic":
        client = anthropic.Anthropic(
            api_key=credentials.api_key,
            base_url=base_url,
            timeout=settings.provider_timeout_seconds,
            max_retries=0,
        )
        return AnthropicProvider(client, config.model)
    raise ConfigurationError(f"Unsupported provider '{config.provider}'")


__all__ = [
    "AnthropicProvider",
    "LLMProvider",
    "OpenAIProvider",
    "ProviderCredentials",
    "ProviderRegistry",
    "build_provider",
]
