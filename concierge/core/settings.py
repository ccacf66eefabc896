"""Runtime settings for the WhatsApp bot, read from the environment."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache


@dataclasses.dataclass(frozen=True)
class BotSettings:
    """Knobs shared by the orchestration loop, adapters and transports."""

    max_tool_rounds: int = 6
    history_limit: int = 10
    provider_timeout_seconds: float = 30.0
    provider_retry_backoff_seconds: float = 1.0
    quote_tax_rate: float = 0.16
    slot_minutes: int = 60
    default_duration_minutes: int = 60
    default_country_code: str = "52"
    meta_graph_url: str = "https://graph.facebook.com/v21.0"
    waha_api_url: str | None = None
    waha_api_key: str | None = None
    dispatch_timeout_seconds: float = 15.0


@lru_cache(maxsize=1)
def get_bot_settings() -> BotSettings:
    """Load settings from the environment with development defaults."""

    defaults = BotSettings()
    waha_url = os.getenv("WAHA_API_URL")
    return BotSettings(
        max_tool_rounds=int(os.getenv("BOT_MAX_TOOL_ROUNDS", str(defaults.max_tool_rounds))),
        history_limit=int(os.getenv("BOT_HISTORY_LIMIT", str(defaults.history_limit))),
        provider_timeout_seconds=float(
            os.getenv("LLM_TIMEOUT_SECONDS", str(defaults.provider_timeout_seconds))
        ),
        provider_retry_backoff_seconds=float(
            os.getenv("LLM_RETRY_BACKOFF_SECONDS", str(defaults.provider_retry_backoff_seconds))
        ),
        quote_tax_rate=float(os.getenv("QUOTE_TAX_RATE", str(defaults.quote_tax_rate))),
        slot_minutes=int(os.getenv("BOT_SLOT_MINUTES", str(defaults.slot_minutes))),
        default_duration_minutes=int(
            os.getenv("BOT_DEFAULT_DURATION_MINUTES", str(defaults.default_duration_minutes))
        ),
        default_country_code=os.getenv("DEFAULT_COUNTRY_CODE", defaults.default_country_code),
        meta_graph_url=os.getenv("META_GRAPH_URL", defaults.meta_graph_url).rstrip("/"),
        waha_api_url=waha_url.rstrip("/") if waha_url else None,
        waha_api_key=os.getenv("WAHA_API_KEY"),
        dispatch_timeout_seconds=float(
            os.getenv("DISPATCH_TIMEOUT_SECONDS", str(defaults.dispatch_timeout_seconds))
        ),
    )


def reset_bot_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_bot_settings.cache_clear()
