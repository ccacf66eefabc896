"""Bot configuration, tool catalogue and the LLM orchestration loop."""

from . import schemas
from .context import ContextBuilder
from .orchestrator import ConversationOrchestrator, LoopState, TurnOutcome
from .tools import ToolContext, ToolRegistry, ToolServices

__all__ = [
    "ContextBuilder",
    "ConversationOrchestrator",
    "LoopState",
    "ToolContext",
    "ToolRegistry",
    "ToolServices",
    "TurnOutcome",
    "schemas",
]
