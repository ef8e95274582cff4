"""Core orchestration components."""

from .states import RunGraphState, TurnResult
from .tool_registry import RegisteredTool, ToolRegistry, function_tool
from .poller import RunPoller
from .dispatcher import ToolCallDispatcher
from .recovery import KeywordFallback
from .graph import RunOrchestrator
from .session import ConversationMessage, ConversationSession
from .prompt_builder import PromptBuilder

__all__ = [
    "ConversationMessage",
    "ConversationSession",
    "KeywordFallback",
    "PromptBuilder",
    "RegisteredTool",
    "RunGraphState",
    "RunOrchestrator",
    "RunPoller",
    "ToolCallDispatcher",
    "ToolRegistry",
    "TurnResult",
    "function_tool",
]
