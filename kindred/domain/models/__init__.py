from .tool import ToolCall, ToolDefinition, ToolResult
from .message import ChatMessage, MessageIdentifier, MessageRole, utcnow
from .branch import BranchNode, BranchVersion
from .conversation import CompletionResult, ContextMode, ContextWindow, EvictionPlan, PendingPrompt

__all__ = [
    "BranchNode",
    "BranchVersion",
    "ChatMessage",
    "CompletionResult",
    "ContextMode",
    "ContextWindow",
    "EvictionPlan",
    "MessageIdentifier",
    "MessageRole",
    "PendingPrompt",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "utcnow",
]
