from typing import List, Optional
from pydantic import BaseModel, Field
from enum import Enum

from .message import ChatMessage, MessageIdentifier
from .tool import ToolCall


class ContextMode(str, Enum):
    """How the context window for a turn is assembled"""
    USER = "user"
    FREEWILL = "freewill"
    REGEN = "regen"


class PendingPrompt(BaseModel):
    """Inbound user text and the identifier it will be committed under"""
    content: str
    identifier: MessageIdentifier


class EvictionPlan(BaseModel):
    """Oldest turns to evict, and the turn to stamp as the eviction boundary"""
    boundary: MessageIdentifier
    identifiers: List[MessageIdentifier] = Field(default_factory=list)


class ContextWindow(BaseModel):
    """Per-call view of the conversation handed to the completion provider"""
    user_prompt: Optional[ChatMessage] = Field(None, description="Pending user turn, not yet in the store")
    system_prompt: str = Field(description="Rendered system preamble")
    history: List[ChatMessage] = Field(default_factory=list, description="Ordered history, oldest first")
    overflow: Optional[List[ChatMessage]] = Field(None, description="Evicted batch for long-term storage")
    eviction: Optional[EvictionPlan] = Field(None, description="Overflow still in the store, evicted when the turn commits")


class CompletionResult(BaseModel):
    """Either a final text answer or a tool call"""
    text: Optional[str] = None
    tool_call: Optional[ToolCall] = None

    @property
    def is_tool_call(self) -> bool:
        return self.tool_call is not None
