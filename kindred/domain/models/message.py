from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from enum import Enum
import secrets

from .tool import ToolCall, ToolResult


def utcnow() -> datetime:
    """Timezone-aware current time"""
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Author of a conversational turn"""
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """One concrete version of a turn. Never mutated; edits create a new message."""
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: Optional[str] = Field(None, description="Text content, absent for tool bookkeeping turns")
    sent_at: datetime = Field(default_factory=utcnow)
    freewill: bool = Field(False, description="Synthesized by the unprompted-speech path or marks an eviction boundary")
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResult] = None

    @classmethod
    def user(cls, content: str, freewill: bool = False) -> "ChatMessage":
        return cls(role=MessageRole.USER, content=content, freewill=freewill)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=MessageRole.ASSISTANT, content=content)

    @classmethod
    def from_tool_call(cls, call: ToolCall) -> "ChatMessage":
        return cls(role=MessageRole.ASSISTANT, tool_call=call)

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> "ChatMessage":
        return cls(role=MessageRole.USER, tool_result=result)

    @property
    def is_user_text(self) -> bool:
        """Plain-text user turn (not a tool result)"""
        return self.role == MessageRole.USER and self.tool_result is None and self.content is not None

    @property
    def is_tool_turn(self) -> bool:
        return self.tool_call is not None or self.tool_result is not None

    def as_boundary(self) -> "ChatMessage":
        """Copy of this message flagged as an eviction boundary"""
        return self.model_copy(update={"freewill": True})


class MessageIdentifier(BaseModel):
    """Where a turn lives on the chat platform.

    Identity is (message_id, channel_id, synthetic); secondary ids are payload
    for replies that were split across several platform messages.
    """
    model_config = ConfigDict(frozen=True)

    message_id: int
    channel_id: int = 0
    secondary_ids: Tuple[int, ...] = ()
    synthetic: bool = False

    @classmethod
    def new_synthetic(cls) -> "MessageIdentifier":
        """Random identifier for turns with no platform counterpart"""
        return cls(
            message_id=secrets.randbits(63),
            channel_id=secrets.randbits(63),
            synthetic=True
        )

    @property
    def key(self) -> Tuple[int, int, bool]:
        return (self.message_id, self.channel_id, self.synthetic)

    def all_ids(self) -> Tuple[int, ...]:
        """Primary id followed by the secondary ids"""
        return (self.message_id,) + tuple(i for i in self.secondary_ids if i != self.message_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MessageIdentifier):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)
