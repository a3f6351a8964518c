from typing import Dict, Any
from pydantic import BaseModel, ConfigDict, Field


class ToolDefinition(BaseModel):
    """Tool description handed to the completion provider"""
    name: str = Field(description="Name the provider calls the tool by")
    description: str = Field(description="What the tool does and when to use it")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="JSON schema of the arguments")


class ToolCall(BaseModel):
    """A tool invocation requested by the completion provider"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Provider-assigned call identifier")
    name: str = Field(description="Requested tool name")
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of a dispatched tool call, fed back to the provider"""
    model_config = ConfigDict(frozen=True)

    call_id: str
    name: str
    content: str
