from typing import Any, Dict, List, Optional
import uuid
import structlog
from langchain_core.embeddings import Embeddings
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from kindred.domain.exceptions import ProviderError
from kindred.domain.interfaces import CompletionProvider, EmbeddingProvider
from kindred.domain.models import ChatMessage, CompletionResult, MessageRole, ToolCall, ToolDefinition

logger = structlog.get_logger(__name__)


def to_langchain_message(message: ChatMessage) -> BaseMessage:
    """Convert a stored turn to the LangChain message the model expects"""

    if message.tool_call is not None:
        call = message.tool_call
        return AIMessage(
            content="",
            tool_calls=[{"name": call.name, "args": dict(call.arguments), "id": call.id}]
        )

    if message.tool_result is not None:
        result = message.tool_result
        return ToolMessage(content=result.content, tool_call_id=result.call_id, name=result.name)

    if message.role == MessageRole.ASSISTANT:
        return AIMessage(content=message.content or "")

    return HumanMessage(content=message.content or "")


def to_openai_tool(definition: ToolDefinition) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": definition.name,
            "description": definition.description,
            "parameters": definition.parameters
        }
    }


def message_text(message: BaseMessage) -> str:
    """Plain text of a model reply, joining text blocks of multi-part content"""

    content = message.content
    if isinstance(content, str):
        return content

    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class LangChainCompletionProvider(CompletionProvider):
    """Completion provider backed by any LangChain chat model"""

    def __init__(self, model: BaseChatModel, name: str = "langchain"):
        self.model = model
        self.name = name

    async def complete(
        self,
        system_prompt: str,
        history: List[ChatMessage],
        user_prompt: Optional[ChatMessage] = None,
        tools: Optional[List[ToolDefinition]] = None
    ) -> CompletionResult:
        messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
        messages.extend(to_langchain_message(message) for message in history)
        if user_prompt is not None:
            messages.append(to_langchain_message(user_prompt))

        runnable = self.model.bind_tools([to_openai_tool(tool) for tool in tools]) if tools else self.model

        try:
            response = await runnable.ainvoke(messages)
        except Exception as e:
            raise ProviderError(f"completion failed: {e}", provider=self.name) from e

        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            if len(tool_calls) > 1:
                logger.warning("Model requested several tools, using the first", count=len(tool_calls))

            call = tool_calls[0]
            return CompletionResult(
                tool_call=ToolCall(
                    id=call.get("id") or str(uuid.uuid4()),
                    name=call["name"],
                    arguments=call.get("args") or {}
                )
            )

        return CompletionResult(text=message_text(response))


class LangChainEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by any LangChain embeddings model"""

    def __init__(self, embeddings: Embeddings, name: str = "langchain"):
        self.embeddings = embeddings
        self.name = name

    async def embed(self, text: str) -> List[float]:
        try:
            return list(await self.embeddings.aembed_query(text))
        except Exception as e:
            raise ProviderError(f"embedding failed: {e}", provider=self.name) from e
