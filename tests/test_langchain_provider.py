from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from kindred.domain.exceptions import ProviderError
from kindred.domain.models import ChatMessage, ToolCall, ToolDefinition, ToolResult
from kindred.infrastructure.llm.langchain_provider import (
    LangChainCompletionProvider, LangChainEmbeddingProvider, message_text, to_langchain_message
)


def fake_model(response):
    model = MagicMock()
    model.ainvoke = AsyncMock(return_value=response)
    bound = MagicMock()
    bound.ainvoke = AsyncMock(return_value=response)
    model.bind_tools.return_value = bound
    return model, bound


def test_message_conversion():
    call = ToolCall(id="c1", name="memory_recall", arguments={"query": "tea"})

    human = to_langchain_message(ChatMessage.user("hi"))
    ai = to_langchain_message(ChatMessage.assistant("hello"))
    tool_call = to_langchain_message(ChatMessage.from_tool_call(call))
    tool_result = to_langchain_message(ChatMessage.from_tool_result(ToolResult(call_id="c1", name="memory_recall", content="{}")))

    assert isinstance(human, HumanMessage) and human.content == "hi"
    assert isinstance(ai, AIMessage) and ai.content == "hello"
    assert tool_call.tool_calls[0]["name"] == "memory_recall"
    assert tool_call.tool_calls[0]["args"] == {"query": "tea"}
    assert tool_call.tool_calls[0]["id"] == "c1"
    assert isinstance(tool_result, ToolMessage) and tool_result.tool_call_id == "c1"


def test_message_text_joins_text_blocks():
    message = AIMessage(content=[{"type": "text", "text": "Hello "}, {"type": "image_url", "image_url": "x"}, "there"])

    assert message_text(message) == "Hello there"


@pytest.mark.asyncio
async def test_complete_returns_text_without_binding_tools():
    model, bound = fake_model(AIMessage(content="Hello Sam"))
    provider = LangChainCompletionProvider(model)

    result = await provider.complete("system", [ChatMessage.user("hi")], ChatMessage.user("again"), [])

    assert result.text == "Hello Sam"
    assert not result.is_tool_call
    model.bind_tools.assert_not_called()
    messages = model.ainvoke.await_args.args[0]
    assert isinstance(messages[0], SystemMessage) and messages[0].content == "system"
    assert [m.content for m in messages[1:]] == ["hi", "again"]


@pytest.mark.asyncio
async def test_complete_binds_tools_and_returns_first_tool_call():
    response = AIMessage(
        content="",
        tool_calls=[
            {"name": "memory_recall", "args": {"query": "tea"}, "id": "call-9"},
            {"name": "memory_store", "args": {"memory": "x"}, "id": "call-10"},
        ]
    )
    model, bound = fake_model(response)
    provider = LangChainCompletionProvider(model)
    definition = ToolDefinition(name="memory_recall", description="Recall", parameters={"type": "object"})

    result = await provider.complete("system", [], ChatMessage.user("tea?"), [definition])

    assert result.is_tool_call
    assert result.tool_call == ToolCall(id="call-9", name="memory_recall", arguments={"query": "tea"})
    tools = model.bind_tools.call_args.args[0]
    assert tools[0]["function"]["name"] == "memory_recall"
    bound.ainvoke.assert_awaited_once()


@pytest.mark.asyncio
async def test_model_failure_becomes_provider_error():
    model = MagicMock()
    model.ainvoke = AsyncMock(side_effect=TimeoutError("slow"))
    provider = LangChainCompletionProvider(model, name="test-model")

    with pytest.raises(ProviderError) as excinfo:
        await provider.complete("system", [], ChatMessage.user("hi"))

    assert excinfo.value.provider == "test-model"
    assert isinstance(excinfo.value.__cause__, TimeoutError)


@pytest.mark.asyncio
async def test_embedding_provider_is_deterministic():
    provider = LangChainEmbeddingProvider(DeterministicFakeEmbedding(size=8))

    first = await provider.embed("hello")
    second = await provider.embed("hello")

    assert len(first) == 8
    assert first == second
