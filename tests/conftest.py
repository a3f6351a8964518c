import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from kindred.domain.context.context_manager import ContextManager
from kindred.domain.context.memory.conversation_store import ConversationStore
from kindred.domain.context.memory.long_term_memory import LongTermMemory
from kindred.domain.context.memory.vector_memory_store import InMemoryVectorStore
from kindred.domain.context.prompt_builder import SystemPromptBuilder
from kindred.domain.orchestration.core.engine import ChatEngine
from kindred.domain.tool.memory_tools import MemoryRecallTool, MemoryStoreTool
from kindred.domain.tool.tool_registry import ToolRegistry
from kindred.infrastructure.llm.langchain_provider import LangChainEmbeddingProvider

from .fakes import ScriptedCompletionProvider

VECTOR_SIZE = 16


@pytest.fixture
def persona():
    return SystemPromptBuilder(chatbot_name="Ada", user_name="Sam", about="A friendly companion.")


@pytest.fixture
def embedder():
    return LangChainEmbeddingProvider(DeterministicFakeEmbedding(size=VECTOR_SIZE), name="fake")


@pytest.fixture
def vector_store():
    return InMemoryVectorStore(VECTOR_SIZE, similarity_threshold=0.9)


@pytest.fixture
def memory(embedder, vector_store):
    return LongTermMemory(embedder, vector_store, owner=1, user_name="Sam", assistant_name="Ada")


@pytest.fixture
def make_engine(persona, memory):
    """Build an engine around a scripted provider"""

    def _make(responses, store=None, max_stm=50, drain_fraction=0.8, **kwargs):
        provider = ScriptedCompletionProvider(responses)
        context = ContextManager(
            store=store if store is not None else ConversationStore(),
            prompt_builder=persona,
            max_stm=max_stm,
            drain_fraction=drain_fraction
        )
        kwargs.setdefault("memory", memory)
        kwargs.setdefault("rag_recall", False)
        tools = ToolRegistry([MemoryRecallTool(kwargs["memory"]), MemoryStoreTool(kwargs["memory"])])
        engine = ChatEngine(context, provider, tools=tools, user_id=1, **kwargs)
        return engine, provider

    return _make
