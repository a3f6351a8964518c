from typing import Optional
import structlog

from kindred.domain.context.context_manager import ContextManager
from kindred.domain.context.memory.conversation_store import ConversationStore
from kindred.domain.context.memory.long_term_memory import LongTermMemory
from kindred.domain.context.memory.vector_memory_store import InMemoryVectorStore
from kindred.domain.context.state.snapshot_store import SnapshotStore
from kindred.domain.interfaces import CompletionProvider, EmbeddingProvider, VectorStore
from kindred.domain.orchestration.core.engine import ChatEngine
from kindred.domain.tool.memory_tools import MemoryRecallTool, MemoryStoreTool
from kindred.domain.tool.tool_registry import ToolRegistry
from kindred.infrastructure.config.settings import KindredSettings
from kindred.infrastructure.llm.langchain_provider import LangChainCompletionProvider, LangChainEmbeddingProvider
from kindred.infrastructure.llm.model_loader import load_chat_model, load_embeddings

logger = structlog.get_logger(__name__)


class EngineFactory:
    """Builds a user's engine: restores the conversation, checks memory health, wires tools"""

    def __init__(
        self,
        settings: KindredSettings,
        provider: CompletionProvider,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        snapshots: SnapshotStore
    ):
        self.settings = settings
        self.provider = provider
        self.embedder = embedder
        self.vector_store = vector_store
        self.snapshots = snapshots

    @classmethod
    def from_settings(cls, settings: KindredSettings) -> "EngineFactory":
        """Factory backed by the configured LangChain models"""

        return cls(
            settings,
            LangChainCompletionProvider(load_chat_model(settings), name=settings.completion.model),
            LangChainEmbeddingProvider(load_embeddings(settings), name=settings.memory.embedding_model),
            InMemoryVectorStore(
                settings.memory.vector_size,
                similarity_threshold=settings.memory.similarity_threshold,
                max_memories=settings.memory.max_memories
            ),
            SnapshotStore(settings.persistence.directory)
        )

    async def __call__(self, user_id: int, store: Optional[ConversationStore] = None) -> ChatEngine:
        settings = self.settings
        persona = settings.persona.model_copy(deep=True)

        memory = LongTermMemory(
            self.embedder,
            self.vector_store,
            owner=user_id,
            user_name=persona.user_name,
            assistant_name=persona.chatbot_name,
            recall_limit=settings.memory.recall_limit,
            similarity_threshold=settings.memory.similarity_threshold
        )
        await memory.health_check()

        if store is None:
            store = await self.snapshots.load(user_id)

        context = ContextManager(
            store=store,
            prompt_builder=persona,
            max_stm=settings.context.max_stm,
            drain_fraction=settings.context.drain_fraction
        )

        logger.info("Building engine", user_id=user_id, turns=len(store))

        return ChatEngine(
            context,
            self.provider,
            memory=memory,
            tools=ToolRegistry([MemoryRecallTool(memory), MemoryStoreTool(memory)]),
            snapshots=self.snapshots,
            user_id=user_id,
            max_retries=settings.completion.max_retries,
            max_message_length=settings.completion.max_message_length,
            use_tools=settings.completion.use_tools,
            rag_recall=settings.completion.rag_recall,
            force_lowercase=settings.completion.force_lowercase
        )
