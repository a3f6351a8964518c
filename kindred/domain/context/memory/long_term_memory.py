from typing import List, Optional, Sequence
import re
import structlog

from kindred.domain.exceptions import ProviderError
from kindred.domain.interfaces import CompletionProvider, EmbeddingProvider, VectorStore
from kindred.domain.models import ChatMessage, MessageRole

logger = structlog.get_logger(__name__)

USER_PLACEHOLDER = "<user>"
ASSISTANT_PLACEHOLDER = "<assistant>"

SUMMARY_PREAMBLE = """# Summarization Assistant
Extract only information worth remembering across conversations: persistent preferences, interests, traits and facts.

## Format
- Concise bullet points
- Use the <user> and <assistant> tags for the participants

## Avoid
- Temporary states or short-term plans
- Conversational mechanics
- Empty summaries
"""


class LongTermMemory:
    """Vector-indexed memory for one user.

    Memories are stored with ``<user>``/``<assistant>`` placeholders instead of
    names, so persona renames do not orphan them.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        owner: int,
        user_name: str = "User",
        assistant_name: str = "Assistant",
        recall_limit: int = 5,
        similarity_threshold: Optional[float] = None
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.owner = owner
        self.user_name = user_name
        self.assistant_name = assistant_name
        self.recall_limit = recall_limit
        self.similarity_threshold = similarity_threshold

    async def health_check(self) -> None:
        await self.vector_store.health_check(self.owner)

    async def recall(self, query: str, limit: Optional[int] = None, threshold: Optional[float] = None) -> List[str]:
        """Search memories similar to ``query``, names substituted back in"""

        vector = await self.embedder.embed(self._to_placeholders(query))
        matches = await self.vector_store.search(
            vector,
            self.owner,
            limit=limit or self.recall_limit,
            threshold=threshold if threshold is not None else self.similarity_threshold
        )

        logger.debug("Recalled memories", owner=self.owner, query=query[:50], count=len(matches))

        return [self._from_placeholders(match.content) for match in matches]

    async def remember(self, text: str) -> str:
        """Embed and store ``text`` directly"""

        text = self._to_placeholders(text)
        vector = await self.embedder.embed(text)
        memory_id = await self.vector_store.store(text, vector, self.owner)

        logger.info("Stored memory", owner=self.owner, memory_id=memory_id)

        return memory_id

    async def archive(self, messages: Sequence[ChatMessage], summarizer: CompletionProvider) -> Optional[str]:
        """Summarize an evicted batch and store the summary"""

        transcript = self.format_transcript(messages)
        if not transcript:
            logger.info("Nothing to archive", owner=self.owner)
            return None

        logger.info("Summarizing messages", owner=self.owner, count=len(messages))

        result = await summarizer.complete(SUMMARY_PREAMBLE, [], ChatMessage.user(transcript), [])
        if not result.text:
            raise ProviderError("summarizer returned no text", provider="completion")

        return await self.remember(result.text)

    def format_transcript(self, messages: Sequence[ChatMessage]) -> str:
        lines = []
        for message in messages:
            if message.content is None:
                continue
            name = self.user_name if message.role == MessageRole.USER else self.assistant_name
            lines.append(f"{name}: {message.content}")

        return self._to_placeholders("\n---\n".join(lines))

    def _to_placeholders(self, text: str) -> str:
        for name, placeholder in ((self.user_name, USER_PLACEHOLDER), (self.assistant_name, ASSISTANT_PLACEHOLDER)):
            # Whole names only, so "Al" leaves "Also" alone
            if name:
                text = re.sub(rf"(?<!\w){re.escape(name)}(?!\w)", placeholder, text)
        return text

    def _from_placeholders(self, text: str) -> str:
        for name, placeholder in ((self.user_name, USER_PLACEHOLDER), (self.assistant_name, ASSISTANT_PLACEHOLDER)):
            if name:
                text = text.replace(placeholder, name)
        return text
