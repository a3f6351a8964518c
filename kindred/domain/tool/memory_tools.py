from typing import Optional
import json
import structlog
from pydantic import BaseModel, Field

from kindred.domain.context.memory.long_term_memory import LongTermMemory
from .base_tool import BaseTool

logger = structlog.get_logger(__name__)

NO_MEMORIES_FOUND = "Could not find any relevant memories"


class MemoryRecallArgs(BaseModel):
    query: str = Field(description="The query to perform on the memory archive")
    threshold: Optional[float] = Field(
        None,
        ge=0,
        le=1,
        description="The minimum similarity score to return a memory (must be a decimal between 0 and 1)"
    )
    limit: Optional[int] = Field(None, gt=0, description="The maximum number of memories to recall (must be bigger than 0)")


class MemoryStoreArgs(BaseModel):
    memory: str = Field(description="The memory to store (in bullet points)")


class MemoryRecallTool(BaseTool):
    """Searches long-term memory for facts missing from the current context"""

    name = "memory_recall"
    description = (
        "Use to recall facts, preferences, or historical context, such as things that the user told you "
        "in the past, to fill in gaps in current memory (context). The query should be a short search "
        "phrase like 'shirt color' or 'favorite movie', not a full question."
    )
    args_schema = MemoryRecallArgs

    def __init__(self, memory: LongTermMemory):
        self.memory = memory

    async def run(self, arguments: MemoryRecallArgs) -> str:
        logger.info("Recalling memories", query=arguments.query)

        memories = await self.memory.recall(arguments.query, limit=arguments.limit, threshold=arguments.threshold)

        if not memories:
            return json.dumps({"memory_recall_result": NO_MEMORIES_FOUND})

        return json.dumps({
            "memory_recall_result": "Found relevant memories",
            "memories": memories
        })


class MemoryStoreTool(BaseTool):
    """Stores a fact directly in long-term memory"""

    name = "memory_store"
    description = (
        "Use to store facts, preferences, or historical context that should be remembered for the long "
        "term, like \"user likes apples\" rather than \"user is in the kitchen\". Prefer bullet points "
        "and do not repeat bullet points."
    )
    args_schema = MemoryStoreArgs

    def __init__(self, memory: LongTermMemory):
        self.memory = memory

    async def run(self, arguments: MemoryStoreArgs) -> str:
        logger.info("Storing memory", length=len(arguments.memory))

        await self.memory.remember(arguments.memory)

        return json.dumps({"memory_store_result": "Memory store successful!"})
