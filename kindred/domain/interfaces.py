"""Collaborators the conversation core talks to but does not own."""

from abc import ABC, abstractmethod
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from .models import ChatMessage, CompletionResult, ToolDefinition, utcnow


class CompletionProvider(ABC):
    """Language model that answers a context window"""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        history: List[ChatMessage],
        user_prompt: Optional[ChatMessage] = None,
        tools: Optional[List[ToolDefinition]] = None
    ) -> CompletionResult:
        """Return either final text or a single tool call"""
        pass


class EmbeddingProvider(ABC):
    """Turns text into a fixed-dimension vector"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        pass


class MemoryMatch(BaseModel):
    """A long-term memory returned by a similarity search"""
    id: str
    content: str
    score: float = Field(description="Cosine similarity to the query vector")
    created_at: datetime = Field(default_factory=utcnow)


class VectorStore(ABC):
    """Vector-similarity store backing long-term memory"""

    @abstractmethod
    async def store(self, text: str, vector: List[float], owner: int) -> str:
        """Persist a memory and return its id"""
        pass

    @abstractmethod
    async def search(
        self,
        vector: List[float],
        owner: int,
        limit: int = 5,
        threshold: Optional[float] = None
    ) -> List[MemoryMatch]:
        """Return matches ranked by similarity, best first"""
        pass

    @abstractmethod
    async def health_check(self, owner: int) -> None:
        """Raise HealthCheckError if the owner's collection is unusable"""
        pass
