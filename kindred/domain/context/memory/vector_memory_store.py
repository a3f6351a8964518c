from typing import Dict, List, Optional
import asyncio
import math
import uuid

from kindred.domain.exceptions import HealthCheckError
from kindred.domain.interfaces import MemoryMatch, VectorStore


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity, 0.0 when either vector is all zeros"""

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryVectorStore(VectorStore):
    """Process-local vector store with one collection per owner"""

    def __init__(self, vector_size: int, similarity_threshold: float = 0.5, max_memories: int = 1000):
        self.vector_size = vector_size
        self.similarity_threshold = similarity_threshold
        self.max_memories = max_memories
        self.collections: Dict[int, List[Dict]] = {}
        self._lock = asyncio.Lock()

    async def store(self, text: str, vector: List[float], owner: int) -> str:
        """Add a memory to the owner's collection"""

        self._check_dimensions(vector)

        async with self._lock:
            collection = self.collections.setdefault(owner, [])

            memory_id = str(uuid.uuid4())
            collection.append({
                "id": memory_id,
                "content": text,
                "vector": list(vector)
            })

            # Keep only the newest memories per owner
            if len(collection) > self.max_memories:
                del collection[:len(collection) - self.max_memories]

            return memory_id

    async def search(
        self,
        vector: List[float],
        owner: int,
        limit: int = 5,
        threshold: Optional[float] = None
    ) -> List[MemoryMatch]:
        """Search the owner's memories by cosine similarity"""

        self._check_dimensions(vector)
        threshold = self.similarity_threshold if threshold is None else threshold

        async with self._lock:
            collection = list(self.collections.get(owner, []))

        scored = [
            MemoryMatch(
                id=memory["id"],
                content=memory["content"],
                score=cosine_similarity(vector, memory["vector"])
            )
            for memory in collection
        ]
        scored = [match for match in scored if match.score > threshold]
        scored.sort(key=lambda match: match.score, reverse=True)

        return scored[:limit]

    async def health_check(self, owner: int) -> None:
        async with self._lock:
            collection = self.collections.setdefault(owner, [])
            for memory in collection:
                if len(memory["vector"]) != self.vector_size:
                    raise HealthCheckError(
                        f"vector size mismatch, expected {self.vector_size} but got {len(memory['vector'])}",
                        expected=self.vector_size,
                        actual=len(memory["vector"])
                    )

    def _check_dimensions(self, vector: List[float]) -> None:
        if len(vector) != self.vector_size:
            raise HealthCheckError(
                f"vector size mismatch, expected {self.vector_size} but got {len(vector)}",
                expected=self.vector_size,
                actual=len(vector)
            )
