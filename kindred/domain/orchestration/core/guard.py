from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional
from contextlib import asynccontextmanager
import structlog

from kindred.domain.context.memory.conversation_store import ConversationStore
from kindred.domain.exceptions import EngineConstructionError
from .engine import ChatEngine
from .rwlock import RWLock

logger = structlog.get_logger(__name__)

# Builds a user's engine, optionally around an existing store
EngineFactory = Callable[[int, Optional[ConversationStore]], Awaitable[ChatEngine]]


class EngineGuard:
    """One user's engine behind its own reader/writer lock"""

    def __init__(self, user_id: int, engine: ChatEngine):
        self.user_id = user_id
        self._engine = engine
        self._lock = RWLock()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[ChatEngine]:
        """Shared access, for inspection that does not mutate the conversation"""
        async with self._lock.read():
            yield self._engine

    @asynccontextmanager
    async def write(self) -> AsyncIterator[ChatEngine]:
        """Exclusive access, held for the whole of a turn"""
        async with self._lock.write():
            yield self._engine

    def replace(self, engine: ChatEngine) -> None:
        """Swap in a new engine. Callers must hold ``write()``."""
        self._engine = engine


class EngineRegistry:
    """Per-process table of user engines.

    The table is locked only to look a guard up, and exclusively while an
    engine is being created. Turns run under the user's own guard, so a slow
    turn for one user never holds up another user.
    """

    def __init__(self, factory: EngineFactory):
        self.factory = factory
        self._guards: Dict[int, EngineGuard] = {}
        self._lock = RWLock()

    @asynccontextmanager
    async def lock(self, user_id: int) -> AsyncIterator[EngineGuard]:
        """Guard for ``user_id``, constructing the engine on first use"""
        yield await self._guard(user_id)

    async def _guard(self, user_id: int) -> EngineGuard:
        async with self._lock.read():
            guard = self._guards.get(user_id)

        if guard is None:
            guard = await self._ensure(user_id)
        return guard

    async def _ensure(self, user_id: int) -> EngineGuard:
        async with self._lock.write():
            # Another task may have created it while this one waited
            guard = self._guards.get(user_id)
            if guard is not None:
                return guard

            engine = await self._construct(user_id, None)
            guard = self._guards[user_id] = EngineGuard(user_id, engine)

            logger.info("Engine created", user_id=user_id, users=len(self._guards))
            return guard

    async def _construct(self, user_id: int, store: Optional[ConversationStore]) -> ChatEngine:
        try:
            return await self.factory(user_id, store)
        except Exception as e:
            logger.error("Engine construction failed", user_id=user_id, error=str(e))
            raise EngineConstructionError(f"could not construct engine: {e}", user_id) from e

    async def reset(self, user_id: int, keep_context: bool = False) -> None:
        """Replace a user's engine with a freshly constructed one.

        Waits for the user's in-flight turn. With ``keep_context`` the new
        engine takes over the old conversation, otherwise it starts empty. Must
        not be awaited while holding this user's guard.
        """

        guard = await self._guard(user_id)

        async with guard.write() as old:
            engine = await self._construct(user_id, old.store if keep_context else None)
            if keep_context:
                engine.adopt_unarchived(old)
            else:
                engine.clear()
            guard.replace(engine)

        logger.info("Engine reset", user_id=user_id, keep_context=keep_context)

    def users(self) -> List[int]:
        return list(self._guards.keys())

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._guards

    async def shutdown(self) -> None:
        """Persist every user's conversation once its in-flight turn finishes"""

        async with self._lock.write():
            for user_id, guard in self._guards.items():
                async with guard.write() as engine:
                    saved = await engine.shutdown()
                logger.info("Engine shut down", user_id=user_id, saved=saved)
