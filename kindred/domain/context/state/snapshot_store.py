from typing import Optional
from pathlib import Path
import aiofiles
import aiofiles.os
import structlog
from pydantic import ValidationError

from kindred.domain.context.memory.conversation_store import ConversationSnapshot, ConversationStore
from kindred.domain.exceptions import DuplicateIdentifierError, PersistenceError

logger = structlog.get_logger(__name__)


class SnapshotStore:
    """Persists conversation stores across restarts, one JSON file per user"""

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def path_for(self, user_id: int) -> Path:
        return self.directory / f"{user_id}.json"

    async def load(self, user_id: int) -> ConversationStore:
        """Load a user's store, or an empty one if nothing usable is on disk"""

        path = self.path_for(user_id)

        try:
            snapshot = await self._read(path)
        except PersistenceError as e:
            logger.warning("Discarding unreadable snapshot", user_id=user_id, path=str(path), error=e.message)
            return ConversationStore()

        if snapshot is None:
            logger.debug("No snapshot found", user_id=user_id)
            return ConversationStore()

        try:
            store = ConversationStore.from_snapshot(snapshot)
        except DuplicateIdentifierError as e:
            logger.warning("Discarding inconsistent snapshot", user_id=user_id, path=str(path), error=e.message)
            return ConversationStore()

        logger.info("Loaded snapshot", user_id=user_id, turns=len(store))
        return store

    async def save(self, user_id: int, store: ConversationStore) -> bool:
        """Write a user's store to disk. Failures are logged, not raised."""

        path = self.path_for(user_id)

        try:
            await self._write(path, store.to_snapshot())
        except PersistenceError as e:
            logger.error("Failed to save snapshot", user_id=user_id, path=str(path), error=e.message)
            return False

        logger.info("Saved snapshot", user_id=user_id, turns=len(store))
        return True

    async def delete(self, user_id: int) -> None:
        path = self.path_for(user_id)
        if await aiofiles.os.path.exists(path):
            await aiofiles.os.remove(path)

    async def _read(self, path: Path) -> Optional[ConversationSnapshot]:
        if not await aiofiles.os.path.exists(path):
            return None

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            raise PersistenceError(f"could not read snapshot: {e}", str(path)) from e

        try:
            return ConversationSnapshot.model_validate_json(raw)
        except ValidationError as e:
            raise PersistenceError(f"corrupt snapshot: {e.error_count()} errors", str(path)) from e

    async def _write(self, path: Path, snapshot: ConversationSnapshot) -> None:
        tmp_path = path.with_suffix(".json.tmp")

        try:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(snapshot.model_dump_json())
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(f"could not write snapshot: {e}", str(path)) from e
