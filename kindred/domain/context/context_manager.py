from typing import List, Optional
from datetime import timedelta
import structlog

from kindred.domain.exceptions import MessageNotFoundError, NoUserPromptError
from kindred.domain.models import ChatMessage, ContextWindow, MessageIdentifier
from .memory.conversation_store import ConversationStore, DEFAULT_DRAIN_FRACTION
from .prompt_builder import SystemPromptBuilder, time_to_string

logger = structlog.get_logger(__name__)

FREEWILL_NUDGE = (
    "*it's been around {time_since} since you last said something, and the user did not respond. "
    "try to pull the user back into the conversation, keeping the time difference in mind.*"
)


class ContextManager:
    """Assembles context windows from the conversation store"""

    def __init__(
        self,
        store: Optional[ConversationStore] = None,
        prompt_builder: Optional[SystemPromptBuilder] = None,
        max_stm: int = 50,
        drain_fraction: float = DEFAULT_DRAIN_FRACTION
    ):
        if not 0 < drain_fraction <= 1:
            raise ValueError("drain_fraction must be in (0, 1]")

        self.store = store if store is not None else ConversationStore()
        self.prompt_builder = prompt_builder or SystemPromptBuilder()
        self.max_stm = max_stm
        self.drain_fraction = drain_fraction

    def render_preamble(self) -> str:
        """Render the system preamble against the latest turn"""
        return self.prompt_builder.build(self.store.time_since_last())

    async def get_context(self, pending_text: Optional[str] = None, defer_eviction: bool = False) -> ContextWindow:
        """Build the window for a normal turn, evicting overflow if the store is full.

        With ``defer_eviction`` the overflow stays in the store and the window
        carries an eviction plan instead, for the caller to apply once its turn
        has committed.
        """

        user_prompt = ChatMessage.user(pending_text) if pending_text is not None else None

        if not len(self.store):
            logger.debug("Building context from empty conversation")
            return ContextWindow(
                user_prompt=user_prompt,
                system_prompt=self.prompt_builder.build(timedelta(0)),
                history=[]
            )

        history = self.store.messages()

        eviction = None
        if defer_eviction:
            eviction = self.store.plan_overflow(self.max_stm, self.drain_fraction)
            overflow = [self.store.find(key).selected_message for key in eviction.identifiers] if eviction else None
        else:
            overflow = self.store.drain_overflow(self.max_stm, self.drain_fraction)

        logger.debug(
            "Built context",
            history=len(history),
            drained=len(overflow) if overflow else 0,
            deferred=defer_eviction
        )

        return ContextWindow(
            user_prompt=user_prompt,
            system_prompt=self.render_preamble(),
            history=history,
            overflow=overflow,
            eviction=eviction
        )

    async def get_regen_context(self, identifier: MessageIdentifier) -> ContextWindow:
        """Build the window that re-prompts the user turn preceding ``identifier``"""

        found = self.store.find_full(identifier)
        if found is None:
            raise MessageNotFoundError("message not found", identifier)

        index, _, _ = found
        preceding = self.store.messages()[:index]

        position = self._last_user_text(preceding)
        if position is None:
            raise NoUserPromptError(identifier=identifier)

        user_prompt = preceding[position]

        # Tool turns after the prompt belong to the reply being regenerated
        history = preceding[:position] + [
            message for message in preceding[position + 1:]
            if not message.is_tool_turn
        ]

        # Regenerating does not grow the store, so it never drains
        return ContextWindow(
            user_prompt=user_prompt,
            system_prompt=self.render_preamble(),
            history=history,
            overflow=None
        )

    async def freewill_context(self, defer_eviction: bool = False) -> ContextWindow:
        """Build a window for unprompted speech, inserting a synthetic nudge turn"""

        window = await self.get_context(None, defer_eviction=defer_eviction)

        nudge = ChatMessage.user(
            FREEWILL_NUDGE.format(time_since=time_to_string(self.store.time_since_last())),
            freewill=True
        )
        identifier = self.store.add(nudge)

        logger.info("Inserted freewill nudge", identifier=identifier.message_id)

        return window.model_copy(update={"user_prompt": nudge})

    def add_long_term_memories(self, memories: List[str]) -> None:
        self.prompt_builder.add_long_term_memories(memories)

    def clear(self) -> None:
        """Clear all context for this conversation"""
        self.store.clear()
        self.prompt_builder.clear_long_term_memories()

    @staticmethod
    def _last_user_text(messages: List[ChatMessage]) -> Optional[int]:
        for position in range(len(messages) - 1, -1, -1):
            if messages[position].is_user_text:
                return position
        return None
