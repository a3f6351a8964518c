from typing import TypedDict, List, Dict, Any, Optional, Literal
from langgraph.graph import StateGraph, END
import re
import uuid
import structlog

from kindred.domain.context.context_manager import ContextManager
from kindred.domain.context.memory.conversation_store import ConversationStore
from kindred.domain.context.memory.long_term_memory import LongTermMemory
from kindred.domain.context.state.snapshot_store import SnapshotStore
from kindred.domain.exceptions import RetryBudgetExhaustedError, ToolDispatchError
from kindred.domain.interfaces import CompletionProvider
from kindred.domain.models import (
    ChatMessage, CompletionResult, ContextMode, ContextWindow,
    MessageIdentifier, PendingPrompt
)
from kindred.domain.tool.tool_executor import ToolExecutor
from kindred.domain.tool.tool_registry import ToolRegistry
from kindred.infrastructure.observability.logging import engine_logger

logger = structlog.get_logger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_MAX_MESSAGE_LENGTH = 2000

THINK_BLOCK = re.compile(r"<(?:think|reasoning)>(?:.|\n)*?</(?:think|reasoning)>\n*")
SPACES_BEFORE_BREAK = re.compile(r" +\n\n")
SPACE_RUNS = re.compile(r" {2,}")
BLANK_LINE_RUNS = re.compile(r"\n\n\n+")


def clean_response(text: str, force_lowercase: bool = False) -> str:
    """Strip reasoning blocks and collapse whitespace runs"""

    if force_lowercase:
        text = text.lower()

    text = THINK_BLOCK.sub("", text)
    text = SPACES_BEFORE_BREAK.sub("\n\n", text)
    text = SPACE_RUNS.sub(" ", text)
    text = BLANK_LINE_RUNS.sub("\n\n", text)

    return text.strip()


class TurnState(TypedDict, total=False):
    """State for one logical turn through the completion graph"""
    mode: ContextMode
    pending: Optional[PendingPrompt]
    target: Optional[MessageIdentifier]
    window: Optional[ContextWindow]
    prompt_committed: bool
    recalled: bool
    calls: int
    result: Optional[CompletionResult]
    next_step: Optional[str]
    last_error: Optional[BaseException]
    reply: Optional[ChatMessage]


class ChatEngine:
    """Drives one user's conversation turns through a LangGraph state machine.

    build_window -> call -> (commit | dispatch_tool -> call | build_window)
    """

    def __init__(
        self,
        context: ContextManager,
        provider: CompletionProvider,
        memory: Optional[LongTermMemory] = None,
        tools: Optional[ToolRegistry] = None,
        snapshots: Optional[SnapshotStore] = None,
        user_id: Optional[int] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        use_tools: bool = True,
        rag_recall: bool = True,
        force_lowercase: bool = False
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.context = context
        self.provider = provider
        self.memory = memory
        self.tools = tools or ToolRegistry()
        self.executor = ToolExecutor(self.tools)
        self.snapshots = snapshots
        self.user_id = user_id
        self.max_retries = max_retries
        self.max_message_length = max_message_length
        self.use_tools = use_tools
        self.rag_recall = rag_recall
        self.force_lowercase = force_lowercase

        # Evicted turns whose archive failed, retried after the next commit
        self._unarchived: List[ChatMessage] = []

        self.workflow = self._create_workflow()

    @property
    def store(self) -> ConversationStore:
        return self.context.store

    def _create_workflow(self):
        """Create the turn graph"""

        workflow = StateGraph(TurnState)

        workflow.add_node("build_window", self.build_window_node)
        workflow.add_node("call", self.call_node)
        workflow.add_node("dispatch_tool", self.dispatch_tool_node)
        workflow.add_node("commit", self.commit_node)

        workflow.set_entry_point("build_window")
        workflow.add_edge("build_window", "call")

        workflow.add_conditional_edges(
            "call",
            self.route_completion,
            {
                "final": "commit",
                "tool": "dispatch_tool",
                "retry": "build_window"
            }
        )

        workflow.add_edge("dispatch_tool", "call")
        workflow.add_edge("commit", END)

        return workflow.compile()

    async def user_prompt(self, content: str, identifier: MessageIdentifier) -> ChatMessage:
        """Answer a new user message that will be stored at ``identifier``"""
        return await self.respond(ContextMode.USER, pending=PendingPrompt(content=content, identifier=identifier))

    async def freewill(self) -> ChatMessage:
        """Speak without a user trigger"""
        return await self.respond(ContextMode.FREEWILL)

    async def regenerate(self, identifier: MessageIdentifier) -> ChatMessage:
        """New version of the assistant turn at ``identifier``. The caller pushes it onto the node."""
        return await self.respond(ContextMode.REGEN, target=identifier)

    async def respond(
        self,
        mode: ContextMode,
        pending: Optional[PendingPrompt] = None,
        target: Optional[MessageIdentifier] = None
    ) -> ChatMessage:
        """Run one turn and return the final assistant message"""

        if mode == ContextMode.REGEN and target is None:
            raise ValueError("regeneration needs a target identifier")

        turn_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(user_id=self.user_id, turn_id=turn_id)

        engine_logger.log_turn_event("started", self.user_id, mode.value)

        initial_state: TurnState = {
            "mode": mode,
            "pending": pending,
            "target": target,
            "window": None,
            "prompt_committed": False,
            "recalled": False,
            "calls": 0,
            "result": None,
            "next_step": None,
            "last_error": None,
            "reply": None
        }

        try:
            final_state = await self.workflow.ainvoke(
                initial_state,
                config={"recursion_limit": 2 * self.max_retries + 10}
            )
        except Exception as e:
            engine_logger.log_turn_event("failed", self.user_id, mode.value, error=str(e))
            raise
        finally:
            structlog.contextvars.unbind_contextvars("user_id", "turn_id")

        reply = final_state["reply"]
        engine_logger.log_turn_event(
            "committed",
            self.user_id,
            mode.value,
            data={"calls": final_state.get("calls", 0), "length": len(reply.content or "")}
        )
        return reply

    async def build_window_node(self, state: TurnState) -> Dict[str, Any]:
        """Obtain a fresh context window for the current mode"""

        mode = state.get("mode", ContextMode.USER)
        updates: Dict[str, Any] = {}

        if mode == ContextMode.FREEWILL:
            window = await self.context.freewill_context(defer_eviction=True)
            # The nudge is in the store now, so retries build a normal window
            updates["mode"] = ContextMode.USER
        elif mode == ContextMode.REGEN:
            window = await self.context.get_regen_context(state["target"])
        else:
            pending = state.get("pending")
            text = pending.content if pending is not None and not state.get("prompt_committed") else None
            window = await self.context.get_context(text, defer_eviction=True)

        logger.debug(
            "Built window",
            mode=mode.value,
            history=len(window.history),
            has_prompt=window.user_prompt is not None
        )

        updates["window"] = window
        return updates

    async def call_node(self, state: TurnState) -> Dict[str, Any]:
        """Submit the window to the completion provider"""

        calls = state.get("calls", 0)
        if calls >= self.max_retries:
            raise RetryBudgetExhaustedError(attempts=calls, last_error=state.get("last_error"))

        window = state["window"]
        updates: Dict[str, Any] = {"calls": calls + 1}

        try:
            if self.rag_recall and self.memory is not None and not state.get("recalled"):
                window = await self._recall_into(window)
                updates["window"] = window
                updates["recalled"] = True

            result = await self.provider.complete(
                window.system_prompt,
                window.history,
                window.user_prompt,
                self.tools.get_available_tools() if self.use_tools else []
            )
        except Exception as e:
            logger.warning("Completion failed, retrying", attempt=calls + 1, error=str(e))
            if calls + 1 >= self.max_retries:
                raise RetryBudgetExhaustedError(attempts=calls + 1, last_error=e) from e
            updates.update({"next_step": "retry", "last_error": e})
            return updates

        if result.is_tool_call:
            updates.update({"next_step": "tool", "result": result})
            return updates

        text = clean_response(result.text or "", self.force_lowercase)

        if not text:
            logger.warning("Completion had no content, retrying", attempt=calls + 1)
            updates.update({"next_step": "retry", "result": result})
            return updates

        if len(text) > self.max_message_length:
            logger.warning(
                "Completion too long, retrying",
                attempt=calls + 1,
                length=len(text),
                limit=self.max_message_length
            )
            updates.update({"next_step": "retry", "result": result})
            return updates

        updates.update({"next_step": "final", "result": result, "reply": ChatMessage.assistant(text)})
        return updates

    async def dispatch_tool_node(self, state: TurnState) -> Dict[str, Any]:
        """Run the requested tool, recording the call and its result as synthetic turns"""

        window = state["window"]
        call = state["result"].tool_call
        history = list(window.history)
        updates: Dict[str, Any] = {}

        if window.user_prompt is not None:
            # Tool turns must follow the prompt that caused them
            if self._owns_pending_prompt(state):
                self.store.add(window.user_prompt, state["pending"].identifier)
                updates["prompt_committed"] = True
            history.append(window.user_prompt)

        call_message = ChatMessage.from_tool_call(call)
        self.store.add(call_message)
        history.append(call_message)

        try:
            result = await self.executor.execute(call)
        except ToolDispatchError as e:
            engine_logger.log_tool_execution(call.name, self.user_id, call.arguments, success=False, error=e.message)
            raise

        engine_logger.log_tool_execution(call.name, self.user_id, call.arguments)

        result_message = ChatMessage.from_tool_result(result)
        self.store.add(result_message)
        history.append(result_message)

        updates["window"] = window.model_copy(update={"history": history, "user_prompt": None})
        return updates

    async def commit_node(self, state: TurnState) -> Dict[str, Any]:
        """Store the pending prompt, then hand evicted turns to long-term memory"""

        window = state["window"]

        if window.user_prompt is not None and self._owns_pending_prompt(state):
            self.store.add(window.user_prompt, state["pending"].identifier)

        # Overflow leaves the store only once the turn has succeeded
        if window.eviction is not None:
            self._unarchived.extend(self.store.evict(window.eviction))

        engine_logger.log_context_update(
            self.user_id,
            "short_term",
            "commit",
            {"turns": len(self.store)}
        )

        await self._archive_unarchived()

        return {"prompt_committed": True}

    def route_completion(self, state: TurnState) -> Literal["final", "tool", "retry"]:
        """Route on the completion outcome"""
        return state.get("next_step") or "retry"

    def _owns_pending_prompt(self, state: TurnState) -> bool:
        return (
            state.get("pending") is not None
            and not state.get("prompt_committed")
            and state.get("mode") == ContextMode.USER
        )

    async def _recall_into(self, window: ContextWindow) -> ContextWindow:
        """Add memories relevant to the pending prompt to the preamble"""

        prompt = window.user_prompt
        if prompt is None or not prompt.content or prompt.freewill:
            return window

        memories = await self.memory.recall(prompt.content)
        if not memories:
            return window

        self.context.add_long_term_memories(memories)
        engine_logger.log_context_update(self.user_id, "long_term", "recall", {"memories": len(memories)})

        return window.model_copy(update={"system_prompt": self.context.render_preamble()})

    async def _archive_unarchived(self) -> None:
        if not self._unarchived:
            return

        batch = list(self._unarchived)
        try:
            await self.summarize_and_store(batch)
        except Exception as e:
            # The reply already succeeded; keep the batch for the next turn
            logger.error("Failed to archive evicted turns", count=len(batch), error=str(e))
            return

        del self._unarchived[:len(batch)]

    async def summarize_and_store(self, messages: List[ChatMessage]) -> Optional[str]:
        """Summarize a batch into long-term memory"""

        if self.memory is None:
            logger.info("No long-term memory configured, dropping evicted turns", count=len(messages))
            return None

        memory_id = await self.memory.archive(messages, self.provider)
        engine_logger.log_context_update(
            self.user_id,
            "long_term",
            "archive",
            {"messages": len(messages), "memory_id": memory_id}
        )
        return memory_id

    async def shutdown(self) -> bool:
        """Archive what is still pending, then persist the conversation snapshot"""

        await self._archive_unarchived()

        if self.snapshots is None or self.user_id is None:
            return False
        return await self.snapshots.save(self.user_id, self.store)

    def adopt_unarchived(self, other: "ChatEngine") -> None:
        """Take over evicted turns another engine has not archived yet"""
        self._unarchived.extend(other._unarchived)
        other._unarchived.clear()

    def clear(self) -> None:
        self.context.clear()
        self._unarchived.clear()
        engine_logger.log_context_update(self.user_id, "short_term", "clear")
