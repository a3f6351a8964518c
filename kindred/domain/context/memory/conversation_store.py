from typing import Dict, Iterator, List, Optional, Sequence, Tuple
from datetime import timedelta
from pydantic import BaseModel, Field
import math
import structlog

from kindred.domain.exceptions import DuplicateIdentifierError, MessageNotFoundError
from kindred.domain.models import BranchNode, ChatMessage, EvictionPlan, MessageIdentifier, MessageRole, utcnow

logger = structlog.get_logger(__name__)

DEFAULT_DRAIN_FRACTION = 0.8


def take_until_boundary(messages: Sequence[ChatMessage]) -> List[ChatMessage]:
    """Messages after the most recent freewill boundary, oldest first.

    Walks backward from the newest message and stops at (excluding) the first
    one flagged ``freewill``.
    """
    taken: List[ChatMessage] = []
    for message in reversed(messages):
        if message.freewill:
            break
        taken.append(message)
    taken.reverse()
    return taken


class SnapshotEntry(BaseModel):
    identifier: MessageIdentifier
    node: BranchNode


class ConversationSnapshot(BaseModel):
    """Serializable form of a conversation store, in conversation order"""
    entries: List[SnapshotEntry] = Field(default_factory=list)


class ConversationStore:
    """Short-term memory: insertion-ordered turns keyed by platform identifier.

    Insertion order is conversation order. It is what the completion provider
    sees and what gets drained on overflow.
    """

    def __init__(self):
        self._nodes: Dict[MessageIdentifier, BranchNode] = {}

    def add(self, message: ChatMessage, identifier: Optional[MessageIdentifier] = None) -> MessageIdentifier:
        """Insert a new turn; a missing identifier gets a synthetic one"""

        identifier = identifier or MessageIdentifier.new_synthetic()
        if identifier in self._nodes:
            raise DuplicateIdentifierError(
                "a turn already exists at this identifier, push a new version instead",
                identifier
            )

        self._nodes[identifier] = BranchNode.new(message)
        return identifier

    def find(self, identifier: MessageIdentifier) -> Optional[BranchNode]:
        return self._nodes.get(identifier)

    def find_mut(self, identifier: MessageIdentifier) -> BranchNode:
        """Same as find, but a missing turn is an error"""

        node = self._nodes.get(identifier)
        if node is None:
            raise MessageNotFoundError("message not found in conversation", identifier)
        return node

    def find_full(self, identifier: MessageIdentifier) -> Optional[Tuple[int, MessageIdentifier, BranchNode]]:
        """Index, stored identifier and node for the given identifier"""

        for index, (key, node) in enumerate(self._nodes.items()):
            if key == identifier:
                return index, key, node
        return None

    def get(self, index: int) -> Optional[BranchNode]:
        if not 0 <= index < len(self._nodes):
            return None
        return list(self._nodes.values())[index]

    def swap_identifier(self, old: MessageIdentifier, new: MessageIdentifier) -> None:
        """Re-key a turn without moving it in conversation order"""

        if old not in self._nodes:
            raise MessageNotFoundError("cannot re-key a message that is not in the conversation", old)
        if new != old and new in self._nodes:
            raise DuplicateIdentifierError("target identifier is already in use", new)

        self._nodes = {
            (new if key == old else key): node
            for key, node in self._nodes.items()
        }

    def remove(self, identifier: MessageIdentifier) -> BranchNode:
        node = self._nodes.pop(identifier, None)
        if node is None:
            raise MessageNotFoundError("message not found in conversation", identifier)
        return node

    def latest(self) -> Optional[BranchNode]:
        return next(reversed(self._nodes.values()), None)

    def latest_with_role(self, role: MessageRole) -> Optional[BranchNode]:
        for node in reversed(self._nodes.values()):
            if node.selected_message.role == role:
                return node
        return None

    def latest_identifier(self) -> Optional[MessageIdentifier]:
        return next(reversed(self._nodes.keys()), None)

    def messages(self) -> List[ChatMessage]:
        """Selected version of every turn, oldest first"""
        return [node.selected_message for node in self._nodes.values()]

    def drain_overflow(self, max_stm: int, drain_fraction: float = DEFAULT_DRAIN_FRACTION) -> Optional[List[ChatMessage]]:
        """If the store is full, evict the oldest turns down to ``drain_fraction`` of max_stm.

        The latest turn is stamped as a freewill boundary before draining so a
        later pass can tell where this eviction happened.
        """

        plan = self.plan_overflow(max_stm, drain_fraction)
        if plan is None:
            return None
        return self.evict(plan)

    def plan_overflow(self, max_stm: int, drain_fraction: float = DEFAULT_DRAIN_FRACTION) -> Optional[EvictionPlan]:
        """What drain_overflow would evict, without touching the store"""

        if max_stm <= 0 or len(self._nodes) < max_stm:
            return None

        # round half up
        retained = int(math.floor(drain_fraction * max_stm + 0.5))
        to_remove = len(self._nodes) - retained
        if to_remove <= 0:
            return None

        keys = list(self._nodes.keys())
        return EvictionPlan(boundary=keys[-1], identifiers=keys[:to_remove])

    def evict(self, plan: EvictionPlan) -> List[ChatMessage]:
        """Stamp the plan's boundary, then pop its turns, oldest first"""

        boundary = self._nodes.get(plan.boundary)
        if boundary is not None:
            boundary.mark_boundary()

        logger.info("Context close to or full, draining", to_remove=len(plan.identifiers), turns=len(self._nodes))

        return [
            self._nodes.pop(key).selected_message
            for key in plan.identifiers
            if key in self._nodes
        ]

    def take_until_freewill(self) -> List[ChatMessage]:
        """Turns since the last freewill boundary, oldest first"""
        return take_until_boundary(self.messages())

    def time_since_last(self) -> timedelta:
        latest = self.latest()
        if latest is None:
            return timedelta(0)
        return utcnow() - latest.selected_message.sent_at

    def clear(self) -> None:
        self._nodes.clear()

    def to_snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            entries=[
                SnapshotEntry(identifier=key, node=node.model_copy(deep=True))
                for key, node in self._nodes.items()
            ]
        )

    @classmethod
    def from_snapshot(cls, snapshot: ConversationSnapshot) -> "ConversationStore":
        store = cls()
        for entry in snapshot.entries:
            if entry.identifier in store._nodes:
                raise DuplicateIdentifierError("snapshot contains a duplicate identifier", entry.identifier)
            store._nodes[entry.identifier] = entry.node
        return store

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._nodes

    def __iter__(self) -> Iterator[Tuple[MessageIdentifier, BranchNode]]:
        return iter(list(self._nodes.items()))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConversationStore):
            return NotImplemented
        return self.to_snapshot() == other.to_snapshot()
