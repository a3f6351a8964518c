from typing import Optional, Literal
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum

from kindred.domain.models import BranchNode, MessageIdentifier


class EventType(str, Enum):
    """Inbound chat platform event types"""
    MESSAGE = "message"
    MESSAGE_EDIT = "message_edit"
    INTERACTION = "interaction"
    EDIT_SUBMIT = "edit_submit"
    FREEWILL = "freewill"


class InteractionAction(str, Enum):
    """Controls rendered under an assistant reply"""
    PREV = "prev"
    NEXT = "next"
    REGEN = "regen"
    EDIT = "edit"
    DELETE = "delete"


class BaseEvent(BaseModel):
    """Base model for all inbound events"""
    type: EventType
    user_id: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MessageEvent(BaseEvent):
    """A new user message"""
    type: Literal[EventType.MESSAGE] = EventType.MESSAGE
    identifier: MessageIdentifier
    content: str
    from_bot: bool = False


class MessageEditEvent(BaseEvent):
    """The user edited one of their messages"""
    type: Literal[EventType.MESSAGE_EDIT] = EventType.MESSAGE_EDIT
    identifier: MessageIdentifier
    content: Optional[str] = None
    from_bot: bool = False


class InteractionEvent(BaseEvent):
    """A control under an assistant reply was pressed"""
    type: Literal[EventType.INTERACTION] = EventType.INTERACTION
    identifier: MessageIdentifier
    action: InteractionAction


class EditSubmitEvent(BaseEvent):
    """Edited text for an assistant reply, submitted from the edit form"""
    type: Literal[EventType.EDIT_SUBMIT] = EventType.EDIT_SUBMIT
    identifier: MessageIdentifier
    content: str


class FreewillEvent(BaseEvent):
    """Scheduled trigger for unprompted speech"""
    type: Literal[EventType.FREEWILL] = EventType.FREEWILL
    channel_id: int


class NavigationControls(BaseModel):
    """Which controls to present under a rendered reply"""
    prev: bool = False
    next: bool = False
    regen: bool = True
    edit: bool = True

    @classmethod
    def for_node(cls, node: BranchNode) -> "NavigationControls":
        # "next" and "regen" share a slot: regenerate only from the newest version
        return cls(
            prev=node.can_go_back,
            next=node.can_go_forward,
            regen=not node.can_go_forward,
            edit=True
        )
