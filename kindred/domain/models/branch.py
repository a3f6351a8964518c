from typing import List
from pydantic import BaseModel, Field, model_validator
from datetime import datetime

from .message import ChatMessage, utcnow


class BranchVersion(BaseModel):
    """A single version of a turn and when it was added"""
    message: ChatMessage
    inserted_at: datetime = Field(default_factory=utcnow)


class BranchNode(BaseModel):
    """A logical turn with its alternative versions (original, edits, regenerations).

    The version list is append-only; navigation only moves ``selected``.
    """
    versions: List[BranchVersion] = Field(min_length=1)
    selected: int = 0

    @model_validator(mode="after")
    def _check_selected(self) -> "BranchNode":
        if not 0 <= self.selected < len(self.versions):
            raise ValueError(f"selected index {self.selected} out of range for {len(self.versions)} versions")
        return self

    @classmethod
    def new(cls, message: ChatMessage) -> "BranchNode":
        return cls(versions=[BranchVersion(message=message)])

    @property
    def selected_message(self) -> ChatMessage:
        return self.versions[self.selected].message

    @property
    def can_go_back(self) -> bool:
        return self.selected > 0

    @property
    def can_go_forward(self) -> bool:
        return self.selected < len(self.versions) - 1

    def push(self, message: ChatMessage) -> None:
        """Append a new version and select it"""
        self.versions.append(BranchVersion(message=message))
        self.selected = len(self.versions) - 1

    def select_previous(self) -> ChatMessage:
        # Callers only offer a "prev" control when a previous version exists
        if not self.can_go_back:
            raise IndexError("already at the first version of this turn")
        self.selected -= 1
        return self.selected_message

    def select_next(self) -> ChatMessage:
        if not self.can_go_forward:
            raise IndexError("already at the latest version of this turn")
        self.selected += 1
        return self.selected_message

    def replace_selected(self, message: ChatMessage) -> None:
        """Swap the selected version in place, keeping its insertion time"""
        self.versions[self.selected] = self.versions[self.selected].model_copy(update={"message": message})

    def mark_boundary(self) -> None:
        self.replace_selected(self.selected_message.as_boundary())

    def __len__(self) -> int:
        return len(self.versions)
