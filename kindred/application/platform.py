from abc import ABC, abstractmethod

from kindred.domain.models import MessageIdentifier
from .schema.events import NavigationControls


class ChatPlatform(ABC):
    """Outbound side of the chat platform"""

    @abstractmethod
    async def send(self, channel_id: int, content: str, controls: NavigationControls) -> MessageIdentifier:
        """Render a new message and return where it landed"""
        pass

    @abstractmethod
    async def edit(self, identifier: MessageIdentifier, content: str, controls: NavigationControls) -> MessageIdentifier:
        """Replace a rendered message; the returned identifier differs if it had to be re-sent"""
        pass

    @abstractmethod
    async def delete(self, identifier: MessageIdentifier) -> None:
        pass

    @abstractmethod
    async def open_editor(self, identifier: MessageIdentifier, content: str) -> None:
        """Show the edit form for a rendered reply, prefilled with ``content``"""
        pass
