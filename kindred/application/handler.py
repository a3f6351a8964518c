from typing import Optional
import structlog

from kindred.domain.models import ChatMessage, MessageIdentifier
from kindred.domain.orchestration.core.engine import ChatEngine
from kindred.domain.orchestration.core.guard import EngineRegistry
from .platform import ChatPlatform
from .schema.events import (
    BaseEvent, EditSubmitEvent, FreewillEvent, InteractionAction,
    InteractionEvent, MessageEditEvent, MessageEvent, NavigationControls
)

logger = structlog.get_logger(__name__)


class ConversationHandler:
    """Routes inbound platform events to the user's engine and renders the outcome"""

    def __init__(self, registry: EngineRegistry, platform: ChatPlatform):
        self.registry = registry
        self.platform = platform

    async def handle(self, event: BaseEvent) -> Optional[MessageIdentifier]:
        """Dispatch any inbound event"""

        if isinstance(event, MessageEvent):
            return await self.on_message(event)
        if isinstance(event, MessageEditEvent):
            await self.on_edit(event)
            return None
        if isinstance(event, InteractionEvent):
            return await self.on_interaction(event)
        if isinstance(event, EditSubmitEvent):
            return await self.on_edit_submit(event)
        if isinstance(event, FreewillEvent):
            return await self.on_freewill(event)

        raise ValueError(f"unsupported event type: {event.type}")

    async def on_message(self, event: MessageEvent) -> Optional[MessageIdentifier]:
        """Answer a new user message"""

        if event.from_bot:
            return None

        logger.info("Processing message", user_id=event.user_id, message_id=event.identifier.message_id)

        async with self.registry.lock(event.user_id) as guard:
            async with guard.write() as engine:
                reply = await engine.user_prompt(event.content, event.identifier)

                # A fresh reply has a single version, so it can only be regenerated
                reply_id = await self.platform.send(event.identifier.channel_id, reply.content, NavigationControls())
                engine.store.add(reply, reply_id)

        return reply_id

    async def on_edit(self, event: MessageEditEvent) -> None:
        """The user edited a message: record the new text as a new version"""

        if event.from_bot or event.content is None:
            return

        async with self.registry.lock(event.user_id) as guard:
            async with guard.write() as engine:
                node = engine.store.find_mut(event.identifier)
                node.push(ChatMessage.user(event.content))

        logger.info("User message edited", user_id=event.user_id, message_id=event.identifier.message_id)

    async def on_interaction(self, event: InteractionEvent) -> Optional[MessageIdentifier]:
        """Handle a control pressed under an assistant reply"""

        logger.info(
            "Processing interaction",
            user_id=event.user_id,
            action=event.action.value,
            message_id=event.identifier.message_id
        )

        async with self.registry.lock(event.user_id) as guard:
            async with guard.write() as engine:
                if event.action == InteractionAction.PREV:
                    node = engine.store.find_mut(event.identifier)
                    message = node.select_previous()
                    return await self._render(engine, event.identifier, message)

                if event.action == InteractionAction.NEXT:
                    node = engine.store.find_mut(event.identifier)
                    message = node.select_next()
                    return await self._render(engine, event.identifier, message)

                if event.action == InteractionAction.REGEN:
                    # Fail on a stale control before spending a provider call
                    engine.store.find_mut(event.identifier)
                    reply = await engine.regenerate(event.identifier)
                    engine.store.find_mut(event.identifier).push(reply)
                    return await self._render(engine, event.identifier, reply)

                if event.action == InteractionAction.EDIT:
                    node = engine.store.find_mut(event.identifier)
                    await self.platform.open_editor(event.identifier, node.selected_message.content or "")
                    return event.identifier

                if event.action == InteractionAction.DELETE:
                    engine.store.find_mut(event.identifier)
                    # The turn stays in the conversation if the platform refuses
                    await self.platform.delete(event.identifier)
                    engine.store.remove(event.identifier)
                    return None

        raise ValueError(f"unsupported action: {event.action}")

    async def on_edit_submit(self, event: EditSubmitEvent) -> MessageIdentifier:
        """An assistant reply was rewritten through the edit form"""

        async with self.registry.lock(event.user_id) as guard:
            async with guard.write() as engine:
                message = ChatMessage.assistant(event.content)
                engine.store.find_mut(event.identifier).push(message)
                return await self._render(engine, event.identifier, message)

    async def on_freewill(self, event: FreewillEvent) -> MessageIdentifier:
        """Speak unprompted in the given channel"""

        async with self.registry.lock(event.user_id) as guard:
            async with guard.write() as engine:
                reply = await engine.freewill()
                reply_id = await self.platform.send(event.channel_id, reply.content, NavigationControls())
                engine.store.add(reply, reply_id)

        logger.info("Freewill message sent", user_id=event.user_id, message_id=reply_id.message_id)
        return reply_id

    async def clear(self, user_id: int) -> None:
        """Drop the user's conversation and start a fresh engine"""
        await self.registry.reset(user_id)

    async def reload(self, user_id: int) -> None:
        """Rebuild the user's engine, keeping the conversation"""
        await self.registry.reset(user_id, keep_context=True)

    async def shutdown(self) -> None:
        """Persist every conversation once in-flight turns finish"""
        await self.registry.shutdown()
        logger.info("Conversation handler shut down")

    async def _render(self, engine: ChatEngine, identifier: MessageIdentifier, message: ChatMessage) -> MessageIdentifier:
        node = engine.store.find_mut(identifier)
        new_identifier = await self.platform.edit(identifier, message.content or "", NavigationControls.for_node(node))

        # Re-sent or re-split replies land on different platform messages
        if new_identifier != identifier or new_identifier.all_ids() != identifier.all_ids():
            engine.store.swap_identifier(identifier, new_identifier)

        return new_identifier
