from typing import Optional
import structlog

from kindred.domain.orchestration.core.guard import EngineRegistry
from kindred.infrastructure.config.settings import KindredSettings, get_settings
from kindred.infrastructure.observability.logging import setup_logging
from .engine_factory import EngineFactory
from .handler import ConversationHandler
from .platform import ChatPlatform

logger = structlog.get_logger(__name__)


def create_handler(
    platform: ChatPlatform,
    settings: Optional[KindredSettings] = None,
    factory: Optional[EngineFactory] = None
) -> ConversationHandler:
    """Wire logging, the engine registry and the event handler for a platform"""

    settings = settings or get_settings()

    setup_logging(
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        service_name=settings.logging.service_name
    )

    registry = EngineRegistry(factory or EngineFactory.from_settings(settings))

    logger.info(
        "Conversation handler ready",
        max_stm=settings.context.max_stm,
        max_retries=settings.completion.max_retries,
        snapshots=settings.persistence.directory
    )

    return ConversationHandler(registry, platform)
