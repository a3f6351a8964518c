from typing import Any, Dict
from langchain.chat_models import init_chat_model
from langchain.embeddings import init_embeddings
from langchain_core.embeddings import Embeddings
from langchain_core.language_models.chat_models import BaseChatModel

from kindred.infrastructure.config.settings import KindredSettings


def _credentials(settings: KindredSettings) -> Dict[str, Any]:
    return {"api_key": settings.api_key} if settings.api_key else {}


def load_chat_model(settings: KindredSettings) -> BaseChatModel:
    """Chat model named by ``completion.model``, e.g. ``openai:gpt-4o-mini``"""
    return init_chat_model(
        settings.completion.model,
        temperature=settings.completion.temperature,
        **_credentials(settings)
    )


def load_embeddings(settings: KindredSettings) -> Embeddings:
    """Embeddings model named by ``memory.embedding_model``"""
    return init_embeddings(settings.memory.embedding_model, **_credentials(settings))
