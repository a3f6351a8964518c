"""
Runtime configuration.

Loaded from the environment with the ``KINDRED_`` prefix; nested groups use a
double underscore, e.g. ``KINDRED_CONTEXT__MAX_STM=40`` or
``KINDRED_PERSONA__CHATBOT_NAME=Ada``.
"""

from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kindred.domain.context.prompt_builder import SystemPromptBuilder


class ContextSettings(BaseModel):
    """Short-term memory bounds"""
    max_stm: int = Field(50, gt=0, description="Turns kept before the oldest are evicted")
    drain_fraction: float = Field(0.8, gt=0, le=1, description="Share of max_stm kept after an eviction")


class CompletionSettings(BaseModel):
    """Completion provider and turn loop behaviour"""
    model: str = Field("openai:gpt-4o-mini", description="provider:model passed to init_chat_model")
    temperature: float = 0.8
    max_retries: int = Field(5, ge=1, description="Provider calls allowed per turn")
    max_message_length: int = Field(2000, gt=0, description="Per-message size ceiling of the chat platform")
    use_tools: bool = True
    rag_recall: bool = True
    force_lowercase: bool = False


class MemorySettings(BaseModel):
    """Long-term vector memory"""
    embedding_model: str = "openai:text-embedding-3-small"
    vector_size: int = Field(1536, gt=0)
    similarity_threshold: float = Field(0.5, ge=0, le=1)
    recall_limit: int = Field(5, gt=0)
    max_memories: int = Field(1000, gt=0)


class PersistenceSettings(BaseModel):
    directory: str = "data/conversations"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = Field("json", pattern="^(json|console)$")
    service_name: str = "kindred"


class KindredSettings(BaseSettings):
    """Top-level settings"""

    model_config = SettingsConfigDict(
        env_prefix="KINDRED_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    context: ContextSettings = Field(default_factory=ContextSettings)
    completion: CompletionSettings = Field(default_factory=CompletionSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    persistence: PersistenceSettings = Field(default_factory=PersistenceSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    persona: SystemPromptBuilder = Field(default_factory=SystemPromptBuilder)

    api_key: Optional[str] = Field(None, description="Provider API key, if the chat model needs one")


@lru_cache(maxsize=1)
def get_settings() -> KindredSettings:
    """Cached settings singleton"""
    return KindredSettings()
