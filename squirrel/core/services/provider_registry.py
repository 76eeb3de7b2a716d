"""
Provider selection and fallback.

Resolves the configured AI provider and note repository, memoizes them for
the process and re-resolves after `invalidate()`. Resolution walks an ordered
attempt list: the configured variant first, then the local default.
"""

import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from squirrel.config import AIProviderName, AppConfig, ConfigManager, StorageBackendName
from squirrel.core.domain.errors import ProviderNotConfiguredError
from squirrel.core.interfaces.ports import IAIProvider, INoteRepository

logger = logging.getLogger(__name__)

Attempt = Tuple[str, Callable[[], object]]


def build_ai_provider(name: AIProviderName, config: AppConfig) -> IAIProvider:
    """Constructs (but does not initialize) one AI provider variant."""
    if name is AIProviderName.GEMINI:
        from squirrel.infrastructure.llm.gemini_provider import GeminiProvider
        return GeminiProvider(
            api_key=config.gemini_api_key,
            model_name=config.gemini_model,
            embedding_model=config.gemini_embedding_model,
        )
    if name is AIProviderName.OPENAI:
        from squirrel.infrastructure.llm.openai_provider import OpenAIProvider
        return OpenAIProvider(
            api_key=config.openai_api_key,
            model_name=config.openai_model,
            embedding_model=config.openai_embedding_model,
        )
    from squirrel.infrastructure.llm.ollama_provider import OllamaLocalProvider
    return OllamaLocalProvider(
        model_name=config.ollama_model,
        base_url=config.ollama_url,
        embedding_model=config.embedding_model,
    )


def build_repository(name: StorageBackendName, config: AppConfig) -> INoteRepository:
    """Constructs (but does not initialize) one repository variant."""
    if name is StorageBackendName.CHROMA:
        from squirrel.infrastructure.storage.chroma_repo import ChromaNoteRepository
        return ChromaNoteRepository(
            url=config.chroma_url,
            token=config.chroma_token,
            collection_name=config.chroma_collection,
        )
    from squirrel.infrastructure.storage.sqlite_repo import SQLiteNoteRepository
    return SQLiteNoteRepository(db_path=config.sqlite_path)


class ProviderRegistry:
    """
    Process-wide cache of the resolved AI provider and note repository.

    Resolution is single-flight per kind. Invalidation only clears the cache;
    callers already holding an instance keep using it.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        ai_factory: Callable[[AIProviderName, AppConfig], IAIProvider] = build_ai_provider,
        repository_factory: Callable[[StorageBackendName, AppConfig], INoteRepository] = build_repository,
    ):
        self.config_manager = config_manager
        self.ai_factory = ai_factory
        self.repository_factory = repository_factory
        self._ai: Optional[IAIProvider] = None
        self._repository: Optional[INoteRepository] = None
        self._ai_lock = asyncio.Lock()
        self._repository_lock = asyncio.Lock()
        self._generation = 0
        config_manager.subscribe(lambda _config: self.invalidate())

    def invalidate(self) -> None:
        """Drops both cached instances; the next request resolves again."""
        self._generation += 1
        self._ai = None
        self._repository = None
        logger.debug("Provider cache invalidated (generation %d)", self._generation)

    async def get_ai_provider(self) -> IAIProvider:
        if self._ai is not None:
            return self._ai
        async with self._ai_lock:
            if self._ai is None:
                generation = self._generation
                provider = await self.resolve_ai_provider(self.config_manager.get_config())
                # A config change during resolution must not be overwritten
                if generation != self._generation:
                    return provider
                self._ai = provider
            return self._ai

    async def get_repository(self) -> INoteRepository:
        if self._repository is not None:
            return self._repository
        async with self._repository_lock:
            if self._repository is None:
                generation = self._generation
                repository = await self.resolve_repository(self.config_manager.get_config())
                if generation != self._generation:
                    return repository
                self._repository = repository
            return self._repository

    # -- resolution --------------------------------------------------------

    def ai_attempts(self, config: AppConfig) -> List[Attempt]:
        """Ordered variants to try for the AI provider."""
        configured = config.ai_provider
        attempts = []
        if configured is not AIProviderName.LOCAL:
            if config.has_ai_credentials(configured):
                attempts.append((configured.value, lambda: self.ai_factory(configured, config)))
            else:
                logger.warning("%s API key not found, falling back to local AI", configured.value)
        attempts.append((AIProviderName.LOCAL.value, lambda: self.ai_factory(AIProviderName.LOCAL, config)))
        return attempts

    def repository_attempts(self, config: AppConfig) -> List[Attempt]:
        """Ordered variants to try for storage. Only a missing credential falls back."""
        configured = config.storage_backend
        if configured is not StorageBackendName.LOCAL:
            if config.has_storage_credentials(configured):
                return [(configured.value, lambda: self.repository_factory(configured, config))]
            logger.warning("%s credentials not found, falling back to local storage", configured.value)
        return [(StorageBackendName.LOCAL.value,
                 lambda: self.repository_factory(StorageBackendName.LOCAL, config))]

    async def resolve_ai_provider(self, config: AppConfig) -> IAIProvider:
        return await _first_initialized(self.ai_attempts(config), "AI provider")

    async def resolve_repository(self, config: AppConfig) -> INoteRepository:
        return await _first_initialized(self.repository_attempts(config), "storage backend")


async def _first_initialized(attempts: List[Attempt], kind: str):
    """
    Builds and initializes each attempt in order, returning the first success.

    A missing credential or a failed initialize moves on to the next attempt;
    the last attempt's failure propagates.
    """
    for index, (name, build) in enumerate(attempts):
        try:
            instance = build()
            await instance.initialize()
        except Exception as e:
            if index == len(attempts) - 1:
                raise
            if isinstance(e, ProviderNotConfiguredError):
                logger.warning("%s '%s' not configured, trying next: %s", kind, name, e)
            else:
                logger.error("Failed to initialize %s '%s', trying next: %s", kind, name, e)
            continue
        logger.info("Using %s '%s'", kind, name)
        return instance
    raise ProviderNotConfiguredError(f"No {kind} available")


_default_registry: Optional[ProviderRegistry] = None


def get_registry() -> ProviderRegistry:
    """The process-wide registry, configured from the environment."""
    global _default_registry
    if _default_registry is None:
        _default_registry = ProviderRegistry(ConfigManager())
    return _default_registry
