"""
Configuration for provider and backend selection.

Values come from the environment (a `.env` file is loaded first, as the CLI
does). Persisting configuration is left to the host; ConfigManager only keeps
the current value in memory and tells listeners when it changes.
"""

import os
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv


class AIProviderName(Enum):
    LOCAL = "local"
    GEMINI = "gemini"
    OPENAI = "openai"


class StorageBackendName(Enum):
    LOCAL = "local"
    CHROMA = "chroma"


def _default_data_dir() -> str:
    return str(Path.home() / ".squirrel")


@dataclass(frozen=True)
class AppConfig:
    storage_backend: StorageBackendName = StorageBackendName.LOCAL
    ai_provider: AIProviderName = AIProviderName.LOCAL
    data_dir: str = ""

    # Local provider
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "gemma3:4b"
    embedding_model: Optional[str] = "sentence-transformers/all-MiniLM-L6-v2"

    # Remote AI providers
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_embedding_model: str = "models/text-embedding-004"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"

    # Remote storage
    chroma_url: Optional[str] = None
    chroma_token: Optional[str] = None
    chroma_collection: str = "squirrel_notes"

    def __post_init__(self):
        # Accept plain strings so callers can write AppConfig(ai_provider="gemini")
        object.__setattr__(self, "storage_backend", StorageBackendName(_enum_value(self.storage_backend)))
        object.__setattr__(self, "ai_provider", AIProviderName(_enum_value(self.ai_provider)))
        if not self.data_dir:
            object.__setattr__(self, "data_dir", _default_data_dir())

    @property
    def sqlite_path(self) -> str:
        return os.path.join(self.data_dir, "notes.db")

    def has_ai_credentials(self, provider: AIProviderName) -> bool:
        if provider is AIProviderName.GEMINI:
            return bool(self.gemini_api_key)
        if provider is AIProviderName.OPENAI:
            return bool(self.openai_api_key)
        return True

    def has_storage_credentials(self, backend: StorageBackendName) -> bool:
        if backend is StorageBackendName.CHROMA:
            return bool(self.chroma_url and self.chroma_token)
        return True

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AppConfig":
        """Builds a config from environment variables, loading `.env` first."""
        load_dotenv(env_file)
        defaults = cls()
        return cls(
            storage_backend=os.getenv("SQUIRREL_STORAGE_BACKEND", defaults.storage_backend.value).lower(),
            ai_provider=os.getenv("SQUIRREL_AI_PROVIDER", defaults.ai_provider.value).lower(),
            data_dir=os.getenv("SQUIRREL_DATA_DIR", defaults.data_dir),
            ollama_url=os.getenv("OLLAMA_URL", defaults.ollama_url),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults.ollama_model),
            embedding_model=os.getenv("EMBEDDING_MODEL", defaults.embedding_model) or None,
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", defaults.gemini_model),
            gemini_embedding_model=os.getenv("GEMINI_EMBEDDING_MODEL", defaults.gemini_embedding_model),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
            openai_embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", defaults.openai_embedding_model),
            chroma_url=os.getenv("CHROMA_URL"),
            chroma_token=os.getenv("CHROMA_TOKEN"),
            chroma_collection=os.getenv("CHROMA_COLLECTION", defaults.chroma_collection),
        )


def _enum_value(value) -> str:
    return value.value if isinstance(value, Enum) else str(value).lower()


ConfigListener = Callable[[AppConfig], None]


class ConfigManager:
    """Holds the current AppConfig and notifies listeners on every write."""

    def __init__(self, config: Optional[AppConfig] = None):
        self._config = config
        self._listeners: List[ConfigListener] = []

    def get_config(self) -> AppConfig:
        if self._config is None:
            self._config = AppConfig.from_env()
        return self._config

    def set_config(self, **changes) -> AppConfig:
        known = {f.name for f in fields(AppConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

        self._config = replace(self.get_config(), **changes)
        self._notify()
        return self._config

    def reset_config(self) -> AppConfig:
        self._config = AppConfig(data_dir=self.get_config().data_dir)
        self._notify()
        return self._config

    def subscribe(self, listener: ConfigListener) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self._config)
