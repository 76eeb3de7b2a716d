from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from squirrel.core.domain.note import Note

class IAIProvider(ABC):
    """Interface for AI capabilities: embeddings, completions, tagging and QA."""

    name: str = "abstract"

    @abstractmethod
    async def initialize(self) -> None:
        """Prepares clients or models. Remote variants fail fast here."""
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Returns True when the underlying model can be called."""
        pass

    @abstractmethod
    async def generate_embedding(self, text: str) -> List[float]:
        """Generates a vector embedding for the given text."""
        pass

    @abstractmethod
    async def generate_completion(self, prompt: str, context: Optional[str] = None) -> str:
        """Generates text based on the prompt and optional context."""
        pass

    @abstractmethod
    async def generate_tags(self, content: str) -> List[str]:
        """Returns at most 5 normalized tags for the content."""
        pass

    @abstractmethod
    async def answer_question(self, question: str, context: str) -> str:
        """Answers a question using the assembled notes context."""
        pass

class IEmbeddingProvider(ABC):
    """Interface for blocking, on-device embedding models."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Generates a vector embedding for the given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Returns the dimension of the embeddings."""
        pass

class INoteRepository(ABC):
    """Interface for note storage and retrieval."""

    name: str = "abstract"

    @abstractmethod
    async def initialize(self) -> None:
        """Opens or creates the underlying store."""
        pass

    @abstractmethod
    async def save_note(self, note: Note) -> Note:
        """Persists a new note, assigning id and timestamps."""
        pass

    @abstractmethod
    async def get_note(self, note_id: str) -> Optional[Note]:
        pass

    @abstractmethod
    async def get_all_notes(self) -> List[Note]:
        pass

    @abstractmethod
    async def delete_note(self, note_id: str) -> None:
        pass

    @abstractmethod
    async def update_note(self, note_id: str, updates: Dict[str, Any]) -> Note:
        """Applies a partial update. Raises NoteNotFoundError for unknown ids."""
        pass

    @abstractmethod
    async def search_notes(self, query: str) -> List[Note]:
        """Case-insensitive substring match over content or any tag."""
        pass

    @abstractmethod
    async def search_by_vector(self, embedding: List[float], limit: int = 10) -> List[Note]:
        """Returns notes ranked by cosine similarity, best first."""
        pass

    @abstractmethod
    async def search_by_tag(self, tag: str) -> List[Note]:
        pass

    @abstractmethod
    async def get_recent_notes(self, limit: int = 10) -> List[Note]:
        """Returns notes ordered by creation time, newest first."""
        pass

    @abstractmethod
    async def get_tags(self) -> List[str]:
        """Returns the sorted set of tags used across all notes."""
        pass

    @abstractmethod
    async def clear_all(self) -> None:
        pass


