"""
KnowledgeService - capture notes and answer questions against them.

Capture computes the embedding and tags concurrently and persists the note.
Questions are answered from a bounded context built out of the most relevant
notes (vector search, or a topical filter for video questions).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from squirrel.config import ConfigManager
from squirrel.core.domain.errors import NoteNotFoundError, ProviderUnavailableError
from squirrel.core.domain.note import Note, NoteSource, SourceKind, VideoDetails
from squirrel.core.services.provider_registry import ProviderRegistry, get_registry
from squirrel.core.services.tag_normalizer import clean_tags

logger = logging.getLogger(__name__)

VIDEO_TAG = "youtube"
VIDEO_TOPIC_MARKERS = ("youtube", "video")

VECTOR_CANDIDATES = 5
RECENT_FALLBACK_CANDIDATES = 5
VIDEO_CANDIDATES = 10

MAX_CONTEXT_CHARS = 4000
NOTE_EXCERPT_CHARS = 250
VIDEO_DESCRIPTION_CHARS = 200
SOURCE_PREVIEW_CHARS = 200
CONTEXT_SEPARATOR = "\n\n"


@dataclass
class SourceRef:
    """A note cited in an answer, trimmed for display."""
    id: str
    content_preview: str
    tags: List[str]
    is_rich_source: bool
    url: str

    @classmethod
    def from_note(cls, note: Note) -> "SourceRef":
        return cls(
            id=note.id,
            content_preview=note.preview(SOURCE_PREVIEW_CHARS),
            tags=list(note.tags),
            is_rich_source=note.is_rich_source,
            url=note.source.url,
        )


@dataclass
class Answer:
    answer: str
    sources: List[SourceRef] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [vars(s) for s in self.sources],
        }


def format_offset(seconds: int) -> str:
    """Formats a playback offset as m:ss or h:mm:ss."""
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def is_video_question(question: str) -> bool:
    lowered = question.lower()
    return any(marker in lowered for marker in VIDEO_TOPIC_MARKERS)


def render_note(index: int, note: Note) -> str:
    """Renders one candidate note for the answer context."""
    if note.is_rich_source:
        lines = note.content.split("\n")
        title = lines[0] or "Unknown video"
        description = " ".join(lines[1:]).strip()[:VIDEO_DESCRIPTION_CHARS]
        topics = ", ".join(t for t in note.tags if t != VIDEO_TAG) or "general"
        return (
            f"{index}. YouTube Video: \"{title}\"\n"
            f"   - Topic tags: {topics}\n"
            f"   - Description: {description or 'No description available'}\n"
            f"   - URL: {note.source.url or 'N/A'}"
        )

    return (
        f"{index}. Note about: {', '.join(note.tags[:3])}\n"
        f"   - Content: {note.content[:NOTE_EXCERPT_CHARS]}...\n"
        f"   - Source: {note.source.title or 'Unknown'}"
    )


def build_context(notes: List[Note], max_chars: int = MAX_CONTEXT_CHARS) -> str:
    """
    Joins rendered notes, trimming each one to an equal share of `max_chars`.

    Trimming per note keeps every candidate represented instead of cutting
    the tail of the joined string.
    """
    if not notes:
        return ""
    separators = len(CONTEXT_SEPARATOR) * (len(notes) - 1)
    share = max(1, (max_chars - separators) // len(notes))
    blocks = [render_note(i, note)[:share] for i, note in enumerate(notes, 1)]
    return CONTEXT_SEPARATOR.join(blocks)


class KnowledgeService:
    """
    Entry points used by capture surfaces and question UIs.

    Provider and repository instances are fetched from the registry on every
    call, so a configuration change takes effect on the next operation.
    """

    def __init__(self, registry: ProviderRegistry, max_context_chars: int = MAX_CONTEXT_CHARS):
        self.registry = registry
        self.max_context_chars = max_context_chars

    @property
    def config_manager(self) -> ConfigManager:
        return self.registry.config_manager

    # -- capture -----------------------------------------------------------

    async def capture(self, content: str, source: Optional[NoteSource] = None) -> Note:
        """Embeds, tags and stores a captured snippet."""
        if not content or not content.strip():
            raise ValueError("Cannot capture an empty note")
        return await self._capture(content, source or NoteSource(), analysis_text=content)

    async def capture_video_clip(
        self,
        video_id: str,
        offset_seconds: int,
        title: str,
        channel: str = "",
        thumbnail: str = "",
        transcript: str = "",
    ) -> Note:
        """Stores a video clip; the transcript (when present) drives embedding and tags."""
        content = f"{title}\n\n{transcript}" if transcript else title
        if not content.strip():
            raise ValueError("Cannot capture a video clip without a title or transcript")

        source = NoteSource(
            url=f"https://www.youtube.com/watch?v={video_id}&t={int(offset_seconds)}s",
            title=f"{title} [{format_offset(offset_seconds)}]",
            kind=SourceKind.VIDEO,
            video=VideoDetails(
                video_id=video_id,
                offset_seconds=int(offset_seconds),
                channel=channel,
                thumbnail=thumbnail,
            ),
        )
        return await self._capture(content, source, analysis_text=transcript or content)

    async def _capture(self, content: str, source: NoteSource, analysis_text: str) -> Note:
        ai = await self.registry.get_ai_provider()
        repo = await self.registry.get_repository()

        # Both must succeed; a failure in either aborts the save and cancels the other
        tasks = [
            asyncio.create_task(ai.generate_embedding(analysis_text)),
            asyncio.create_task(ai.generate_tags(analysis_text)),
        ]
        try:
            embedding, tags = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        if not embedding:
            raise ProviderUnavailableError(f"{ai.name} returned an empty embedding")

        note = Note(
            content=content,
            embedding=list(embedding),
            tags=clean_tags(list(tags) + self._topic_tags(source)),
            source=source,
        )
        saved = await repo.save_note(note)
        logger.info("Saved note %s with tags %s", saved.id, saved.tags)
        return saved

    @staticmethod
    def _topic_tags(source: NoteSource) -> List[str]:
        return [VIDEO_TAG] if source.is_video else []

    # -- question answering ------------------------------------------------

    async def answer(self, question: str) -> Answer:
        ai = await self.registry.get_ai_provider()
        candidates = await self.select_candidates(question)

        context = build_context(candidates, self.max_context_chars)
        logger.debug("Context length: %d chars from %d notes", len(context), len(candidates))

        reply = await ai.answer_question(question, context)
        return Answer(answer=reply, sources=[SourceRef.from_note(n) for n in candidates])

    async def select_candidates(self, question: str) -> List[Note]:
        repo = await self.registry.get_repository()

        if is_video_question(question):
            logger.debug("Video question detected, filtering for video notes")
            notes = await repo.get_all_notes()
            videos = [n for n in notes if n.is_rich_source]
            videos.sort(key=lambda n: n.created_at, reverse=True)
            return videos[:VIDEO_CANDIDATES]

        ai = await self.registry.get_ai_provider()
        query_embedding = await ai.generate_embedding(question)
        logger.debug("Query embedding generated, dimensions: %d", len(query_embedding))

        candidates = await repo.search_by_vector(query_embedding, VECTOR_CANDIDATES)
        if not candidates:
            logger.debug("No vector matches, falling back to recent notes")
            candidates = await repo.get_recent_notes(RECENT_FALLBACK_CANDIDATES)
        return candidates

    async def complete(self, prompt: str, context: Optional[str] = None) -> str:
        ai = await self.registry.get_ai_provider()
        return await ai.generate_completion(prompt, context)

    # -- browsing and maintenance -----------------------------------------

    async def search(self, query: str) -> List[Note]:
        repo = await self.registry.get_repository()
        return await repo.search_notes(query)

    async def recent(self, limit: int = 10) -> List[Note]:
        repo = await self.registry.get_repository()
        return await repo.get_recent_notes(limit)

    async def tags(self) -> List[str]:
        repo = await self.registry.get_repository()
        return await repo.get_tags()

    async def notes_with_tag(self, tag: str) -> List[Note]:
        repo = await self.registry.get_repository()
        return await repo.search_by_tag(tag)

    async def get(self, note_id: str) -> Note:
        repo = await self.registry.get_repository()
        note = await repo.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    async def edit(self, note_id: str, content: Optional[str] = None, tags: Optional[List[str]] = None) -> Note:
        """Updates content and/or tags. New content is re-embedded."""
        repo = await self.registry.get_repository()
        updates: Dict[str, Any] = {}

        if content is not None:
            if not content.strip():
                raise ValueError("Note content cannot be empty")
            ai = await self.registry.get_ai_provider()
            updates["content"] = content
            updates["embedding"] = await ai.generate_embedding(content)
        if tags is not None:
            updates["tags"] = clean_tags(tags)

        return await repo.update_note(note_id, updates)

    async def delete(self, note_id: str) -> None:
        repo = await self.registry.get_repository()
        await repo.delete_note(note_id)

    async def delete_all(self) -> int:
        """Removes every note and returns how many there were."""
        repo = await self.registry.get_repository()
        notes = await repo.get_all_notes()
        await repo.clear_all()
        logger.info("Deleted %d notes", len(notes))
        return len(notes)

    async def reembed_all(self, show_progress: bool = False) -> int:
        """
        Recomputes every embedding with the current AI provider.

        Run after switching providers so all stored vectors share one
        dimensionality again.
        """
        ai = await self.registry.get_ai_provider()
        repo = await self.registry.get_repository()
        notes = await repo.get_all_notes()

        for note in tqdm(notes, desc="Re-embedding notes", disable=not show_progress):
            embedding = await ai.generate_embedding(note.content)
            await repo.update_note(note.id, {"embedding": embedding})

        logger.info("Re-embedded %d notes with %s", len(notes), ai.name)
        return len(notes)

    def set_config(self, **changes):
        """Writes configuration; cached providers are dropped by the registry."""
        return self.config_manager.set_config(**changes)


def create_service(config_manager: Optional[ConfigManager] = None) -> KnowledgeService:
    """
    Factory function to create KnowledgeService.

    Without an explicit config manager the process-wide registry is shared.
    """
    if config_manager is None:
        return KnowledgeService(registry=get_registry())
    return KnowledgeService(registry=ProviderRegistry(config_manager))
