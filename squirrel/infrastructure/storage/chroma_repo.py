import asyncio
import json
import logging
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import chromadb

from squirrel.core.domain.errors import (
    NoteNotFoundError,
    ProviderNotConfiguredError,
    SquirrelError,
    StorageError,
    UpstreamError,
)
from squirrel.core.domain.note import Note, NoteSource, format_timestamp, parse_timestamp, utcnow
from squirrel.core.interfaces.ports import INoteRepository
from squirrel.core.services.similarity import cosine_similarity, top_k_similar

logger = logging.getLogger(__name__)

_INCLUDE = ["documents", "metadatas", "embeddings"]


class ChromaNoteRepository(INoteRepository):
    """
    Remote note store on a Chroma server.

    A Chroma collection fixes its vector size on the first insert, so notes
    are kept in one collection per embedding dimension, named
    ``<collection_name>-<dimension>``. A note whose embedding changes size
    moves to the matching collection.

    Tags and source metadata are kept as JSON strings because Chroma metadata
    values must be scalars. Any failure of a Chroma call surfaces as
    UpstreamError with the client's exception as its cause.
    """

    name = "chroma"

    def __init__(self, url: str = None, token: str = None, collection_name: str = "squirrel_notes", client=None):
        if not url or not token:
            raise ProviderNotConfiguredError("Chroma URL and token are required. Set CHROMA_URL and CHROMA_TOKEN.")
        self.url = url
        self.token = token
        self.collection_name = collection_name
        self.client = client
        self.collections: Dict[int, Any] = {}
        self.connected = False

    async def _run(self, operation: str, func: Callable, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except SquirrelError:
            raise
        except Exception as e:
            raise UpstreamError(self.name, operation, str(e)) from e

    async def initialize(self) -> None:
        await self._run("connect", self._connect)

    def _connect(self):
        if self.client is None:
            parsed = urlparse(self.url)
            ssl = parsed.scheme == "https"
            self.client = chromadb.HttpClient(
                host=parsed.hostname or "localhost",
                port=parsed.port or (443 if ssl else 8000),
                ssl=ssl,
                headers={"Authorization": f"Bearer {self.token}"},
            )

        for entry in self.client.list_collections():
            # Older clients return names, newer ones Collection objects
            name = entry if isinstance(entry, str) else entry.name
            dimension = self._dimension_of(name)
            if dimension is not None:
                self.collections[dimension] = self.client.get_collection(name=name)
        self.connected = True
        logger.debug("Connected to Chroma, dimensions in use: %s", sorted(self.collections))

    def _dimension_of(self, collection_name: str) -> Optional[int]:
        prefix = f"{self.collection_name}-"
        suffix = collection_name[len(prefix):]
        if collection_name.startswith(prefix) and suffix.isdigit():
            return int(suffix)
        return None

    def _collection_for(self, dimension: int):
        if dimension not in self.collections:
            # Chroma returns distance = 1 - similarity in cosine space
            self.collections[dimension] = self.client.get_or_create_collection(
                name=f"{self.collection_name}-{dimension}",
                metadata={"hnsw:space": "cosine"}
            )
            logger.info("Created Chroma collection for %d-dimensional embeddings", dimension)
        return self.collections[dimension]

    def _ensure_connected(self) -> Dict[int, Any]:
        if not self.connected:
            raise StorageError("Chroma repository not initialized. Call initialize() first.")
        return self.collections

    # -- record mapping ----------------------------------------------------

    @staticmethod
    def _metadata(note: Note) -> Dict[str, Any]:
        return {
            "tags": json.dumps(note.tags),
            "source": json.dumps(note.source.to_dict()),
            "created_at": format_timestamp(note.created_at),
            "updated_at": format_timestamp(note.updated_at),
        }

    @staticmethod
    def _note(note_id: str, content: str, metadata: Dict[str, Any], embedding) -> Note:
        return Note(
            id=note_id,
            content=content,
            embedding=[float(v) for v in embedding] if embedding is not None else [],
            tags=json.loads(metadata.get("tags", "[]")),
            source=NoteSource.from_dict(json.loads(metadata["source"])),
            created_at=parse_timestamp(metadata["created_at"]),
            updated_at=parse_timestamp(metadata["updated_at"]),
        )

    def _notes_from_get(self, result: Dict[str, Any]) -> List[Note]:
        ids = result.get("ids") or []
        documents = result.get("documents")
        metadatas = result.get("metadatas")
        embeddings = result.get("embeddings")

        notes = []
        for i, note_id in enumerate(ids):
            notes.append(self._note(
                note_id,
                documents[i],
                metadatas[i],
                embeddings[i] if embeddings is not None else None,
            ))
        return notes

    def _upsert(self, note: Note):
        if note.embedding is None or len(note.embedding) == 0:
            raise StorageError("Chroma notes need a non-empty embedding")
        collections = self._ensure_connected()
        dimension = len(note.embedding)

        self._collection_for(dimension).upsert(
            ids=[note.id],
            documents=[note.content],
            embeddings=[list(note.embedding)],
            metadatas=[self._metadata(note)],
        )
        # Written before the stale copy is removed: a failed move duplicates, never loses
        for size, collection in list(collections.items()):
            if size != dimension and collection.get(ids=[note.id], include=[])["ids"]:
                collection.delete(ids=[note.id])
                logger.debug("Moved note %s from %d to %d dimensions", note.id, size, dimension)

    def _get_all(self) -> List[Note]:
        notes = []
        for collection in self._ensure_connected().values():
            notes.extend(self._notes_from_get(collection.get(include=_INCLUDE)))
        notes.sort(key=lambda n: n.created_at, reverse=True)
        return notes

    # -- CRUD --------------------------------------------------------------

    async def save_note(self, note: Note) -> Note:
        now = utcnow()
        saved = replace(note, id=str(uuid.uuid4()), created_at=now, updated_at=now,
                        embedding=list(note.embedding), tags=list(note.tags))
        await self._run("save", self._upsert, saved)
        return saved

    async def get_note(self, note_id: str) -> Optional[Note]:
        return await self._run("get", self._get_one, note_id)

    def _get_one(self, note_id: str) -> Optional[Note]:
        for collection in self._ensure_connected().values():
            notes = self._notes_from_get(collection.get(ids=[note_id], include=_INCLUDE))
            if notes:
                return notes[0]
        return None

    async def get_all_notes(self) -> List[Note]:
        return await self._run("get_all", self._get_all)

    async def delete_note(self, note_id: str) -> None:
        await self._run("delete", self._delete, note_id)

    def _delete(self, note_id: str):
        for collection in self._ensure_connected().values():
            if collection.get(ids=[note_id], include=[])["ids"]:
                collection.delete(ids=[note_id])

    async def update_note(self, note_id: str, updates: Dict[str, Any]) -> Note:
        return await self._run("update", self._update, note_id, updates)

    def _update(self, note_id: str, updates: Dict[str, Any]) -> Note:
        existing = self._get_one(note_id)
        if existing is None:
            raise NoteNotFoundError(note_id)
        updated = existing.with_updates(updates)
        self._upsert(updated)
        return updated

    # -- search ------------------------------------------------------------

    async def search_notes(self, query: str) -> List[Note]:
        needle = query.lower()
        notes = await self.get_all_notes()
        return [
            n for n in notes
            if needle in n.content.lower() or any(needle in tag.lower() for tag in n.tags)
        ]

    async def search_by_vector(self, embedding: List[float], limit: int = 10) -> List[Note]:
        if not embedding or limit <= 0:
            return []
        return await self._run("query", self._query_similar, list(embedding), limit)

    def _query_similar(self, embedding: List[float], limit: int) -> List[Note]:
        """
        Ranks notes from every dimension collection by cosine similarity.

        The collection matching the query's size is searched through its
        native index; other sizes are scored in-process over their common
        prefix, the same way the local store compares mixed vectors.
        """
        scored: List[Tuple[Note, float]] = []
        # A zero vector has no direction for the cosine index
        use_index = any(embedding)
        for size, collection in self._ensure_connected().items():
            if use_index and size == len(embedding):
                scored.extend(self._native_matches(collection, embedding, limit))
            else:
                notes = self._notes_from_get(collection.get(include=_INCLUDE))
                scored.extend(top_k_similar(embedding, notes, limit))

        scored.sort(key=lambda pair: pair[1], reverse=True)
        logger.debug("Chroma returned %d matches across %d collections", len(scored), len(self.collections))
        return [note for note, _ in scored[:limit]]

    def _native_matches(self, collection, embedding: List[float], limit: int) -> List[Tuple[Note, float]]:
        available = collection.count()
        if available == 0:
            return []

        results = collection.query(
            query_embeddings=[embedding],
            n_results=min(limit, available),
            include=_INCLUDE,
        )
        if not results["ids"] or not results["ids"][0]:
            return []

        embeddings = results.get("embeddings")
        matches = []
        for i, note_id in enumerate(results["ids"][0]):
            note = self._note(
                note_id,
                results["documents"][0][i],
                results["metadatas"][0][i],
                embeddings[0][i] if embeddings is not None else None,
            )
            # Rescored locally so every collection shares one scale
            matches.append((note, cosine_similarity(embedding, note.embedding)))
        return matches

    async def search_by_tag(self, tag: str) -> List[Note]:
        notes = await self.get_all_notes()
        return [n for n in notes if tag in n.tags]

    async def get_recent_notes(self, limit: int = 10) -> List[Note]:
        notes = await self.get_all_notes()
        return notes[:limit]

    async def get_tags(self) -> List[str]:
        notes = await self.get_all_notes()
        return sorted({tag for n in notes for tag in n.tags})

    async def clear_all(self) -> None:
        await self._run("clear", self._clear)

    def _clear(self):
        for collection in self._ensure_connected().values():
            ids = collection.get(include=[])["ids"]
            if ids:
                collection.delete(ids=ids)

    async def count(self) -> int:
        return await self._run("count", self._count)

    def _count(self) -> int:
        return sum(collection.count() for collection in self._ensure_connected().values())
