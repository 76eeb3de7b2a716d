import asyncio
import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

from squirrel.core.domain.errors import NoteNotFoundError
from squirrel.core.domain.note import Note, NoteSource, format_timestamp, parse_timestamp, utcnow
from squirrel.core.interfaces.ports import INoteRepository
from squirrel.core.services.similarity import top_k_similar

logger = logging.getLogger(__name__)

_COLUMNS = "id, content, embedding, tags, source, created_at, updated_at"


class SQLiteNoteRepository(INoteRepository):
    """
    Local embedded note store.

    Embeddings are stored as float64 blobs so they round-trip exactly;
    vector search is done in-process with the similarity helpers.
    """

    name = "local"

    def __init__(self, db_path: str = "squirrel_notes.db"):
        self.db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    async def initialize(self) -> None:
        await asyncio.to_thread(self._init_db)

    def _init_db(self):
        directory = os.path.dirname(os.path.abspath(self.db_path))
        os.makedirs(directory, exist_ok=True)
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id TEXT PRIMARY KEY,
                    content TEXT NOT NULL,
                    embedding BLOB,
                    tags TEXT NOT NULL DEFAULT '[]',
                    source TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_notes_created_at ON notes (created_at)")
        logger.debug("SQLite note store ready at %s", self.db_path)

    # -- row mapping -------------------------------------------------------

    @staticmethod
    def _to_row(note: Note) -> tuple:
        emb_bytes = np.array(note.embedding, dtype=np.float64).tobytes()
        return (
            note.id,
            note.content,
            emb_bytes,
            json.dumps(note.tags),
            json.dumps(note.source.to_dict()),
            format_timestamp(note.created_at),
            format_timestamp(note.updated_at),
        )

    @staticmethod
    def _from_row(row: tuple) -> Note:
        note_id, content, emb_blob, tags, source, created_at, updated_at = row
        embedding = np.frombuffer(emb_blob, dtype=np.float64).tolist() if emb_blob else []
        return Note(
            id=note_id,
            content=content,
            embedding=embedding,
            tags=json.loads(tags),
            source=NoteSource.from_dict(json.loads(source)),
            created_at=parse_timestamp(created_at),
            updated_at=parse_timestamp(updated_at),
        )

    def _query(self, sql: str, params: tuple = ()) -> List[Note]:
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._from_row(row) for row in rows]

    # -- CRUD --------------------------------------------------------------

    async def save_note(self, note: Note) -> Note:
        now = utcnow()
        saved = replace(note, id=str(uuid.uuid4()), created_at=now, updated_at=now,
                        embedding=list(note.embedding), tags=list(note.tags))
        await asyncio.to_thread(self._insert, saved)
        return saved

    def _insert(self, note: Note):
        with self._connect() as conn:
            conn.execute(f"INSERT INTO notes ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)", self._to_row(note))

    async def get_note(self, note_id: str) -> Optional[Note]:
        notes = await asyncio.to_thread(self._query, f"SELECT {_COLUMNS} FROM notes WHERE id = ?", (note_id,))
        return notes[0] if notes else None

    async def get_all_notes(self) -> List[Note]:
        return await asyncio.to_thread(
            self._query, f"SELECT {_COLUMNS} FROM notes ORDER BY created_at DESC, rowid DESC")

    async def delete_note(self, note_id: str) -> None:
        await asyncio.to_thread(self._execute, "DELETE FROM notes WHERE id = ?", (note_id,))

    def _execute(self, sql: str, params: tuple = ()):
        with self._connect() as conn:
            conn.execute(sql, params)

    async def update_note(self, note_id: str, updates: Dict[str, Any]) -> Note:
        return await asyncio.to_thread(self._update, note_id, updates)

    def _update(self, note_id: str, updates: Dict[str, Any]) -> Note:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM notes WHERE id = ?", (note_id,)).fetchone()
            if row is None:
                raise NoteNotFoundError(note_id)

            updated = self._from_row(row).with_updates(updates)
            values = self._to_row(updated)
            conn.execute("""
                UPDATE notes SET content = ?, embedding = ?, tags = ?, source = ?, updated_at = ?
                WHERE id = ?
            """, (values[1], values[2], values[3], values[4], values[6], note_id))
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
        notes = await self.get_all_notes()
        # Oldest first so equal scores rank in creation order
        notes.reverse()
        return [note for note, _ in top_k_similar(embedding, notes, limit)]

    async def search_by_tag(self, tag: str) -> List[Note]:
        notes = await self.get_all_notes()
        return [n for n in notes if tag in n.tags]

    async def get_recent_notes(self, limit: int = 10) -> List[Note]:
        return await asyncio.to_thread(
            self._query,
            f"SELECT {_COLUMNS} FROM notes ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )

    async def get_tags(self) -> List[str]:
        notes = await self.get_all_notes()
        return sorted({tag for n in notes for tag in n.tags})

    async def clear_all(self) -> None:
        await asyncio.to_thread(self._execute, "DELETE FROM notes")

    async def count(self) -> int:
        return await asyncio.to_thread(self._count)

    def _count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM notes").fetchone()[0]
