"""SQLite-backed document store.

Persists documents, segments and embeddings to a local SQLite database at
``data/kbindex.db``.  Uses ``aiosqlite`` for async I/O and opens one
connection per operation.  Nested fields (``indexing_config``,
``processing_metadata``, ``keywords``, ``hierarchy_metadata`` and the
vector itself) are stored as JSON text.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from pydantic import BaseModel

from kbindex.interfaces.document_store import IDocumentStore
from kbindex.models.document import (
    Document,
    DocumentSegment,
    Embedding,
    SegmentStatus,
    new_id,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/kbindex.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id                    TEXT PRIMARY KEY,
    dataset_id            TEXT NOT NULL,
    name                  TEXT NOT NULL DEFAULT '',
    source_path           TEXT,
    doc_type              TEXT NOT NULL DEFAULT 'txt',
    source_text           TEXT,
    indexing_status       TEXT NOT NULL,
    indexing_config       TEXT NOT NULL,
    embedding_model       TEXT,
    embedding_dimensions  INTEGER,
    processing_metadata   TEXT NOT NULL DEFAULT '{}',
    last_error            TEXT,
    stopped_at            TEXT,
    created_at            TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS segments (
    id                  TEXT PRIMARY KEY,
    document_id         TEXT NOT NULL,
    dataset_id          TEXT NOT NULL,
    position            INTEGER NOT NULL,
    content             TEXT NOT NULL,
    word_count          INTEGER NOT NULL DEFAULT 0,
    tokens              INTEGER NOT NULL DEFAULT 0,
    keywords            TEXT NOT NULL DEFAULT '{}',
    status              TEXT NOT NULL,
    embedding_id        TEXT,
    parent_id           TEXT,
    segment_type        TEXT NOT NULL,
    hierarchy_level     INTEGER NOT NULL DEFAULT 1,
    child_order         INTEGER,
    child_count         INTEGER NOT NULL DEFAULT 0,
    hierarchy_metadata  TEXT NOT NULL DEFAULT '{}',
    error               TEXT,
    completed_at        TEXT,
    created_at          TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS embeddings (
    id             TEXT PRIMARY KEY,
    model_name     TEXT NOT NULL,
    provider_name  TEXT NOT NULL,
    hash           TEXT NOT NULL UNIQUE,
    embedding      TEXT NOT NULL,
    dimensions     INTEGER NOT NULL,
    created_at     TEXT NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_segments_document ON segments(document_id, position);",
    "CREATE INDEX IF NOT EXISTS idx_segments_status ON segments(document_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_documents_dataset ON documents(dataset_id);",
]

_DOCUMENT_COLUMNS = tuple(Document.model_fields)
_SEGMENT_COLUMNS = tuple(DocumentSegment.model_fields)
_EMBEDDING_COLUMNS = tuple(Embedding.model_fields)

_DOCUMENT_JSON = frozenset({"indexing_config", "processing_metadata"})
_SEGMENT_JSON = frozenset({"keywords", "hierarchy_metadata"})
_EMBEDDING_JSON = frozenset({"embedding"})


def _insert_sql(table: str, columns: Sequence[str], verb: str = "INSERT OR REPLACE") -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"{verb} INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


def _to_row(model: BaseModel, columns: Sequence[str], json_columns: frozenset[str]) -> tuple:
    data = model.model_dump(mode="json")
    return tuple(
        json.dumps(data[c], ensure_ascii=False) if c in json_columns else data[c]
        for c in columns
    )


def _from_row(row: aiosqlite.Row, json_columns: frozenset[str]) -> dict[str, Any]:
    data = dict(row)
    for column in json_columns:
        if data.get(column) is not None:
            data[column] = json.loads(data[column])
    return data


class SQLiteDocumentStore(IDocumentStore):
    """SQLite-backed persistence for documents, segments and embeddings."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)
        # Serialises read-modify-write updates issued from one event loop.
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("document_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(sql, params)
            await db.commit()

    async def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            return list(await cursor.fetchall())

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def save_document(self, document: Document) -> Document:
        await self._execute(
            _insert_sql("documents", _DOCUMENT_COLUMNS),
            _to_row(document, _DOCUMENT_COLUMNS, _DOCUMENT_JSON),
        )
        return document

    async def get_document(self, document_id: str) -> Document | None:
        row = await self._fetchone("SELECT * FROM documents WHERE id = ?", (document_id,))
        if row is None:
            return None
        return Document.model_validate(_from_row(row, _DOCUMENT_JSON))

    async def update_document(self, document_id: str, **fields: Any) -> Document:
        async with self._write_lock:
            current = await self.get_document(document_id)
            if current is None:
                raise KeyError(f"Document {document_id} not found")
            updated = current.model_copy(update=fields)
            await self.save_document(updated)
            return updated

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    async def insert_segment(self, segment: DocumentSegment) -> DocumentSegment:
        stored = segment if segment.id else segment.model_copy(update={"id": new_id()})
        await self._execute(
            _insert_sql("segments", _SEGMENT_COLUMNS),
            _to_row(stored, _SEGMENT_COLUMNS, _SEGMENT_JSON),
        )
        return stored

    async def get_segment(self, segment_id: str) -> DocumentSegment | None:
        row = await self._fetchone("SELECT * FROM segments WHERE id = ?", (segment_id,))
        if row is None:
            return None
        return DocumentSegment.model_validate(_from_row(row, _SEGMENT_JSON))

    async def list_segments(
        self,
        document_id: str,
        statuses: Iterable[SegmentStatus] | None = None,
    ) -> list[DocumentSegment]:
        sql = "SELECT * FROM segments WHERE document_id = ?"
        params: list[Any] = [document_id]
        if statuses is not None:
            wanted = [SegmentStatus(s).value for s in statuses]
            if not wanted:
                return []
            sql += f" AND status IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)
        sql += " ORDER BY position"
        rows = await self._fetchall(sql, params)
        return [DocumentSegment.model_validate(_from_row(r, _SEGMENT_JSON)) for r in rows]

    async def update_segment(self, segment_id: str, **fields: Any) -> DocumentSegment:
        async with self._write_lock:
            current = await self.get_segment(segment_id)
            if current is None:
                raise KeyError(f"Segment {segment_id} not found")
            updated = current.model_copy(update=fields)
            await self._execute(
                _insert_sql("segments", _SEGMENT_COLUMNS),
                _to_row(updated, _SEGMENT_COLUMNS, _SEGMENT_JSON),
            )
            return updated

    async def delete_segments(self, document_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("DELETE FROM segments WHERE document_id = ?", (document_id,))
            await db.commit()
            return cursor.rowcount

    async def count_segments(
        self,
        document_id: str,
        statuses: Iterable[SegmentStatus] | None = None,
    ) -> int:
        if statuses is None:
            row = await self._fetchone(
                "SELECT COUNT(*) AS n FROM segments WHERE document_id = ?", (document_id,)
            )
            return int(row["n"]) if row else 0
        return len(await self.list_segments(document_id, statuses))

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def find_embedding_by_hash(self, content_hash: str) -> Embedding | None:
        row = await self._fetchone("SELECT * FROM embeddings WHERE hash = ?", (content_hash,))
        if row is None:
            return None
        return Embedding.model_validate(_from_row(row, _EMBEDDING_JSON))

    async def insert_embedding(self, embedding: Embedding) -> Embedding:
        await self._execute(
            _insert_sql("embeddings", _EMBEDDING_COLUMNS, verb="INSERT OR IGNORE"),
            _to_row(embedding, _EMBEDDING_COLUMNS, _EMBEDDING_JSON),
        )
        stored = await self.find_embedding_by_hash(embedding.hash)
        return stored or embedding

    async def get_embedding(self, embedding_id: str) -> Embedding | None:
        row = await self._fetchone("SELECT * FROM embeddings WHERE id = ?", (embedding_id,))
        if row is None:
            return None
        return Embedding.model_validate(_from_row(row, _EMBEDDING_JSON))

    async def segment_dimensions(self, document_id: str) -> dict[str, int]:
        rows = await self._fetchall(
            "SELECT s.id AS segment_id, e.dimensions AS dimensions "
            "FROM segments s JOIN embeddings e ON e.id = s.embedding_id "
            "WHERE s.document_id = ?",
            (document_id,),
        )
        return {r["segment_id"]: int(r["dimensions"]) for r in rows}
