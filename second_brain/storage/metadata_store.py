"""
SQLite-backed metadata store.

Holds documents, chunks, conversations and messages. Every operation opens
its own connection inside a worker thread, so one store instance can be
shared by concurrent requests without locking.
"""

import asyncio
import json
import logging
import sqlite3
import uuid
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .base import ConversationStore, MetadataStore
from ..errors import MetadataStoreError
from ..models import Chunk, ConversationMessage, Document, RetrievalFilters, SourceType


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    source_type TEXT NOT NULL CHECK (source_type IN ('audio', 'pdf', 'markdown')),
    source_uri TEXT,
    created_at TEXT NOT NULL,
    ingested_at TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    chunk_index INTEGER NOT NULL,
    chunk_text TEXT NOT NULL,
    embedding_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    processed_flag INTEGER NOT NULL DEFAULT 0,
    metadata TEXT NOT NULL DEFAULT '{}',
    UNIQUE (document_id, chunk_index)
);

CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
    content TEXT NOT NULL,
    sources TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    seq INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_user_id ON documents(user_id);
CREATE INDEX IF NOT EXISTS idx_chunks_document_id ON chunks(document_id);
CREATE INDEX IF NOT EXISTS idx_chunks_embedding_id ON chunks(embedding_id);
CREATE INDEX IF NOT EXISTS idx_conversations_user_id ON conversations(user_id);
CREATE INDEX IF NOT EXISTS idx_messages_conversation_id ON messages(conversation_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: Optional[datetime]) -> str:
    return (value or datetime.now(timezone.utc)).isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value else value


class SQLiteMetadataStore(MetadataStore, ConversationStore):
    """
    Metadata and conversation store on a local SQLite database.

    Features:
    - Owner-scoped document lookups
    - Chunk resolution by vector-index identifier
    - Unicode case-insensitive keyword search over chunk text
    - Conversation history persistence
    """

    def __init__(self, db_path: str):
        """
        Initialize the store and create the schema if needed.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._execute_script(SCHEMA)
        logger.info(f"SQLiteMetadataStore initialized with database at: {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _execute_script(self, script: str) -> None:
        with closing(self._connect()) as conn:
            conn.executescript(script)
            conn.commit()

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            with closing(self._connect()) as conn:
                return conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            error_msg = f"Metadata store query failed: {str(e)}"
            logger.error(error_msg)
            raise MetadataStoreError(error_msg, cause=e) from e

    def _write(self, sql: str, rows: Sequence[Sequence[Any]]) -> None:
        try:
            with closing(self._connect()) as conn:
                conn.executemany(sql, [tuple(row) for row in rows])
                conn.commit()
        except sqlite3.Error as e:
            error_msg = f"Metadata store write failed: {str(e)}"
            logger.error(error_msg)
            raise MetadataStoreError(error_msg, cause=e) from e

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            owner_id=row["user_id"],
            title=row["title"],
            source_type=SourceType(row["source_type"]),
            source_uri=row["source_uri"],
            created_at=_parse_datetime(row["created_at"]),
            ingested_at=_parse_datetime(row["ingested_at"]),
            tags=json.loads(row["tags"] or "[]"),
        )

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            document_id=row["document_id"],
            chunk_index=row["chunk_index"],
            text=row["chunk_text"],
            embedding_id=row["embedding_id"],
            metadata=json.loads(row["metadata"] or "{}"),
        )

    # Ingestion-side writes

    def add_document(self, document: Document) -> None:
        self._write(
            "INSERT INTO documents (id, user_id, title, source_type, source_uri, created_at, ingested_at, tags) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [(
                document.id,
                document.owner_id,
                document.title,
                document.source_type.value,
                document.source_uri,
                _to_iso(document.created_at),
                _to_iso(document.ingested_at),
                json.dumps(document.tags),
            )],
        )

    def add_chunks(self, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            return
        created_at = _now()
        self._write(
            "INSERT INTO chunks (id, document_id, chunk_index, chunk_text, embedding_id, created_at, processed_flag, metadata) "
            "VALUES (?, ?, ?, ?, ?, ?, 1, ?)",
            [
                (
                    chunk.id,
                    chunk.document_id,
                    chunk.chunk_index,
                    chunk.text,
                    chunk.embedding_id,
                    created_at,
                    json.dumps(chunk.metadata),
                )
                for chunk in chunks
            ],
        )

    # MetadataStore

    def _get_chunks_by_embedding_ids(self, embedding_ids: Sequence[str]) -> Dict[str, Chunk]:
        ids = list(dict.fromkeys(embedding_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self._query(
            f"SELECT * FROM chunks WHERE embedding_id IN ({placeholders})",
            ids,
        )
        return {row["embedding_id"]: self._row_to_chunk(row) for row in rows}

    async def get_chunks_by_embedding_ids(self, embedding_ids: Sequence[str]) -> Dict[str, Chunk]:
        return await asyncio.to_thread(self._get_chunks_by_embedding_ids, embedding_ids)

    def _get_documents(self, owner_id: str, document_ids: Sequence[str]) -> Dict[str, Document]:
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self._query(
            f"SELECT * FROM documents WHERE user_id = ? AND id IN ({placeholders})",
            [owner_id, *ids],
        )
        return {row["id"]: self._row_to_document(row) for row in rows}

    async def get_documents(self, owner_id: str, document_ids: Sequence[str]) -> Dict[str, Document]:
        return await asyncio.to_thread(self._get_documents, owner_id, document_ids)

    def _list_documents(self, owner_id: str) -> List[Document]:
        rows = self._query(
            "SELECT * FROM documents WHERE user_id = ? ORDER BY created_at DESC, id ASC",
            [owner_id],
        )
        return [self._row_to_document(row) for row in rows]

    async def list_documents(self, owner_id: str) -> List[Document]:
        return await asyncio.to_thread(self._list_documents, owner_id)

    def _keyword_search(
        self,
        owner_id: str,
        keywords: Sequence[str],
        document_ids: Optional[Sequence[str]],
        limit: int,
        filters: Optional[RetrievalFilters]
    ) -> List[Chunk]:
        if not keywords or limit <= 0:
            return []

        clauses = " OR ".join("casefold(c.chunk_text) LIKE ? ESCAPE '\\'" for _ in keywords)
        params: List[Any] = [owner_id]
        params.extend(f"%{_escape_like(keyword.casefold())}%" for keyword in keywords)

        sql = (
            "SELECT c.* FROM chunks c JOIN documents d ON d.id = c.document_id "
            f"WHERE d.user_id = ? AND ({clauses})"
        )
        if document_ids:
            placeholders = ", ".join("?" for _ in document_ids)
            sql += f" AND c.document_id IN ({placeholders})"
            params.extend(document_ids)

        if filters is not None:
            if filters.tags:
                placeholders = ", ".join("?" for _ in filters.tags)
                sql += f" AND EXISTS (SELECT 1 FROM json_each(d.tags) t WHERE t.value IN ({placeholders}))"
                params.extend(filters.tags)
            if filters.source_types:
                placeholders = ", ".join("?" for _ in filters.source_types)
                sql += f" AND d.source_type IN ({placeholders})"
                params.extend(source_type.value for source_type in filters.source_types)
            if filters.date_from is not None:
                sql += " AND julianday(d.created_at) >= julianday(?)"
                params.append(filters.date_from.isoformat())
            if filters.date_to is not None:
                sql += " AND julianday(d.created_at) <= julianday(?)"
                params.append(filters.date_to.isoformat())
            if filters.title:
                sql += " AND d.title = ?"
                params.append(filters.title)

        sql += " ORDER BY d.created_at DESC, c.document_id ASC, c.chunk_index ASC LIMIT ?"
        params.append(limit)

        return [self._row_to_chunk(row) for row in self._query(sql, params)]

    async def keyword_search(
        self,
        owner_id: str,
        keywords: Sequence[str],
        document_ids: Optional[Sequence[str]] = None,
        limit: int = 10,
        filters: Optional[RetrievalFilters] = None
    ) -> List[Chunk]:
        return await asyncio.to_thread(self._keyword_search, owner_id, keywords, document_ids, limit, filters)

    # ConversationStore

    def _create_conversation(self, owner_id: str, title: str) -> str:
        conversation_id = str(uuid.uuid4())
        now = _now()
        self._write(
            "INSERT INTO conversations (id, user_id, title, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            [(conversation_id, owner_id, title, now, now)],
        )
        logger.info(f"Created conversation {conversation_id} for user {owner_id}")
        return conversation_id

    async def create_conversation(self, owner_id: str, title: str = "New Conversation") -> str:
        return await asyncio.to_thread(self._create_conversation, owner_id, title)

    def _get_latest_conversation(self, owner_id: str) -> Optional[str]:
        rows = self._query(
            "SELECT id FROM conversations WHERE user_id = ? ORDER BY updated_at DESC, rowid DESC LIMIT 1",
            [owner_id],
        )
        return rows[0]["id"] if rows else None

    async def get_latest_conversation(self, owner_id: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_latest_conversation, owner_id)

    def _conversation_exists(self, owner_id: str, conversation_id: str) -> bool:
        rows = self._query(
            "SELECT 1 FROM conversations WHERE id = ? AND user_id = ?",
            [conversation_id, owner_id],
        )
        return bool(rows)

    async def conversation_exists(self, owner_id: str, conversation_id: str) -> bool:
        return await asyncio.to_thread(self._conversation_exists, owner_id, conversation_id)

    def _get_messages(self, conversation_id: str) -> List[ConversationMessage]:
        rows = self._query(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
            [conversation_id],
        )
        return [
            ConversationMessage(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=row["role"],
                content=row["content"],
                sources=json.loads(row["sources"] or "[]"),
                created_at=_parse_datetime(row["created_at"]),
            )
            for row in rows
        ]

    async def get_messages(self, conversation_id: str) -> List[ConversationMessage]:
        return await asyncio.to_thread(self._get_messages, conversation_id)

    def _add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        sources: Optional[List[Dict[str, Any]]]
    ) -> ConversationMessage:
        message = ConversationMessage(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            sources=list(sources or []),
            created_at=datetime.now(timezone.utc),
        )
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    "INSERT INTO messages (id, conversation_id, role, content, sources, created_at, seq) "
                    "VALUES (?, ?, ?, ?, ?, ?, "
                    "(SELECT COALESCE(MAX(seq), 0) + 1 FROM messages WHERE conversation_id = ?))",
                    (
                        message.id,
                        conversation_id,
                        role,
                        content,
                        json.dumps(message.sources),
                        message.created_at.isoformat(),
                        conversation_id,
                    ),
                )
                conn.execute(
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (message.created_at.isoformat(), conversation_id),
                )
                conn.commit()
        except sqlite3.Error as e:
            error_msg = f"Failed to add message to conversation {conversation_id}: {str(e)}"
            logger.error(error_msg)
            raise MetadataStoreError(error_msg, cause=e) from e

        return message

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        sources: Optional[List[Dict[str, Any]]] = None
    ) -> ConversationMessage:
        return await asyncio.to_thread(self._add_message, conversation_id, role, content, sources)
