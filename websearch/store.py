"""
Durable posting and document storage.

The inverted index and the query path only talk to an ``IndexStore``:
postings keyed by (term, doc_id) and one metadata record per document.
``MemoryIndexStore`` keeps everything in dicts; ``SqliteIndexStore`` persists
to a SQLite file with one connection per thread.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
import json
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Iterable

from .errors import StoreError
from .models import DocumentMetadata
from .posting import Posting

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


class IndexStore(ABC):
    """Contract the inverted index, builder, ranker and query engine rely on."""

    @abstractmethod
    def get_postings(self, term: str) -> list[Posting]:
        """Postings for term; empty list if the term is unknown."""

    @abstractmethod
    def upsert_postings_batch(self, updates: Iterable[tuple[str, Posting]]) -> None:
        """Merge postings into the store by (term, doc_id). Safe to retry."""

    @abstractmethod
    def get_terms(self) -> set[str]: ...

    @abstractmethod
    def count(self) -> int:
        """Number of distinct terms stored."""

    @abstractmethod
    def save_document(self, document: DocumentMetadata) -> None:
        """Insert or update a document record, keeping its popularity score."""

    @abstractmethod
    def get_document(self, doc_id: str) -> DocumentMetadata | None: ...

    @abstractmethod
    def get_documents_by_ids(self, doc_ids: Iterable[str]) -> dict[str, DocumentMetadata]: ...

    @abstractmethod
    def get_all_documents(self) -> list[DocumentMetadata]: ...

    @abstractmethod
    def update_popularity_scores(self, scores_by_url: dict[str, float]) -> int:
        """Set popularity scores by URL; returns the number of documents updated."""

    def close(self) -> None:
        """Release underlying resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _copy_document(document: DocumentMetadata) -> DocumentMetadata:
    return DocumentMetadata(**{**document.__dict__, "links": list(document.links)})


class MemoryIndexStore(IndexStore):
    """Dict-backed store guarded by a single lock."""

    def __init__(self) -> None:
        self._postings: dict[str, dict[str, Posting]] = {}
        self._documents: dict[str, DocumentMetadata] = {}
        self._lock = threading.RLock()
        self.closed = False

    def get_postings(self, term: str) -> list[Posting]:
        with self._lock:
            return [p.copy() for p in self._postings.get(term, {}).values()]

    def upsert_postings_batch(self, updates: Iterable[tuple[str, Posting]]) -> None:
        with self._lock:
            for term, posting in updates:
                by_doc = self._postings.setdefault(term, {})
                existing = by_doc.get(posting.doc_id)
                if existing is None:
                    by_doc[posting.doc_id] = posting.copy()
                else:
                    existing.merge(posting)

    def get_terms(self) -> set[str]:
        with self._lock:
            return set(self._postings)

    def count(self) -> int:
        with self._lock:
            return len(self._postings)

    def save_document(self, document: DocumentMetadata) -> None:
        with self._lock:
            stored = _copy_document(document)
            previous = self._documents.get(document.doc_id)
            if previous is not None:
                stored.popularity_score = previous.popularity_score
            self._documents[document.doc_id] = stored

    def get_document(self, doc_id: str) -> DocumentMetadata | None:
        with self._lock:
            document = self._documents.get(doc_id)
            return _copy_document(document) if document is not None else None

    def get_documents_by_ids(self, doc_ids: Iterable[str]) -> dict[str, DocumentMetadata]:
        with self._lock:
            return {
                doc_id: _copy_document(self._documents[doc_id])
                for doc_id in doc_ids
                if doc_id in self._documents
            }

    def get_all_documents(self) -> list[DocumentMetadata]:
        with self._lock:
            return [_copy_document(d) for d in self._documents.values()]

    def update_popularity_scores(self, scores_by_url: dict[str, float]) -> int:
        updated = 0
        with self._lock:
            for document in self._documents.values():
                if document.url in scores_by_url:
                    document.popularity_score = float(scores_by_url[document.url])
                    updated += 1
        return updated

    def close(self) -> None:
        self.closed = True


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS postings (
        term TEXT NOT NULL,
        doc_id TEXT NOT NULL,
        url TEXT NOT NULL,
        field_positions TEXT NOT NULL,
        weight REAL NOT NULL,
        PRIMARY KEY (term, doc_id)
    ) WITHOUT ROWID
    """,
    """
    CREATE TABLE IF NOT EXISTS documents (
        doc_id TEXT PRIMARY KEY,
        url TEXT NOT NULL,
        title TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        total_words INTEGER NOT NULL DEFAULT 0,
        popularity_score REAL NOT NULL DEFAULT 0,
        links TEXT NOT NULL DEFAULT '[]'
    )
    """,
    "CREATE INDEX IF NOT EXISTS documents_url ON documents(url)",
)

_DOCUMENT_COLUMNS = "doc_id, url, title, description, content, total_words, popularity_score, links"

# Stay under SQLite's bound-parameter limit for IN (...) lookups.
_MAX_IN_PARAMS = 500


def _row_to_document(row: sqlite3.Row) -> DocumentMetadata:
    return DocumentMetadata(
        doc_id=row["doc_id"],
        url=row["url"],
        title=row["title"],
        description=row["description"],
        content=row["content"],
        total_words=int(row["total_words"]),
        popularity_score=float(row["popularity_score"]),
        links=json.loads(row["links"] or "[]"),
    )


def _row_to_posting(row: sqlite3.Row) -> Posting:
    return Posting.from_dict(
        {
            "doc_id": row["doc_id"],
            "url": row["url"],
            "field_positions": json.loads(row["field_positions"]),
        }
    )


@contextmanager
def _store_errors(action: str):
    try:
        yield
    except sqlite3.Error as e:
        raise StoreError(f"SQLite {action} failed: {e}") from e


class SqliteIndexStore(IndexStore):
    """
    SQLite-backed store.
    Each thread gets its own connection; writes are serialized by a lock so
    concurrent batch writers never race on read-merge-write.
    """

    def __init__(self, db_path: Path | str, *, timeout: float = 30.0) -> None:
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._closed = False
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create directory for {self.db_path}: {e}") from e
        with _store_errors("schema setup"):
            conn = self._connection()
            with conn:
                for statement in _SCHEMA:
                    conn.execute(statement)
        logger.info("Opened SQLite index store at %s", self.db_path)

    def _connection(self) -> sqlite3.Connection:
        if self._closed:
            raise StoreError(f"Store {self.db_path} is closed")
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def get_postings(self, term: str) -> list[Posting]:
        with _store_errors(f"read of term {term!r}"):
            rows = self._connection().execute(
                "SELECT doc_id, url, field_positions FROM postings WHERE term = ? ORDER BY doc_id",
                (term,),
            ).fetchall()
        return [_row_to_posting(row) for row in rows]

    def upsert_postings_batch(self, updates: Iterable[tuple[str, Posting]]) -> None:
        updates = list(updates)
        if not updates:
            return
        with self._write_lock, _store_errors("batch write"):
            conn = self._connection()
            with conn:
                for term, posting in updates:
                    row = conn.execute(
                        "SELECT doc_id, url, field_positions FROM postings WHERE term = ? AND doc_id = ?",
                        (term, posting.doc_id),
                    ).fetchone()
                    if row is not None:
                        merged = _row_to_posting(row)
                        merged.merge(posting)
                        if posting.url:
                            merged.url = posting.url
                    else:
                        merged = posting
                    data = merged.to_dict()
                    conn.execute(
                        "INSERT OR REPLACE INTO postings (term, doc_id, url, field_positions, weight) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (term, merged.doc_id, merged.url, json.dumps(data["field_positions"]), data["weight"]),
                    )
        logger.debug("Wrote %d postings to %s", len(updates), self.db_path)

    def get_terms(self) -> set[str]:
        with _store_errors("term listing"):
            rows = self._connection().execute("SELECT DISTINCT term FROM postings").fetchall()
        return {row["term"] for row in rows}

    def count(self) -> int:
        with _store_errors("count"):
            row = self._connection().execute("SELECT COUNT(DISTINCT term) AS n FROM postings").fetchone()
        return int(row["n"])

    def save_document(self, document: DocumentMetadata) -> None:
        with self._write_lock, _store_errors(f"save of document {document.doc_id}"):
            conn = self._connection()
            with conn:
                conn.execute(
                    "INSERT INTO documents (doc_id, url, title, description, content, total_words, links) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(doc_id) DO UPDATE SET url = excluded.url, title = excluded.title, "
                    "description = excluded.description, content = excluded.content, "
                    "total_words = excluded.total_words, links = excluded.links",
                    (
                        document.doc_id,
                        document.url,
                        document.title or "",
                        document.description or "",
                        document.content or "",
                        document.total_words,
                        json.dumps(list(document.links)),
                    ),
                )

    def get_document(self, doc_id: str) -> DocumentMetadata | None:
        with _store_errors(f"read of document {doc_id}"):
            row = self._connection().execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE doc_id = ?", (doc_id,)
            ).fetchone()
        return _row_to_document(row) if row is not None else None

    def get_documents_by_ids(self, doc_ids: Iterable[str]) -> dict[str, DocumentMetadata]:
        doc_ids = list(dict.fromkeys(doc_ids))
        results: dict[str, DocumentMetadata] = {}
        with _store_errors("document lookup"):
            conn = self._connection()
            for start in range(0, len(doc_ids), _MAX_IN_PARAMS):
                chunk = doc_ids[start : start + _MAX_IN_PARAMS]
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE doc_id IN ({placeholders})", chunk
                ).fetchall()
                for row in rows:
                    results[row["doc_id"]] = _row_to_document(row)
        return results

    def get_all_documents(self) -> list[DocumentMetadata]:
        with _store_errors("document listing"):
            rows = self._connection().execute(f"SELECT {_DOCUMENT_COLUMNS} FROM documents").fetchall()
        return [_row_to_document(row) for row in rows]

    def update_popularity_scores(self, scores_by_url: dict[str, float]) -> int:
        with self._write_lock, _store_errors("popularity update"):
            conn = self._connection()
            with conn:
                cursor = conn.executemany(
                    "UPDATE documents SET popularity_score = ? WHERE url = ?",
                    [(float(score), url) for url, score in scores_by_url.items()],
                )
        return cursor.rowcount

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning("Error closing SQLite connection: %s", e)
        logger.info("Closed SQLite index store at %s", self.db_path)


def open_store(path: Path | str | None = None) -> IndexStore:
    """Open a SQLite store at path, or an in-memory store for None/":memory:"."""
    if path is None or str(path) == MEMORY_PATH:
        return MemoryIndexStore()
    return SqliteIndexStore(path)
