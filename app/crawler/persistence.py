"""Idempotent case/document/chunk persistence.

The store's uniqueness constraints are the source of truth for duplicate
detection. Concurrent workers racing to create the same case or document
resolve the resulting ``IntegrityError`` in-band by re-reading the row the
winner wrote.
"""
from __future__ import annotations

import sqlite3
import threading
from typing import Optional, Sequence

from . import config, db
from .chunker import Chunk, split_text
from .errors import PersistenceConflict, PersistenceFatalError
from .logging_utils import _crawler_event
from .models import CaseRecord, DocumentCandidate, UploadResult
from .utils import now_iso

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


def _lookup_case_id(conn: sqlite3.Connection, case_number: str) -> Optional[int]:
    row = conn.execute(
        "SELECT id FROM cases WHERE case_number = ?", (case_number,)
    ).fetchone()
    return int(row["id"]) if row is not None else None


def _lookup_document(conn: sqlite3.Connection, document_url: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT id, case_id, extraction_status FROM documents WHERE document_url = ?",
        (document_url,),
    ).fetchone()


def _lookup_document_by_name(
    conn: sqlite3.Connection, case_id: int, document_name: str
) -> Optional[sqlite3.Row]:
    return conn.execute(
        """
        SELECT id, case_id, extraction_status
        FROM documents
        WHERE case_id = ? AND document_name = ?
        """,
        (case_id, document_name),
    ).fetchone()


def _connect(action: str) -> sqlite3.Connection:
    try:
        return db.get_connection()
    except sqlite3.Error as exc:
        raise PersistenceFatalError(f"{action}: cannot open store: {exc}") from exc


def _read_rows(action: str, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    """Run a read query, mapping store errors onto ``PersistenceFatalError``."""

    conn = _connect(action)
    try:
        return conn.execute(sql, params).fetchall()
    except sqlite3.Error as exc:
        raise PersistenceFatalError(f"{action} failed: {exc}") from exc
    finally:
        conn.close()


class PersistenceGateway:
    """Create-or-reuse access to cases, documents and chunks."""

    def __init__(
        self,
        *,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self.chunk_size = chunk_size or config.CHUNK_SIZE
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.batch_size = max(1, batch_size or config.CHUNK_INSERT_BATCH)
        self._case_ids: dict[str, int] = {}
        self._url_locks: dict[str, threading.Lock] = {}
        self._cache_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def _cached_case_id(self, case_number: str) -> Optional[int]:
        with self._cache_lock:
            return self._case_ids.get(case_number)

    def _cache_case_id(self, case_number: str, case_id: int) -> None:
        with self._cache_lock:
            self._case_ids[case_number] = case_id

    def _url_lock(self, document_url: str) -> threading.Lock:
        with self._cache_lock:
            return self._url_locks.setdefault(document_url, threading.Lock())

    def ensure_case(self, case: CaseRecord) -> int:
        """Return the id for ``case``, creating the row on first sighting."""

        cached = self._cached_case_id(case.case_number)
        if cached is not None:
            return cached

        conn = _connect(f"case lookup for {case.case_number}")
        try:
            case_id = _lookup_case_id(conn, case.case_number)
            if case_id is not None:
                self._cache_case_id(case.case_number, case_id)
                return case_id

            try:
                case_id = self._insert_case(conn, case)
                outcome = "created"
            except PersistenceConflict:
                case_id = _lookup_case_id(conn, case.case_number)
                if case_id is None:
                    raise PersistenceFatalError(
                        f"case {case.case_number} conflicted but could not be re-read"
                    )
                outcome = "race_resolved"
        except sqlite3.Error as exc:
            raise PersistenceFatalError(f"case lookup failed for {case.case_number}: {exc}") from exc
        finally:
            conn.close()

        _crawler_event(
            "persist",
            entity="case",
            outcome=outcome,
            case_number=case.case_number,
            case_id=case_id,
        )
        self._cache_case_id(case.case_number, case_id)
        return case_id

    def _insert_case(self, conn: sqlite3.Connection, case: CaseRecord) -> int:
        try:
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO cases (
                        case_number, company, utility_type, case_status,
                        date_filed, description, case_url, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        case.case_number,
                        case.company,
                        case.utility_type,
                        case.case_status,
                        case.date_filed,
                        case.description,
                        case.case_url,
                        now_iso(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise PersistenceConflict(str(exc)) from exc
        return int(cursor.lastrowid)

    def known_case_numbers(self) -> set[str]:
        """Case numbers with at least one completed document.

        A case row alone does not count: it is written on the first upload
        attempt, and a case whose every document failed must stay visible
        to discovery and verification so a later run picks it up again.
        """

        rows = _read_rows(
            "known case lookup",
            """
            SELECT DISTINCT c.case_number
            FROM cases c
            JOIN documents d ON d.case_id = c.id
            WHERE d.extraction_status = ?
            """,
            (STATUS_COMPLETED,),
        )
        return {row["case_number"] for row in rows}

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def document_exists(self, document_url: str) -> bool:
        """Return ``True`` when a completed document row exists for the URL."""

        conn = _connect(f"document lookup for {document_url}")
        try:
            row = _lookup_document(conn, document_url)
        except sqlite3.Error as exc:
            raise PersistenceFatalError(f"document lookup failed for {document_url}: {exc}") from exc
        finally:
            conn.close()
        return row is not None and row["extraction_status"] == STATUS_COMPLETED

    def existing_document_urls(self) -> set[str]:
        rows = _read_rows(
            "stored url lookup",
            "SELECT document_url FROM documents WHERE extraction_status = ?",
            (STATUS_COMPLETED,),
        )
        return {row["document_url"] for row in rows}

    def existing_document_names(self, case_number: str) -> set[str]:
        rows = _read_rows(
            f"stored name lookup for {case_number}",
            """
            SELECT d.document_name
            FROM documents d
            JOIN cases c ON c.id = d.case_id
            WHERE c.case_number = ? AND d.extraction_status = ?
            """,
            (case_number, STATUS_COMPLETED),
        )
        return {row["document_name"] for row in rows}

    def upload_document(
        self, case: CaseRecord, document: DocumentCandidate, text: str
    ) -> UploadResult:
        """Store ``document`` with its chunked ``text`` exactly once per URL.

        A URL that is already completed is reported as a duplicate without
        touching chunks. Uploads of one URL are serialised within the process,
        so a row still ``pending`` or ``failed`` when the lock is taken was
        left behind by an earlier crash or chunk error and is re-chunked in
        place.
        """

        case_id = self.ensure_case(case)
        chunks = split_text(text, self.chunk_size, self.chunk_overlap)

        with self._url_lock(document.url):
            return self._upload_locked(case, case_id, document, chunks)

    def _upload_locked(
        self,
        case: CaseRecord,
        case_id: int,
        document: DocumentCandidate,
        chunks: Sequence[Chunk],
    ) -> UploadResult:
        conn = _connect(f"document upload for {document.name}")
        try:
            existing = _lookup_document(conn, document.url)
            if existing is not None and existing["extraction_status"] == STATUS_COMPLETED:
                _crawler_event(
                    "persist",
                    entity="document",
                    outcome="duplicate_prevented",
                    case_number=case.case_number,
                    document=document.name,
                    document_id=int(existing["id"]),
                )
                return UploadResult(
                    document_id=int(existing["id"]),
                    case_id=int(existing["case_id"]),
                    chunks_created=0,
                    duplicate=True,
                )

            if existing is not None:
                document_id = int(existing["id"])
                with conn:
                    conn.execute("DELETE FROM document_chunks WHERE document_id = ?", (document_id,))
                outcome = "resumed"
            else:
                try:
                    document_id = self._insert_document(conn, case_id, document)
                    outcome = "created"
                except PersistenceConflict:
                    winner = _lookup_document(conn, document.url)
                    if winner is None:
                        return self._name_collision(conn, case, case_id, document)
                    _crawler_event(
                        "persist",
                        entity="document",
                        outcome="race_resolved",
                        case_number=case.case_number,
                        document=document.name,
                        document_id=int(winner["id"]),
                    )
                    return UploadResult(
                        document_id=int(winner["id"]),
                        case_id=int(winner["case_id"]),
                        chunks_created=0,
                        duplicate=True,
                    )

            try:
                self._insert_chunks(conn, document_id, case_id, case, document, chunks)
            except sqlite3.Error as exc:
                self._mark_document(conn, document_id, STATUS_FAILED)
                raise PersistenceFatalError(
                    f"chunk insert failed for {document.name}: {exc}"
                ) from exc
            self._mark_document(conn, document_id, STATUS_COMPLETED)
        except sqlite3.Error as exc:
            raise PersistenceFatalError(f"document upload failed for {document.name}: {exc}") from exc
        finally:
            conn.close()

        _crawler_event(
            "persist",
            entity="document",
            outcome=outcome,
            case_number=case.case_number,
            document=document.name,
            document_id=document_id,
            chunks=len(chunks),
        )
        return UploadResult(
            document_id=document_id,
            case_id=case_id,
            chunks_created=len(chunks),
            duplicate=False,
        )

    def _insert_document(
        self, conn: sqlite3.Connection, case_id: int, document: DocumentCandidate
    ) -> int:
        try:
            with conn:
                cursor = conn.execute(
                    """
                    INSERT INTO documents (
                        case_id, document_name, document_type, document_url,
                        witness_name, extraction_status, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        case_id,
                        document.name,
                        document.document_type,
                        document.url,
                        document.witness_name,
                        STATUS_PENDING,
                        now_iso(),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise PersistenceConflict(str(exc)) from exc
        return int(cursor.lastrowid)

    def _insert_chunks(
        self,
        conn: sqlite3.Connection,
        document_id: int,
        case_id: int,
        case: CaseRecord,
        document: DocumentCandidate,
        chunks: Sequence[Chunk],
    ) -> None:
        created_at = now_iso()
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start : start + self.batch_size]
            with conn:
                conn.executemany(
                    """
                    INSERT INTO document_chunks (
                        document_id, case_id, content, content_length, chunk_index,
                        case_number, company, witness_name, document_type, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            document_id,
                            case_id,
                            chunk.content,
                            chunk.content_length,
                            chunk.index,
                            case.case_number,
                            case.company,
                            document.witness_name,
                            document.document_type,
                            created_at,
                        )
                        for chunk in batch
                    ],
                )

    def _mark_document(self, conn: sqlite3.Connection, document_id: int, status: str) -> None:
        with conn:
            conn.execute(
                "UPDATE documents SET extraction_status = ?, extracted_at = ? WHERE id = ?",
                (status, now_iso() if status == STATUS_COMPLETED else None, document_id),
            )

    def _name_collision(
        self,
        conn: sqlite3.Connection,
        case: CaseRecord,
        case_id: int,
        document: DocumentCandidate,
    ) -> UploadResult:
        """Another URL already holds ``document.name`` within the case."""

        holder = _lookup_document_by_name(conn, case_id, document.name)
        if holder is None:
            raise PersistenceFatalError(
                f"document {document.url} conflicted but could not be re-read"
            )
        _crawler_event(
            "persist",
            entity="document",
            outcome="name_collision",
            case_number=case.case_number,
            document=document.name,
            url=document.url,
            document_id=int(holder["id"]),
        )
        return UploadResult(
            document_id=int(holder["id"]),
            case_id=int(holder["case_id"]),
            chunks_created=0,
            duplicate=False,
            name_collision=True,
        )


__all__ = [
    "PersistenceGateway",
    "STATUS_COMPLETED",
    "STATUS_FAILED",
    "STATUS_PENDING",
]
