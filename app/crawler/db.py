"""SQLite helpers for the PUC document store.

This module owns the database path, the connection helper and the schema:
cases keyed by case number, documents keyed by URL and by (case, name), and
denormalised chunks whose ``embedding`` column stays NULL until the
embedding service fills it in.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable

from . import config

DB_PATH: Path = config.DB_PATH

# Seconds a connection waits on another writer before raising "locked".
BUSY_TIMEOUT_SECONDS = 30.0


def get_connection() -> sqlite3.Connection:
    """Return a SQLite connection to the document store.

    The parent directory is created if missing and ``check_same_thread`` is
    disabled so worker threads can share the helper. Each caller opens its
    own connection; uniqueness constraints arbitrate concurrent writers.
    """

    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH, check_same_thread=False, timeout=BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def initialize_schema() -> None:
    """Create the store tables if they do not yet exist.

    Safe to call multiple times; each statement uses ``IF NOT EXISTS``.
    """

    statements: Iterable[str] = (
        """
        CREATE TABLE IF NOT EXISTS cases (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            case_number   TEXT NOT NULL,
            company       TEXT NOT NULL,
            utility_type  TEXT NOT NULL,
            case_status   TEXT NOT NULL,
            date_filed    TEXT,
            description   TEXT,
            case_url      TEXT,
            created_at    TEXT NOT NULL
        );
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS unique_case_number
            ON cases(case_number);
        """,
        """
        CREATE TABLE IF NOT EXISTS documents (
            id                 INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id            INTEGER NOT NULL,
            document_name      TEXT NOT NULL,
            document_type      TEXT,
            document_url       TEXT NOT NULL,
            witness_name       TEXT,
            extraction_status  TEXT NOT NULL DEFAULT 'pending',
            extracted_at       TEXT,
            created_at         TEXT NOT NULL,
            FOREIGN KEY(case_id) REFERENCES cases(id) ON DELETE CASCADE
        );
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS unique_document_url
            ON documents(document_url);
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS unique_document_per_case
            ON documents(case_id, document_name);
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_documents_extraction_status
            ON documents(extraction_status);
        """,
        """
        CREATE TABLE IF NOT EXISTS document_chunks (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            document_id     INTEGER NOT NULL,
            case_id         INTEGER NOT NULL,
            content         TEXT NOT NULL,
            content_length  INTEGER NOT NULL,
            chunk_index     INTEGER NOT NULL,
            case_number     TEXT NOT NULL,
            company         TEXT NOT NULL,
            witness_name    TEXT,
            document_type   TEXT,
            embedding       BLOB,
            created_at      TEXT NOT NULL,
            FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE,
            FOREIGN KEY(case_id) REFERENCES cases(id) ON DELETE CASCADE
        );
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS unique_chunk_per_document
            ON document_chunks(document_id, chunk_index);
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_chunks_case_number
            ON document_chunks(case_number);
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_chunks_pending_embedding
            ON document_chunks(id) WHERE embedding IS NULL;
        """,
    )

    conn = get_connection()
    try:
        # Readers must not block the single writer while workers run.
        conn.execute("PRAGMA journal_mode=WAL")
        with conn:
            for statement in statements:
                conn.execute(statement)
    finally:
        conn.close()


__all__ = ["DB_PATH", "get_connection", "initialize_schema"]
