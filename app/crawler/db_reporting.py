from __future__ import annotations

"""Read-only aggregates over the document store."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from . import db


@dataclass
class StoreStatistics:
    """Row counts for cases, documents by extraction status, and chunks."""

    cases: int = 0
    documents: int = 0
    documents_by_status: Dict[str, int] = field(default_factory=dict)
    chunks: int = 0
    chunks_pending_embedding: int = 0
    cases_by_utility: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _count(conn, sql: str) -> int:
    row = conn.execute(sql).fetchone()
    return int(row[0]) if row is not None and row[0] is not None else 0


def store_statistics() -> StoreStatistics:
    """Return current counts from the store, creating the schema if needed."""

    db.initialize_schema()
    conn = db.get_connection()
    try:
        stats = StoreStatistics(
            cases=_count(conn, "SELECT COUNT(*) FROM cases"),
            documents=_count(conn, "SELECT COUNT(*) FROM documents"),
            chunks=_count(conn, "SELECT COUNT(*) FROM document_chunks"),
            chunks_pending_embedding=_count(
                conn, "SELECT COUNT(*) FROM document_chunks WHERE embedding IS NULL"
            ),
        )
        for row in conn.execute(
            "SELECT extraction_status, COUNT(*) AS n FROM documents GROUP BY extraction_status"
        ).fetchall():
            stats.documents_by_status[row["extraction_status"] or ""] = int(row["n"])
        for row in conn.execute(
            "SELECT utility_type, COUNT(*) AS n FROM cases GROUP BY utility_type"
        ).fetchall():
            stats.cases_by_utility[row["utility_type"] or ""] = int(row["n"])
    finally:
        conn.close()
    return stats


def latest_case_filed() -> Optional[str]:
    """Return the most recent ``date_filed`` among stored cases, if any."""

    conn = db.get_connection()
    try:
        row = conn.execute(
            "SELECT MAX(date_filed) AS latest FROM cases WHERE date_filed IS NOT NULL"
        ).fetchone()
    finally:
        conn.close()
    return row["latest"] if row is not None else None


__all__ = ["StoreStatistics", "latest_case_filed", "store_statistics"]
