from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

PRIORITY_SECTION = "Company"
PRIORITY_NAME_MARKER = "DIRECT"


@dataclass(frozen=True)
class CaseRecord:
    """A regulatory case as seen on a listing page and its detail page.

    ``date_filed`` is an ISO ``YYYY-MM-DD`` string once the case has passed
    date validation and ``None`` for raw listing rows.
    """

    case_number: str
    company: str
    case_url: str
    utility_type: str
    case_status: str
    description: str = ""
    date_filed: Optional[str] = None
    case_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CaseRecord":
        return cls(
            case_number=str(data.get("case_number") or "").strip(),
            company=str(data.get("company") or "").strip(),
            case_url=str(data.get("case_url") or "").strip(),
            utility_type=str(data.get("utility_type") or "").strip(),
            case_status=str(data.get("case_status") or "").strip(),
            description=str(data.get("description") or "").strip(),
            date_filed=data.get("date_filed") or None,
            case_type=str(data.get("case_type") or "").strip(),
        )


@dataclass(frozen=True)
class DocumentCandidate:
    name: str
    url: str
    section: str
    document_type: str = "Other_Document"
    witness_name: Optional[str] = None

    @property
    def is_priority(self) -> bool:
        """Company-section direct testimony is drained before anything else."""

        return self.section == PRIORITY_SECTION and PRIORITY_NAME_MARKER in self.name.upper()


def work_unit_id(case_number: str, document_name: str, url: str) -> str:
    """Stable per-run identity for a queued document.

    The same URL listed under two names yields two units, each with its own
    retry history.
    """

    key = "\x1f".join((case_number, document_name, url.strip()))
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


@dataclass
class WorkUnit:
    case: CaseRecord
    document: DocumentCandidate
    unit_id: str = ""

    def __post_init__(self) -> None:
        if not self.unit_id:
            self.unit_id = work_unit_id(
                self.case.case_number, self.document.name, self.document.url
            )

    @property
    def processed_key(self) -> str:
        return processed_key(self.case.case_number, self.document.name)


def processed_key(case_number: str, document_name: str) -> str:
    return f"{case_number}:{document_name}"


@dataclass
class CaseBundle:
    """A validated case plus the document candidates still to be filtered."""

    case: CaseRecord
    candidates: list[DocumentCandidate] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    page_count: int
    viewer_kind: str
    tier: str


@dataclass(frozen=True)
class UploadResult:
    document_id: int
    case_id: int
    chunks_created: int
    duplicate: bool
    # Another URL already holds this name within the case.
    name_collision: bool = False


__all__ = [
    "CaseBundle",
    "CaseRecord",
    "DocumentCandidate",
    "ExtractionResult",
    "UploadResult",
    "WorkUnit",
    "processed_key",
    "work_unit_id",
]
