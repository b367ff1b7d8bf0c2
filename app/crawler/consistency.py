from __future__ import annotations

"""Final reconciliation of source-visible cases against the document store."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List

from .discovery import DiscoveryMode, DiscoveryProducer
from .logging_utils import _crawler_event
from .models import CaseRecord
from .utils import log_line

REPORTED_GAP_LIMIT = 10


class CaseIssueType(str, Enum):
    MISSING_IN_STORE = "missing_in_store"


@dataclass
class CaseGap:
    """A case visible on the source but absent from the store."""

    case_number: str
    issue_type: CaseIssueType
    case_url: str = ""
    date_filed: str | None = None


@dataclass
class VerificationReport:
    discovered: int = 0
    stored: int = 0
    missing: List[CaseGap] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "discovered": self.discovered,
            "stored": self.stored,
            "missing": [gap.case_number for gap in self.missing],
        }


def diff_cases(discovered: List[CaseRecord], stored_numbers: set[str]) -> List[CaseGap]:
    """Return a gap for every discovered case whose number is not stored."""

    gaps: List[CaseGap] = []
    seen: set[str] = set()
    for case in discovered:
        if case.case_number in stored_numbers or case.case_number in seen:
            continue
        seen.add(case.case_number)
        gaps.append(
            CaseGap(
                case_number=case.case_number,
                issue_type=CaseIssueType.MISSING_IN_STORE,
                case_url=case.case_url,
                date_filed=case.date_filed,
            )
        )
    return gaps


def verify_coverage(
    source: Any,
    listing_page: Any,
    detail_page: Any,
    gateway: Any,
    *,
    start_year: int | None = None,
    end_year: int | None = None,
) -> VerificationReport:
    """Re-discover in read-only mode and report cases the store lacks.

    Gaps are reported, not retried; the next scheduled run picks them up.
    """

    producer = DiscoveryProducer(
        source,
        mode=DiscoveryMode.VERIFY,
        start_year=start_year,
        end_year=end_year,
    )
    result = producer.run(listing_page, detail_page)
    stored = gateway.known_case_numbers()

    report = VerificationReport(
        discovered=len(result.cases),
        stored=len(stored),
        missing=diff_cases(result.cases, stored),
    )

    _crawler_event(
        "verify" if report.ok else "error",
        phase="verify",
        discovered=report.discovered,
        stored=report.stored,
        missing=len(report.missing),
    )
    for gap in report.missing[:REPORTED_GAP_LIMIT]:
        log_line(f"[VERIFY] missing from store: {gap.case_number} filed={gap.date_filed} {gap.case_url}")
    if len(report.missing) > REPORTED_GAP_LIMIT:
        log_line(f"[VERIFY] ... and {len(report.missing) - REPORTED_GAP_LIMIT} more")
    return report


__all__ = ["CaseGap", "CaseIssueType", "VerificationReport", "diff_cases", "verify_coverage"]
