"""HTML parsing for case listings, case detail pages and document links."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from . import config
from .models import CaseRecord, DocumentCandidate

CASE_NUMBER_RE = re.compile(r"[A-Z]{2,4}-[A-Z]-\d{2}-\d{2}")
FILED_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}")
_WITNESS_PATTERNS = (
    re.compile(r"DIRECT\s+([A-Z]\.\s*[A-Z][A-Z\s.]+?)(?:_EXHIBITS)?\.PDF$", re.I),
    re.compile(r"DIRECT\s+([A-Z][A-Z\s.]+?)(?:_EXHIBITS)?\.PDF$", re.I),
)

# Sections whose documents are ingested; "Case Files" and "Orders & Notices"
# are excluded.
DOCUMENT_SECTIONS = ("Company", "Staff", "Intervenor", "Public Comments")
SECTION_HEADER_SELECTOR = "h3, h4, .div-header-box"
MIN_DOCUMENT_NAME_LENGTH = 4


@dataclass(frozen=True)
class CaseMetadata:
    date_filed: date
    case_number: str = ""
    case_type: str = ""
    status: str = ""
    description: str = ""


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html5lib")


def _cell_text(cell: Optional[Tag]) -> str:
    if cell is None:
        return ""
    return " ".join(cell.get_text(" ", strip=True).split())


def parse_filed_date(value: str) -> Optional[date]:
    """Parse the first ``M/D/YYYY`` date found in ``value``."""

    match = FILED_DATE_RE.search(value or "")
    if not match:
        return None
    try:
        return datetime.strptime(match.group(0), "%m/%d/%Y").date()
    except ValueError:
        return None


def _find_listing_table(soup: BeautifulSoup) -> Optional[Tag]:
    tables = soup.find_all("table")
    for table in tables:
        text = table.get_text(" ", strip=True).lower()
        if "caseno" in text.replace(" ", "") and "company" in text and "description" in text:
            return table
    for table in tables:
        for anchor in table.select('a[href*="case"]'):
            if CASE_NUMBER_RE.search(anchor.get_text(strip=True)):
                return table
    return None


def parse_case_listing(
    html: str,
    *,
    base_url: str,
    utility_type: str,
    case_status: str,
) -> list[CaseRecord]:
    """Return case rows from a listing page, in page order."""

    soup = _soup(html)
    table = _find_listing_table(soup)
    if table is None:
        return []

    cases: list[CaseRecord] = []
    for row in table.find_all("tr"):
        cells = row.find_all("td")
        if len(cells) < 3:
            continue
        case_number = _cell_text(cells[0])
        anchor = cells[0].find("a", href=True)
        if not case_number or anchor is None or not CASE_NUMBER_RE.search(case_number):
            continue
        cases.append(
            CaseRecord(
                case_number=CASE_NUMBER_RE.search(case_number).group(0),
                company=_cell_text(cells[1]),
                description=_cell_text(cells[2]),
                case_url=urljoin(base_url, anchor["href"]),
                utility_type=utility_type,
                case_status=case_status,
            )
        )
    return cases


def parse_case_metadata(html: str) -> Optional[CaseMetadata]:
    """Read filing metadata from a case detail page.

    Returns ``None`` when the metadata table or its filing date is missing.
    """

    soup = _soup(html)
    target: Optional[Tag] = None
    for table in soup.find_all("table"):
        headers = [_cell_text(th) for th in table.find_all("th")]
        if any("Date Filed" in header or "Last Updated" in header for header in headers):
            target = table
            break
    if target is None:
        return None

    data_row = None
    body = target.find("tbody")
    if body is not None:
        data_row = next((tr for tr in body.find_all("tr") if tr.find("td")), None)
    if data_row is None:
        rows = [tr for tr in target.find_all("tr") if tr.find("td")]
        data_row = rows[-1] if rows else None
    if data_row is None:
        return None

    cells = data_row.find_all("td")
    if len(cells) < 5:
        return None

    filed = parse_filed_date(_cell_text(cells[2]))
    if filed is None:
        return None

    return CaseMetadata(
        date_filed=filed,
        case_number=_cell_text(cells[1]),
        case_type=_cell_text(cells[3]),
        status=_cell_text(cells[4]),
        description=_cell_text(cells[5]) if len(cells) > 5 else "",
    )


def extract_witness_name(document_name: str) -> Optional[str]:
    for pattern in _WITNESS_PATTERNS:
        match = pattern.search(document_name)
        if match and match.group(1):
            return " ".join(match.group(1).split())
    return None


def infer_document_type(document_name: str, section: str) -> str:
    if "DIRECT" in document_name.upper() and section == "Company":
        return "Company_Direct_Testimony"
    if section == "Staff":
        return "Staff_Document"
    if section == "Public Comments":
        return "Public_Comments"
    return "Other_Document"


def _section_container(header: Tag) -> Optional[Tag]:
    container = header.parent
    while container is not None and not _document_anchors(container) and container.parent is not None:
        container = container.parent
    return container


def _document_anchors(container: Tag) -> list[Tag]:
    return container.select(f'a[href*="{config.DOCUMENT_HOST_MARKER}"]')


def parse_document_links(html: str, *, base_url: str = config.BASE_URL) -> list[DocumentCandidate]:
    """Return PDF document candidates from a case page, section by section.

    The same URL may appear under more than one section; callers dedupe.
    """

    soup = _soup(html)
    candidates: list[DocumentCandidate] = []

    for section in DOCUMENT_SECTIONS:
        headers = [
            header
            for header in soup.select(SECTION_HEADER_SELECTOR)
            if header.get_text(strip=True) == section
        ]
        for header in headers:
            container = _section_container(header)
            if container is None:
                continue
            for anchor in _document_anchors(container):
                name = anchor.get_text(strip=True)
                if len(name) < MIN_DOCUMENT_NAME_LENGTH:
                    continue
                if not name.upper().endswith(".PDF"):
                    continue
                candidates.append(
                    DocumentCandidate(
                        name=name,
                        url=urljoin(base_url, anchor["href"]),
                        section=section,
                        document_type=infer_document_type(name, section),
                        witness_name=extract_witness_name(name),
                    )
                )
    return candidates


__all__ = [
    "CASE_NUMBER_RE",
    "CaseMetadata",
    "DOCUMENT_SECTIONS",
    "extract_witness_name",
    "infer_document_type",
    "parse_case_listing",
    "parse_case_metadata",
    "parse_document_links",
    "parse_filed_date",
]
