from __future__ import annotations

from datetime import date

import pytest

from app.crawler.parser import (
    extract_witness_name,
    infer_document_type,
    parse_case_listing,
    parse_case_metadata,
    parse_document_links,
    parse_filed_date,
)

LISTING_HTML = """
<html><body>
<table id="grid">
  <thead><tr><th>Case No</th><th>Company</th><th>Description</th></tr></thead>
  <tbody>
    <tr>
      <td><a href="/case/Details/5001">IPC-E-23-01</a></td>
      <td>Idaho Power Company</td>
      <td>Application for a general rate case</td>
    </tr>
    <tr>
      <td><a href="/case/Details/5002">AVU-E-23-02</a></td>
      <td>Avista Corporation</td>
      <td>Wildfire mitigation plan</td>
    </tr>
    <tr><td colspan="3">No more records</td></tr>
  </tbody>
</table>
</body></html>
"""

CASE_HTML = """
<html><body>
<table class="case-summary">
  <thead>
    <tr><th>Utility</th><th>Case No</th><th>Date Filed</th><th>Case Type</th><th>Status</th><th>Description</th></tr>
  </thead>
  <tbody>
    <tr>
      <td>Electric</td><td>IPC-E-23-01</td><td>5/31/2023</td><td>Rate Case</td><td>Open</td>
      <td>General rate case</td>
    </tr>
  </tbody>
</table>
<div class="docs">
  <div><h3>Company</h3>
    <ul>
      <li><a href="https://lf-puc.idaho.gov/ElectricCases/IPC/IPCE2301/Company/DIRECT J. SMITH.PDF">DIRECT J. SMITH.PDF</a></li>
      <li><a href="https://lf-puc.idaho.gov/ElectricCases/IPC/IPCE2301/Company/DIRECT LARKIN_EXHIBITS.PDF">DIRECT LARKIN_EXHIBITS.PDF</a></li>
      <li><a href="https://lf-puc.idaho.gov/ElectricCases/IPC/IPCE2301/Company/WORKPAPERS.XLSX">WORKPAPERS.XLSX</a></li>
    </ul>
  </div>
  <div><h3>Staff</h3>
    <ul>
      <li><a href="https://lf-puc.idaho.gov/ElectricCases/IPC/IPCE2301/Staff/COMMENTS.PDF">STAFF COMMENTS.PDF</a></li>
    </ul>
  </div>
  <div><h3>Public Comments</h3>
    <ul>
      <li><a href="https://lf-puc.idaho.gov/ElectricCases/IPC/IPCE2301/Public/PUBLIC 1.PDF">PUBLIC COMMENT 1.PDF</a></li>
    </ul>
  </div>
  <div><h3>Orders &amp; Notices</h3>
    <ul>
      <li><a href="https://lf-puc.idaho.gov/ElectricCases/IPC/IPCE2301/Orders/ORDER.PDF">ORDER NO 35000.PDF</a></li>
    </ul>
  </div>
</div>
</body></html>
"""


def test_parse_case_listing_reads_rows_in_order() -> None:
    cases = parse_case_listing(
        LISTING_HTML,
        base_url="https://puc.idaho.gov/case?util=1",
        utility_type="electric",
        case_status="open",
    )

    assert [case.case_number for case in cases] == ["IPC-E-23-01", "AVU-E-23-02"]
    first = cases[0]
    assert first.company == "Idaho Power Company"
    assert first.description == "Application for a general rate case"
    assert first.case_url == "https://puc.idaho.gov/case/Details/5001"
    assert first.utility_type == "electric"
    assert first.case_status == "open"
    assert first.date_filed is None


def test_parse_case_listing_without_table_is_empty() -> None:
    assert parse_case_listing("<p>maintenance</p>", base_url="https://puc.idaho.gov", utility_type="electric", case_status="open") == []


def test_parse_case_metadata_reads_filing_date() -> None:
    metadata = parse_case_metadata(CASE_HTML)

    assert metadata is not None
    assert metadata.date_filed == date(2023, 5, 31)
    assert metadata.case_number == "IPC-E-23-01"
    assert metadata.case_type == "Rate Case"
    assert metadata.status == "Open"
    assert metadata.description == "General rate case"


def test_parse_case_metadata_missing_date_returns_none() -> None:
    html = CASE_HTML.replace("5/31/2023", "pending")

    assert parse_case_metadata(html) is None
    assert parse_case_metadata("<table><tr><td>x</td></tr></table>") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("5/31/2023", date(2023, 5, 31)),
        ("Filed 12/1/2019 10:00 AM", date(2019, 12, 1)),
        ("13/45/2020", None),
        ("", None),
    ],
)
def test_parse_filed_date(raw: str, expected) -> None:
    assert parse_filed_date(raw) == expected


def test_parse_document_links_keeps_pdfs_from_ingested_sections() -> None:
    candidates = parse_document_links(CASE_HTML, base_url="https://puc.idaho.gov/case/Details/5001")

    assert [(c.section, c.name) for c in candidates] == [
        ("Company", "DIRECT J. SMITH.PDF"),
        ("Company", "DIRECT LARKIN_EXHIBITS.PDF"),
        ("Staff", "STAFF COMMENTS.PDF"),
        ("Public Comments", "PUBLIC COMMENT 1.PDF"),
    ]
    smith = candidates[0]
    assert smith.document_type == "Company_Direct_Testimony"
    assert smith.witness_name == "J. SMITH"
    assert smith.is_priority is True
    assert candidates[1].witness_name == "LARKIN"
    assert candidates[2].document_type == "Staff_Document"
    assert candidates[3].document_type == "Public_Comments"


def test_witness_and_type_inference() -> None:
    assert extract_witness_name("APPLICATION.PDF") is None
    assert extract_witness_name("DIRECT BROWN.PDF") == "BROWN"
    assert infer_document_type("DIRECT BROWN.PDF", "Staff") == "Staff_Document"
    assert infer_document_type("PETITION.PDF", "Intervenor") == "Other_Document"
