from __future__ import annotations

"""Listing sources and the browser-backed adapter for the PUC case site.

Listing identifiers (``utility_type``) are persisted on case rows and in the
checkpoint's completed-page keys, so treat them as stable.
"""

from dataclasses import dataclass
from typing import Any, Optional

from . import config
from .browser import PWError, _is_target_closed_error, safe_goto, wait_seconds
from .errors import BrowserCrashedError, DiscoveryPageError
from .logging_utils import _crawler_event
from .models import CaseRecord, DocumentCandidate
from .parser import (
    CaseMetadata,
    parse_case_listing,
    parse_case_metadata,
    parse_document_links,
)

# Site-provided grid pager, present on multi-page listings only.
PAGINATE_JS = "(target) => { window.pagePSFGrid(target); return true; }"


@dataclass(frozen=True)
class ListingSource:
    utility_type: str
    url: str
    case_status: str
    max_pages: int


def listing_sources() -> list[ListingSource]:
    return [
        ListingSource(utility_type=utility, url=url, case_status=status, max_pages=max_pages)
        for utility, url, status, max_pages in config.LISTING_SOURCES
    ]


def page_key(listing: ListingSource, page_number: int) -> str:
    """Checkpoint key for one listing page."""

    return f"{listing.utility_type}:{listing.case_status}:{page_number}"


def _content(page: Any, *, label: str) -> str:
    try:
        return page.content()
    except PWError as exc:
        if _is_target_closed_error(exc):
            raise BrowserCrashedError(f"browser target closed while reading {label}") from exc
        raise DiscoveryPageError(f"could not read {label}: {exc}") from exc


class PucCaseSource:
    """Reads listings, case metadata and document links through Playwright.

    Navigation timeouts surface as ``TransientNetworkError``; unreadable
    pages as ``DiscoveryPageError``; a dead browser as
    ``BrowserCrashedError``.
    """

    def __init__(self, listings: Optional[list[ListingSource]] = None) -> None:
        self.listings = listings if listings is not None else listing_sources()

    def open_listing(self, page: Any, listing: ListingSource) -> None:
        safe_goto(
            page,
            listing.url,
            label=f"listing:{listing.utility_type}",
            timeout_seconds=config.LISTING_NAV_TIMEOUT_SECONDS,
        )

    def goto_listing_page(self, page: Any, listing: ListingSource, page_number: int) -> bool:
        """Advance the listing grid; ``False`` means there is no such page.

        Single-page listings have no pager, so a failing pager call is
        treated as the end of the listing rather than an error.
        """

        if page_number <= 1:
            return True
        try:
            page.evaluate(PAGINATE_JS, page_number)
        except PWError as exc:
            if _is_target_closed_error(exc):
                raise BrowserCrashedError(f"browser target closed while paging {listing.url}") from exc
            _crawler_event(
                "discovery",
                step="pagination_end",
                listing=listing.utility_type,
                page=page_number,
                error=str(exc),
            )
            return False
        wait_seconds(page, config.PAGINATION_SETTLE_SECONDS)
        return True

    def read_listing_cases(self, page: Any, listing: ListingSource) -> list[CaseRecord]:
        html = _content(page, label=f"listing {listing.utility_type}")
        return parse_case_listing(
            html,
            base_url=listing.url,
            utility_type=listing.utility_type,
            case_status=listing.case_status,
        )

    def read_case_metadata(self, page: Any, case: CaseRecord) -> Optional[CaseMetadata]:
        safe_goto(
            page,
            case.case_url,
            label=f"case:{case.case_number}",
            timeout_seconds=config.LISTING_NAV_TIMEOUT_SECONDS,
        )
        return parse_case_metadata(_content(page, label=f"case {case.case_number}"))

    def list_documents(self, page: Any, case: CaseRecord) -> list[DocumentCandidate]:
        """Return document candidates for ``case``.

        Re-navigates only when the page is not already on the case URL, so a
        metadata read followed by a document listing costs one navigation.
        """

        current_url = getattr(page, "url", "") or ""
        if current_url.rstrip("/") != case.case_url.rstrip("/"):
            safe_goto(
                page,
                case.case_url,
                label=f"case:{case.case_number}",
                timeout_seconds=config.LISTING_NAV_TIMEOUT_SECONDS,
            )
        return parse_document_links(
            _content(page, label=f"case {case.case_number}"),
            base_url=case.case_url or config.BASE_URL,
        )


__all__ = ["ListingSource", "PucCaseSource", "listing_sources", "page_key"]
