"""Page-by-page text extraction from the repository's document viewers.

Workflow for one document:

- Navigate to the document URL and let the viewer settle.
- Switch to plain-text mode when the viewer offers a toggle.
- Detect the viewer kind (text layer vs. iframe-embedded PDF viewer).
- Walk the pages in order with the timing tier chosen by the retry ledger,
  keeping only pages whose text clears a minimum length.

Every failure surfaces as an ``ExtractionError`` subclass so the worker can
hand it to the retry ledger.
"""
from __future__ import annotations

import re
from typing import Any

from . import config
from .browser import PWError, PWTimeout, _is_target_closed_error, safe_goto, wait_seconds
from .errors import (
    BrowserCrashedError,
    NoPagesError,
    ViewerDetectionError,
    ZeroContentError,
)
from .logging_utils import _crawler_event
from .models import ExtractionResult, WorkUnit
from .retry_policy import (
    IFRAME_ACCESS,
    VIEWER_EMBEDDED,
    VIEWER_TEXT_LAYER,
    RetryLedger,
    TimingTier,
)
from .viewer_selectors import (
    DETECT_VIEWER_JS,
    EMBEDDED_PAGE_COUNT_JS,
    EMBEDDED_READY_JS,
    READ_EMBEDDED_PAGE_JS,
    READ_TEXT_LAYER_PAGE_JS,
    SET_EMBEDDED_PAGE_JS,
    SET_TEXT_LAYER_PAGE_JS,
    VIEWER_SELECTORS,
)

BOILERPLATE_PATTERNS = (
    re.compile(r"View plain text", re.I),
    re.compile(r"View images", re.I),
    re.compile(r"Search in document", re.I),
    re.compile(r"PUC Case Management", re.I),
    re.compile(r"PublicFiles.*?Company", re.I),
)
_WHITESPACE_RE = re.compile(r"\s+")

PROGRESS_EVERY_PAGES = 25


def clean_extracted_text(raw_text: str) -> str:
    """Strip viewer chrome from ``raw_text`` and collapse whitespace."""

    text = raw_text or ""
    for pattern in BOILERPLATE_PATTERNS:
        text = pattern.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def page_marker(page_number: int, text: str) -> str:
    return f"\n--- PAGE {page_number} ---\n{text}\n"


class ExtractionEngine:
    """Drive one browser page through viewer detection and page reads."""

    def __init__(self, ledger: RetryLedger, *, worker_label: str = "worker") -> None:
        self.ledger = ledger
        self.worker_label = worker_label

    def extract(self, page: Any, unit: WorkUnit) -> ExtractionResult:
        url = unit.document.url
        safe_goto(
            page,
            url,
            label=f"document:{unit.document.name}",
            timeout_seconds=config.DOCUMENT_NAV_TIMEOUT_SECONDS,
        )
        wait_seconds(page, config.DOCUMENT_SETTLE_SECONDS)
        self._enable_text_mode(page)

        detection = self._evaluate(page, DETECT_VIEWER_JS) or {}
        kind = detection.get("kind", "unknown")
        page_count = int(detection.get("pageCount") or 0)

        if kind == VIEWER_TEXT_LAYER:
            if page_count <= 0:
                raise NoPagesError(f"no pages detected for {unit.document.name}")
            tier = self.ledger.next_attempt_timing(unit.unit_id, VIEWER_TEXT_LAYER)
            text, pages = self._extract_text_layer(page, page_count, tier)
        elif kind == VIEWER_EMBEDDED:
            tier = self.ledger.next_attempt_timing(unit.unit_id, VIEWER_EMBEDDED)
            text, pages = self._extract_embedded(page, unit, tier)
        else:
            raise ViewerDetectionError(f"no known viewer rendered {unit.document.name}")

        if not text.strip():
            raise ZeroContentError(f"no page text crossed the floor for {unit.document.name}")

        _crawler_event(
            "extract",
            worker=self.worker_label,
            document=unit.document.name,
            viewer=kind,
            tier=tier.label,
            pages=pages,
            chars=len(text),
        )
        return ExtractionResult(text=text, page_count=pages, viewer_kind=kind, tier=tier.label)

    # ------------------------------------------------------------------
    # Viewer helpers
    # ------------------------------------------------------------------

    def _evaluate(self, target: Any, script: str, arg: Any = None) -> Any:
        try:
            if arg is None:
                return target.evaluate(script)
            return target.evaluate(script, arg)
        except PWError as exc:
            if _is_target_closed_error(exc):
                raise BrowserCrashedError(f"browser target closed: {exc}") from exc
            raise ViewerDetectionError(f"viewer script failed: {exc}") from exc

    def _enable_text_mode(self, page: Any) -> None:
        try:
            toggle = page.query_selector(VIEWER_SELECTORS.text_mode_toggle)
            if toggle is None:
                return
            toggle.click()
        except PWError as exc:
            if _is_target_closed_error(exc):
                raise BrowserCrashedError(f"browser target closed: {exc}") from exc
            _crawler_event("extract", step="text_mode_failed", worker=self.worker_label, error=str(exc))
            return
        wait_seconds(page, config.TEXT_MODE_SETTLE_SECONDS)

    def _extract_text_layer(self, page: Any, page_count: int, tier: TimingTier) -> tuple[str, int]:
        return self._walk_pages(
            page,
            page_count,
            tier,
            set_page=lambda n: page.evaluate(SET_TEXT_LAYER_PAGE_JS, n),
            read_page=lambda n: page.evaluate(READ_TEXT_LAYER_PAGE_JS, config.TEXT_LAYER_MIN_PAGE_CHARS),
            min_chars=config.TEXT_LAYER_MIN_PAGE_CHARS,
        )

    def _extract_embedded(self, page: Any, unit: WorkUnit, tier: TimingTier) -> tuple[str, int]:
        access_tier = self.ledger.next_attempt_timing(unit.unit_id, IFRAME_ACCESS)
        selector_timeout_ms = config.IFRAME_SELECTOR_TIMEOUT_SECONDS * 1000 + access_tier.wait_ms
        try:
            handle = page.wait_for_selector(VIEWER_SELECTORS.embedded_iframe, timeout=selector_timeout_ms)
            frame = handle.content_frame() if handle is not None else None
        except PWTimeout as exc:
            raise ViewerDetectionError(f"embedded viewer iframe never attached: {exc}") from exc
        except PWError as exc:
            if _is_target_closed_error(exc):
                raise BrowserCrashedError(f"browser target closed: {exc}") from exc
            raise ViewerDetectionError(f"embedded viewer iframe unavailable: {exc}") from exc
        if frame is None:
            raise ViewerDetectionError("could not access embedded viewer iframe content")

        try:
            frame.wait_for_function(EMBEDDED_READY_JS, timeout=tier.wait_ms * 15)
        except PWTimeout as exc:
            raise ViewerDetectionError(f"embedded viewer pages never rendered ({tier.label})") from exc
        except PWError as exc:
            if _is_target_closed_error(exc):
                raise BrowserCrashedError(f"browser target closed: {exc}") from exc
            raise ViewerDetectionError(f"embedded viewer failed: {exc}") from exc

        page_count = int(self._evaluate(frame, EMBEDDED_PAGE_COUNT_JS) or 0)
        if page_count <= 0:
            raise NoPagesError(f"embedded viewer reported no pages for {unit.document.name}")

        return self._walk_pages(
            frame,
            page_count,
            tier,
            set_page=lambda n: frame.evaluate(SET_EMBEDDED_PAGE_JS, n),
            read_page=lambda n: frame.evaluate(
                READ_EMBEDDED_PAGE_JS, [n, config.EMBEDDED_VIEWER_MIN_SPAN_CHARS]
            ),
            min_chars=config.EMBEDDED_VIEWER_MIN_PAGE_CHARS,
        )

    def _walk_pages(
        self,
        target: Any,
        page_count: int,
        tier: TimingTier,
        *,
        set_page,
        read_page,
        min_chars: int,
    ) -> tuple[str, int]:
        """Read pages ``1..page_count`` with a bounded per-page retry.

        A page that never clears ``min_chars`` is skipped after its retries.
        """

        parts: list[str] = []
        successful = 0
        retry_wait = tier.wait_seconds / 2

        for page_number in range(1, page_count + 1):
            for attempt in range(tier.page_retries + 1):
                try:
                    set_page(page_number)
                    wait_seconds(target, tier.wait_seconds)
                    text = (read_page(page_number) or "").strip()
                except PWError as exc:
                    if _is_target_closed_error(exc):
                        raise BrowserCrashedError(f"browser target closed: {exc}") from exc
                    text = ""
                if len(text) > min_chars:
                    parts.append(page_marker(page_number, text))
                    successful += 1
                    break
                if attempt < tier.page_retries:
                    wait_seconds(target, retry_wait)

            if page_number % PROGRESS_EVERY_PAGES == 0 or page_number == page_count:
                _crawler_event(
                    "extract",
                    step="progress",
                    worker=self.worker_label,
                    page=page_number,
                    pages=page_count,
                    successful=successful,
                    tier=tier.label,
                )

        return "".join(parts), successful


__all__ = ["ExtractionEngine", "clean_extracted_text", "page_marker"]
