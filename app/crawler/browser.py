"""Playwright session and navigation helpers shared by discovery and workers."""
from __future__ import annotations

from typing import Any, Optional

from playwright.sync_api import (
    Browser,
    BrowserContext,
    Error as PWError,
    Page,
    Playwright,
    TimeoutError as PWTimeout,
    sync_playwright,
)

from . import config
from .error_codes import ErrorCode
from .errors import BrowserCrashedError, TransientNetworkError
from .logging_utils import _crawler_event
from .utils import log_line

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]


def _is_target_closed_error(exc: Exception) -> bool:
    """Return ``True`` if *exc* indicates the Playwright target is gone."""

    message = str(exc)
    return any(
        marker in message
        for marker in (
            "Target closed",
            "Target crashed",
            "has been closed",
            "Browser has been closed",
            "Execution context was destroyed",
        )
    )


def wait_seconds(page: Optional[Any], seconds: float) -> None:
    """Wait for ``seconds`` on ``page`` (a Page or Frame) while it stays usable."""

    if page is None or seconds is None or seconds <= 0:
        return
    is_closed = getattr(page, "is_closed", None)
    if is_closed is not None and is_closed():
        return
    page.wait_for_timeout(int(seconds * 1000))


def safe_goto(
    page: Page,
    url: str,
    *,
    label: str,
    timeout_seconds: int,
    wait_until: str = "networkidle",
) -> None:
    """Navigate to ``url`` and map Playwright failures onto crawler errors.

    Timeouts and ordinary navigation errors raise ``TransientNetworkError``;
    a closed or crashed target raises ``BrowserCrashedError``.
    """

    _crawler_event("nav", step="goto", label=label, url=url)
    try:
        page.goto(url, wait_until=wait_until, timeout=timeout_seconds * 1000)
    except PWTimeout as exc:
        _crawler_event("error", phase="nav", step="goto_timeout", label=label, url=url, error=str(exc))
        raise TransientNetworkError(
            f"navigation to {url} timed out", error_code=ErrorCode.NAVIGATION_TIMEOUT
        ) from exc
    except PWError as exc:
        if _is_target_closed_error(exc):
            log_line(f"[CRAWLER][ERROR][NAV] Target closed during navigation to {label}: {exc}")
            raise BrowserCrashedError(f"browser target closed while loading {url}") from exc
        _crawler_event("error", phase="nav", step="goto_error", label=label, url=url, error=str(exc))
        raise TransientNetworkError(f"navigation to {url} failed: {exc}") from exc


class BrowserSession:
    """One Chromium browser plus a single reusable page.

    Used as a context manager so the browser is closed however the owning
    thread exits. Each session starts its own ``sync_playwright`` driver
    because the sync API is bound to the thread that created it.
    """

    def __init__(self, label: str, *, headless: bool | None = None) -> None:
        self.label = label
        self.headless = config.HEADLESS if headless is None else headless
        self._manager = None
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None

    def __enter__(self) -> "BrowserSession":
        self._manager = sync_playwright()
        self._playwright = self._manager.start()
        try:
            self._browser = self._playwright.chromium.launch(
                headless=self.headless,
                args=LAUNCH_ARGS,
            )
            self._context = self._browser.new_context(
                user_agent=config.COMMON_HEADERS["User-Agent"],
                locale="en-US",
                viewport={"width": 1368, "height": 900},
            )
            self._context.add_init_script(
                "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"
            )
            self.page = self._context.new_page()
        except Exception:
            self.close()
            raise
        _crawler_event("browser", step="opened", label=self.label)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def new_page(self) -> Page:
        """Open an additional page sharing this session's context."""

        if self._context is None:
            raise BrowserCrashedError(f"browser session {self.label} is not open")
        try:
            return self._context.new_page()
        except PWError as exc:
            raise BrowserCrashedError(f"could not open page for {self.label}: {exc}") from exc

    def close(self) -> None:
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                closer.close()
            except PWError as exc:
                log_line(f"[CRAWLER][BROWSER] close failed for {self.label}: {exc}")
        self._context = None
        self._browser = None
        self.page = None
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except PWError as exc:
                log_line(f"[CRAWLER][BROWSER] driver stop failed for {self.label}: {exc}")
            self._playwright = None
            _crawler_event("browser", step="closed", label=self.label)


__all__ = [
    "BrowserSession",
    "PWError",
    "PWTimeout",
    "_is_target_closed_error",
    "safe_goto",
    "wait_seconds",
]
