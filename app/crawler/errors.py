"""Exception taxonomy for the crawl-and-ingest pipeline."""
from __future__ import annotations

from .error_codes import ErrorCode


class CrawlerError(Exception):
    error_code: str = ErrorCode.INTERNAL
    retryable: bool = False

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code

    def __str__(self) -> str:  # pragma: no cover - inherited behaviour
        return str(self.args[0]) if self.args else ""


class ExtractionError(CrawlerError):
    """A document could not be turned into text on this attempt."""

    error_code = ErrorCode.INTERNAL
    retryable = True


class TransientNetworkError(ExtractionError):
    error_code = ErrorCode.NETWORK


class ViewerDetectionError(ExtractionError):
    error_code = ErrorCode.VIEWER_NOT_DETECTED


class ZeroContentError(ExtractionError):
    error_code = ErrorCode.ZERO_CONTENT


class NoPagesError(ExtractionError):
    """The viewer rendered but reported no pages; nothing to retry."""

    error_code = ErrorCode.NO_PAGES
    retryable = False


class BrowserCrashedError(CrawlerError):
    """The browser process or its target went away underneath a worker."""

    error_code = ErrorCode.BROWSER_CRASHED


class PersistenceConflict(CrawlerError):
    error_code = ErrorCode.PERSISTENCE_CONFLICT


class PersistenceFatalError(CrawlerError):
    error_code = ErrorCode.PERSISTENCE
    retryable = True


class DiscoveryPageError(CrawlerError):
    error_code = ErrorCode.DISCOVERY_PAGE


class FatalStartupError(CrawlerError, ValueError):
    error_code = ErrorCode.CONFIG


__all__ = [
    "BrowserCrashedError",
    "CrawlerError",
    "DiscoveryPageError",
    "ExtractionError",
    "FatalStartupError",
    "NoPagesError",
    "PersistenceConflict",
    "PersistenceFatalError",
    "TransientNetworkError",
    "ViewerDetectionError",
    "ZeroContentError",
]
