from __future__ import annotations

"""Error code taxonomy for crawler failures.

Codes travel on exceptions, in structured log lines and in blacklist records
so an operator can tell why a document was abandoned.
"""


class ErrorCode:
    NAVIGATION_TIMEOUT = "navigation_timeout"
    NETWORK = "network_error"
    VIEWER_NOT_DETECTED = "viewer_not_detected"
    ZERO_CONTENT = "zero_content"
    NO_PAGES = "no_pages"
    PERSISTENCE_CONFLICT = "persistence_conflict"
    PERSISTENCE = "persistence_error"
    DISCOVERY_PAGE = "discovery_page_error"
    CONFIG = "config_error"
    BROWSER_CRASHED = "browser_crashed"
    INTERNAL = "internal_error"


__all__ = ["ErrorCode"]
