from __future__ import annotations

from typing import Literal

from . import config
from .errors import FatalStartupError
from .logging_utils import _crawler_event
from .utils import log_line

Entrypoint = Literal["cli", "nightly", "health", "tests"]


def _raise_config_error(
    message: str, *, entrypoint: Entrypoint, error: str, mode: str | None
) -> None:
    _crawler_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
        mode=mode,
    )
    mode_fragment = f", mode={mode}" if mode else ""
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint}{mode_fragment})")
    raise FatalStartupError(message)


def validate_runtime_config(
    entrypoint: Entrypoint,
    *,
    mode: str | None = None,
    start_year: int | None = None,
    end_year: int | None = None,
    workers: int | None = None,
) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``FatalStartupError`` (a ``ValueError``) when a blocking
    misconfiguration is detected. Non-fatal adjustments, such as clamping the
    chunk insert batch, are logged but do not raise.
    """

    start = config.START_YEAR if start_year is None else start_year
    end = config.END_YEAR if end_year is None else end_year
    if start > end:
        _raise_config_error(
            f"start year {start} is after end year {end}.",
            entrypoint=entrypoint,
            error="year_window_invalid",
            mode=mode,
        )

    worker_count = config.MAX_WORKERS if workers is None else workers
    if worker_count < 1:
        _raise_config_error(
            "worker count must be at least 1.",
            entrypoint=entrypoint,
            error="workers_invalid",
            mode=mode,
        )

    if config.CHUNK_SIZE <= 0:
        _raise_config_error(
            "CHUNK_SIZE must be greater than zero.",
            entrypoint=entrypoint,
            error="chunk_size_invalid",
            mode=mode,
        )

    if config.CHUNK_OVERLAP < 0 or config.CHUNK_OVERLAP >= config.CHUNK_SIZE:
        _raise_config_error(
            "CHUNK_OVERLAP must be non-negative and smaller than CHUNK_SIZE.",
            entrypoint=entrypoint,
            error="chunk_overlap_invalid",
            mode=mode,
        )

    if config.CHUNK_INSERT_BATCH < 1:
        adjusted = 1
        _crawler_event(
            "state",
            phase="config",
            context="runtime_validation",
            kind="config_adjustment",
            field="CHUNK_INSERT_BATCH",
            value=config.CHUNK_INSERT_BATCH,
            adjusted=adjusted,
            entrypoint=entrypoint,
            mode=mode,
        )
        log_line("[CONFIG] CHUNK_INSERT_BATCH < 1; clamping to 1.")
        config.CHUNK_INSERT_BATCH = adjusted

    if config.MAX_DOCUMENT_ATTEMPTS < 1:
        _raise_config_error(
            "MAX_DOCUMENT_ATTEMPTS must be at least 1.",
            entrypoint=entrypoint,
            error="max_attempts_invalid",
            mode=mode,
        )

    if config.MIN_FREE_MB < 0:
        _raise_config_error(
            "MIN_FREE_MB must be non-negative.",
            entrypoint=entrypoint,
            error="min_free_mb_invalid",
            mode=mode,
        )

    if not config.LISTING_SOURCES:
        _raise_config_error(
            "LISTING_SOURCES must name at least one case listing.",
            entrypoint=entrypoint,
            error="no_listing_sources",
            mode=mode,
        )

    timeout_fields = [
        ("PUC_CRAWLER_DOCUMENT_NAV_TIMEOUT_SECONDS", config.DOCUMENT_NAV_TIMEOUT_SECONDS),
        ("PUC_CRAWLER_LISTING_NAV_TIMEOUT_SECONDS", config.LISTING_NAV_TIMEOUT_SECONDS),
        ("PUC_CRAWLER_IFRAME_SELECTOR_TIMEOUT_SECONDS", config.IFRAME_SELECTOR_TIMEOUT_SECONDS),
    ]

    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
                mode=mode,
            )


__all__ = ["validate_runtime_config", "Entrypoint"]
