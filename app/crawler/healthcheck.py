from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests

from . import config, db
from .config_validation import validate_runtime_config
from .logging_utils import _crawler_event
from .utils import disk_has_room, ensure_dirs, log_line


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def build_http_session() -> requests.Session:
    """Return a requests session for probing the case listing site."""

    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": config.COMMON_HEADERS.get("User-Agent", "puc crawler"),
            "Accept": config.COMMON_HEADERS.get("Accept", "text/html, */*;q=0.8"),
        }
    )
    return session


def _probe_source() -> dict[str, Any]:
    session = build_http_session()
    try:
        response = session.get(config.CASE_LISTING_URL, timeout=config.LISTING_NAV_TIMEOUT_SECONDS)
    finally:
        session.close()
    return {
        "ok": response.status_code < 400,
        "url": config.CASE_LISTING_URL,
        "status_code": response.status_code,
    }


def run_health_checks(entrypoint: str = "health", *, probe_source: bool = True) -> HealthResult:
    """Check config, disk, store and credentials without crawling."""

    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_runtime_config(entrypoint or "health", mode=None)
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    ensure_dirs()
    fs_ok = disk_has_room(config.MIN_FREE_MB, config.DATA_DIR)
    checks["filesystem"] = {
        "ok": fs_ok,
        "data_dir": str(config.DATA_DIR),
        "min_free_mb": config.MIN_FREE_MB,
    }

    try:
        db.initialize_schema()
        conn = db.get_connection()
        try:
            count = conn.execute("SELECT COUNT(*) FROM cases").fetchone()[0]
        finally:
            conn.close()
        checks["database"] = {"ok": True, "cases": int(count)}
    except Exception as exc:  # noqa: BLE001
        checks["database"] = {"ok": False, "error": str(exc)}

    has_key = bool(config.EMBEDDING_API_KEY.strip())
    checks["embedding_credentials"] = {
        "ok": has_key or not config.REQUIRE_EMBEDDING_KEY,
        "present": has_key,
        "required": config.REQUIRE_EMBEDDING_KEY,
    }

    if probe_source:
        try:
            checks["source"] = _probe_source()
        except requests.RequestException as exc:
            checks["source"] = {"ok": False, "url": config.CASE_LISTING_URL, "error": str(exc)}

    overall_ok = all(check.get("ok", False) for check in checks.values())

    _crawler_event(
        "health" if overall_ok else "error",
        phase="health",
        context="healthcheck",
        ok=overall_ok,
        checks=checks,
    )

    return HealthResult(ok=overall_ok, checks=checks)


def report(result: HealthResult) -> None:
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")


if __name__ == "__main__":  # pragma: no cover
    health = run_health_checks(entrypoint="health")
    report(health)
    raise SystemExit(0 if health.ok else 1)


__all__ = ["HealthResult", "build_http_session", "report", "run_health_checks"]
