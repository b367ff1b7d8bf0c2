from __future__ import annotations

from typing import Any

from .utils import log_line


def _crawler_event(label: str = "", /, *, phase: str | None = None, **fields: Any) -> None:
    """Emit a structured crawler log line.

    ``phase`` doubles as the label when no label is given. When both are
    provided, ``phase`` travels in the payload so the stage is still captured.
    """

    try:
        phase_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        payload = ", ".join(f"{k}={repr(v)}" for k, v in sorted(fields.items()))
        log_line(f"[CRAWLER][{phase_label.upper()}] {payload}")
    except Exception:
        # Never let logging break a worker.
        return


__all__ = ["_crawler_event"]
