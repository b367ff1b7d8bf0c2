from __future__ import annotations

"""CLI helper for printing store statistics and the last run summary."""

import argparse
import json
from typing import Sequence

from . import config, db_reporting


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser for the summary CLI."""

    parser = argparse.ArgumentParser(
        description="Show document store statistics for the PUC crawler.",
    )
    parser.add_argument(
        "--last-run",
        action="store_true",
        help="Also print the summary written by the most recent run.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the summary CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    stats = db_reporting.store_statistics()
    print("Store")
    print(f"  cases: {stats.cases}")
    print(f"  documents: {stats.documents}")
    for status, count in sorted(stats.documents_by_status.items()):
        print(f"    {status}: {count}")
    print(f"  chunks: {stats.chunks}")
    print(f"  chunks pending embedding: {stats.chunks_pending_embedding}")

    if stats.cases_by_utility:
        print("\nCases by utility:")
        for utility, count in sorted(stats.cases_by_utility.items()):
            print(f"  {utility}: {count}")

    if args.last_run:
        if not config.SUMMARY_FILE.exists():
            print("\nNo run summary recorded yet.")
            return 1
        payload = json.loads(config.SUMMARY_FILE.read_text(encoding="utf-8"))
        print(f"\nLast run {payload.get('run_id')} ({payload.get('mode')})")
        for key, value in sorted((payload.get("summary") or {}).items()):
            print(f"  {key}: {value}")

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
