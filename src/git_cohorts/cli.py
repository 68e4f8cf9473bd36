from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from .cohorts import COHORT_TYPES
from .config import load_meta
from .errors import ConfigurationError, StoreError
from .periods import INTERVALS
from .run import run_ingest, run_plot, run_rebuild
from .series import UNITS


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-cohorts",
        description="Ingest git history into a SQLite store and build cohort activity histograms.",
    )
    parser.add_argument("-m", "--meta", type=Path, default=None, help="Path to project metadata JSON (cohort overrides, year range).")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("ingest", help="Ingest one or more git repositories into the store.")
    p.add_argument("store", type=Path, help="Path to SQLite store (created if missing).")
    p.add_argument("repos", type=Path, nargs="+", help="Paths to git repositories.")
    p.add_argument("--jobs", type=int, default=max(1, min(8, (os.cpu_count() or 4))), help="Parallel git jobs.")
    p.add_argument("--metadata-only", action="store_true", help="Skip line-change counts (authors/commits only).")
    p.add_argument("--incremental", action="store_true", help="Only read commits newer than the latest one already stored per repository.")

    p = sub.add_parser("plot", help="Build a cohort histogram series from the store.")
    p.add_argument("store", type=Path, help="Path to SQLite store previously created by ingest.")
    p.add_argument("output", type=Path, nargs="?", default=None, help="Output file (.png renders an image, anything else is CSV; default: CSV on stdout).")
    p.add_argument("-c", "--cohort", choices=COHORT_TYPES, default="firstyear", help="Cohort strategy.")
    p.add_argument("-i", "--interval", choices=INTERVALS, default="year", help="X axis granularity.")
    p.add_argument("-u", "--unit", choices=UNITS, default="authors", help="Y axis quantity.")
    p.add_argument("-f", "--from", dest="from_year", type=int, default=None, help="First year to show.")
    p.add_argument("-t", "--to", dest="to_year", type=int, default=None, help="Last year to show.")
    p.add_argument("--max-cohorts", type=int, default=None, help="Fold all but the N largest cohorts into 'Other'.")

    p = sub.add_parser("rebuild", help="Re-derive the authors table from raw commits.")
    p.add_argument("store", type=Path, help="Path to SQLite store.")
    return parser


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)

    try:
        meta = load_meta(args.meta)
        if args.command == "ingest":
            return run_ingest(
                store_path=args.store,
                repo_paths=list(args.repos),
                jobs=int(args.jobs),
                metadata_only=bool(args.metadata_only),
                incremental=bool(args.incremental),
            )
        if args.command == "rebuild":
            return run_rebuild(store_path=args.store)
        return run_plot(
            store_path=args.store,
            output=args.output,
            meta=meta,
            cohort=args.cohort,
            interval=args.interval,
            unit=args.unit,
            from_year=args.from_year,
            to_year=args.to_year,
            max_cohorts=args.max_cohorts,
        )
    except (ConfigurationError, StoreError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
