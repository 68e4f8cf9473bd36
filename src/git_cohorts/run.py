from __future__ import annotations

import dataclasses
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Mapping

from .config import ProjectMeta
from .errors import SourceError
from .git import has_promisor, open_repo, read_commit_records, repo_id_for
from .models import CommitRecord, IngestReport
from .output import render_series_png, write_series_csv
from .series import build_series, check_unit_supported, validate_options
from .store import CommitStore


@dataclasses.dataclass
class ScannedRepo:
    path: Path
    repo_id: str
    metadata_only: bool
    records: list[CommitRecord]


def scan_repo(
    path: Path,
    *,
    metadata_only: bool = False,
    since_by_repo: Mapping[str, int] | None = None,
) -> ScannedRepo:
    repo = open_repo(path)
    repo_id = repo_id_for(repo)
    no_changes = metadata_only or has_promisor(repo)
    since = since_by_repo.get(repo_id) if since_by_repo else None
    records = list(read_commit_records(repo, with_changes=not no_changes, since=since))
    return ScannedRepo(path=path, repo_id=repo_id, metadata_only=no_changes, records=records)


def _print_ingest_summary(reports: list[IngestReport], failures: list[str]) -> None:
    skipped = [e for r in reports for e in r.errors]
    total_inserted = sum(r.inserted for r in reports)
    metadata_only = sum(1 for r in reports if r.metadata_only)
    suffix = f", {metadata_only} metadata-only" if metadata_only else ""
    print(f"Ingested {len(reports)} repos ({total_inserted} new commits{suffix}).")
    if skipped:
        print(f"Skipped {len(skipped)} malformed commit records:", file=sys.stderr)
        for e in skipped[:50]:
            print(f"- {e}", file=sys.stderr)
        if len(skipped) > 50:
            print(f"- ... and {len(skipped) - 50} more", file=sys.stderr)
    if failures:
        print(f"Failed to read {len(failures)} repos:", file=sys.stderr)
        for e in failures:
            print(f"- {e}", file=sys.stderr)


def run_ingest(
    *,
    store_path: Path,
    repo_paths: list[Path],
    jobs: int = 1,
    metadata_only: bool = False,
    incremental: bool = False,
) -> int:
    """
    Scan repositories in parallel and write each one to the store as it
    completes. Only this thread writes. Returns 1 when any repository failed.

    With `incremental`, a repository already in the store is only read from
    its latest stored committer time onwards.
    """
    reports: list[IngestReport] = []
    failures: list[str] = []

    with CommitStore.open(store_path) as store:
        since_by_repo = store.last_committer_times() if incremental else None
        with ThreadPoolExecutor(max_workers=max(1, jobs)) as ex:
            futs = {
                ex.submit(scan_repo, p, metadata_only=metadata_only, since_by_repo=since_by_repo): p
                for p in repo_paths
            }
            for i, fut in enumerate(as_completed(futs), start=1):
                path = futs[fut]
                try:
                    scanned = fut.result()
                except SourceError as e:
                    failures.append(str(e))
                    print(f"{path}: skipped ({e})", file=sys.stderr)
                    continue

                if scanned.metadata_only:
                    print(f"Warning: {scanned.repo_id}: metadata-only clone; change counts omitted.", file=sys.stderr)
                report = store.ingest(scanned.repo_id, scanned.records)
                report.metadata_only = scanned.metadata_only
                reports.append(report)
                print(
                    f"[{i}/{len(futs)}] {report.repo_id}: {report.seen} commits, "
                    f"{report.inserted} new, {report.skipped} skipped, {report.authors_touched} authors updated"
                )

    _print_ingest_summary(reports, failures)
    return 1 if failures else 0


def run_rebuild(*, store_path: Path) -> int:
    with CommitStore.open(store_path, must_exist=True) as store:
        n = store.rebuild_all()
    print(f"Rebuilt {n} author summaries.")
    return 0


def run_plot(
    *,
    store_path: Path,
    output: Path | None,
    meta: ProjectMeta,
    cohort: str,
    interval: str,
    unit: str,
    from_year: int | None = None,
    to_year: int | None = None,
    max_cohorts: int | None = None,
) -> int:
    validate_options(cohort, interval, unit, from_year, to_year)

    with CommitStore.open(store_path, must_exist=True) as store:
        check_unit_supported(store, unit)
        if unit == "changes":
            missing = store.repos_without_change_data()
            if missing:
                print(
                    f"Warning: no change counts for {len(missing)} metadata-only repos ({', '.join(missing)}); "
                    "their cells report no data.",
                    file=sys.stderr,
                )
        series = build_series(
            store,
            cohort,
            interval,
            unit,
            from_year=from_year,
            to_year=to_year,
            meta=meta,
            max_cohorts=max_cohorts,
        )
        store_empty = store.year_bounds() is None

    if not series.rows:
        if store_empty:
            print(f"No commits in {store_path}; nothing to plot.", file=sys.stderr)
        else:
            print(f"No commits in {store_path} fall in the requested range; nothing to plot.", file=sys.stderr)
        return 0

    if output is None:
        write_series_csv(sys.stdout, series)
        return 0
    if output.suffix.lower() == ".png":
        render_series_png(output, series, title=meta.name)
    else:
        write_series_csv(output, series)
    print(f"Wrote {len(series.cohorts)} cohorts x {len(series.buckets)} {interval}s to {output}", file=sys.stderr)
    return 0
