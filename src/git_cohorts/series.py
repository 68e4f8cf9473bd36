from __future__ import annotations

import dataclasses
from collections import defaultdict

from .cohorts import COHORT_TYPES, commit_label, firstyear_label, fold_small_cohorts, order_cohorts
from .config import ProjectMeta
from .errors import ConfigurationError, NoChangeDataError
from .models import CohortSeries, SeriesRow
from .periods import INTERVALS, Bucket, bucket_index, buckets_for_range
from .store import CommitStore

UNITS = ("authors", "commits", "changes")


@dataclasses.dataclass(frozen=True)
class _LabelledCommit:
    label: str
    author: str
    author_time: int
    n_changes: int | None


def validate_options(cohort: str, interval: str, unit: str, from_year: int | None = None, to_year: int | None = None) -> None:
    if cohort not in COHORT_TYPES:
        raise ConfigurationError(f"unknown cohort {cohort!r} (expected one of {', '.join(COHORT_TYPES)})")
    if interval not in INTERVALS:
        raise ConfigurationError(f"unknown interval {interval!r} (expected one of {', '.join(INTERVALS)})")
    if unit not in UNITS:
        raise ConfigurationError(f"unknown unit {unit!r} (expected one of {', '.join(UNITS)})")
    if from_year is not None and to_year is not None and from_year > to_year:
        raise ConfigurationError(f"--from {from_year} is after --to {to_year}")


def check_unit_supported(store: CommitStore, unit: str) -> None:
    """
    Change counts only exist for repositories ingested with file content.
    Refuse unit=changes when the store has none rather than plotting zeros.
    """
    if unit != "changes":
        return
    if not store.has_change_data():
        repos = store.repos_without_change_data()
        detail = f" (metadata-only: {', '.join(repos)})" if repos else ""
        raise NoChangeDataError("no change data: no ingested repository reported line-change counts" + detail)


def resolve_range(
    store: CommitStore,
    from_year: int | None,
    to_year: int | None,
    meta: ProjectMeta,
) -> tuple[int, int] | None:
    if from_year is None:
        from_year = meta.first_year
    if to_year is None:
        to_year = meta.last_year
    if from_year is None or to_year is None:
        bounds = store.year_bounds()
        if bounds is None:
            return None
        if from_year is None:
            from_year = bounds[0]
        if to_year is None:
            to_year = bounds[1]
    if from_year > to_year:
        raise ConfigurationError(f"empty year range {from_year}..{to_year}")
    return from_year, to_year


def _labelled_commits(store: CommitStore, cohort: str, meta: ProjectMeta) -> list[_LabelledCommit]:
    out: list[_LabelledCommit] = []
    if cohort == "firstyear":
        cur = store.conn.execute(
            """
            SELECT r.author_name, r.author_time, r.n_changes, a.first_year, a.active_time
            FROM raw_commits AS r JOIN authors AS a ON r.author_name = a.author_name
            """
        )
        for author, author_time, n_changes, first_year, active_time in cur:
            label = firstyear_label(int(first_year), int(active_time), meta)
            out.append(_LabelledCommit(label, author, int(author_time), n_changes))
        return out

    cur = store.conn.execute(
        "SELECT repo_id, author_name, author_email, author_domain, author_time, n_changes FROM raw_commits"
    )
    for repo_id, author, email, domain, author_time, n_changes in cur:
        label = commit_label(
            cohort,
            repo_id=repo_id,
            author_email=email,
            author_domain=domain,
            author_time=int(author_time),
            meta=meta,
        )
        if label is None:
            continue
        out.append(_LabelledCommit(label, author, int(author_time), n_changes))
    return out


def _author_counts(commits: list[_LabelledCommit], buckets: list[Bucket], interval: str) -> dict[str, list[int]]:
    spans: dict[tuple[str, str], list[int]] = {}
    for c in commits:
        span = spans.get((c.label, c.author))
        if span is None:
            spans[(c.label, c.author)] = [c.author_time, c.author_time]
            continue
        if c.author_time < span[0]:
            span[0] = c.author_time
        if c.author_time > span[1]:
            span[1] = c.author_time

    range_start = buckets[0].start_ts
    range_last = buckets[-1].end_ts - 1
    counts: dict[str, list[int]] = defaultdict(lambda: [0] * len(buckets))
    for (label, _author), (first, last) in spans.items():
        lo = max(first, range_start)
        hi = min(last, range_last)
        if lo > hi:
            continue
        i0 = bucket_index(buckets, interval, lo)
        i1 = bucket_index(buckets, interval, hi)
        if i0 is None or i1 is None:
            continue
        row = counts[label]
        for i in range(i0, i1 + 1):
            row[i] += 1
    return dict(counts)


def _commit_counts(commits: list[_LabelledCommit], buckets: list[Bucket], interval: str) -> dict[str, list[int]]:
    counts: dict[str, list[int]] = defaultdict(lambda: [0] * len(buckets))
    for c in commits:
        i = bucket_index(buckets, interval, c.author_time)
        if i is not None:
            counts[c.label][i] += 1
    return dict(counts)


def _change_sums(commits: list[_LabelledCommit], buckets: list[Bucket], interval: str) -> dict[str, list[int | None]]:
    sums: dict[str, list[int]] = defaultdict(lambda: [0] * len(buckets))
    known: dict[str, list[bool]] = defaultdict(lambda: [False] * len(buckets))
    unknown: dict[str, list[bool]] = defaultdict(lambda: [False] * len(buckets))
    for c in commits:
        i = bucket_index(buckets, interval, c.author_time)
        if i is None:
            continue
        if c.n_changes is None:
            unknown[c.label][i] = True
            continue
        sums[c.label][i] += int(c.n_changes)
        known[c.label][i] = True

    out: dict[str, list[int | None]] = {}
    for label in set(sums) | set(unknown):
        if not any(known[label]):
            # The cohort never reported change counts: no data, not zeros.
            out[label] = [None] * len(buckets)
            continue
        row: list[int | None] = []
        for i in range(len(buckets)):
            if known[label][i]:
                row.append(sums[label][i])
            elif unknown[label][i]:
                row.append(None)
            else:
                row.append(0)
        out[label] = row
    return out


def build_series(
    store: CommitStore,
    cohort: str = "firstyear",
    interval: str = "year",
    unit: str = "authors",
    *,
    from_year: int | None = None,
    to_year: int | None = None,
    meta: ProjectMeta | None = None,
    max_cohorts: int | None = None,
) -> CohortSeries:
    """
    Build a dense cohort x bucket series from the store.

    authors counts distinct authors whose activity span within the cohort
    overlaps the bucket; commits counts commits by author time; changes sums
    the known line-change counts and reports None where nothing is known.
    """
    validate_options(cohort, interval, unit, from_year, to_year)
    if meta is None:
        meta = ProjectMeta()
    check_unit_supported(store, unit)

    empty = CohortSeries(cohort_type=cohort, interval=interval, unit=unit, cohorts=[], buckets=[], rows=[])
    year_range = resolve_range(store, from_year, to_year, meta)
    if year_range is None:
        return empty
    buckets = buckets_for_range(interval, year_range[0], year_range[1])
    if not buckets:
        return empty

    commits = _labelled_commits(store, cohort, meta)

    weights: dict[str, int] = defaultdict(int)
    for c in commits:
        weights[c.label] += 1
    if max_cohorts is not None:
        mapping = fold_small_cohorts(dict(weights), max_cohorts)
        commits = [dataclasses.replace(c, label=mapping[c.label]) for c in commits]
        folded: dict[str, int] = defaultdict(int)
        for label, w in weights.items():
            folded[mapping[label]] += w
        weights = folded

    values: dict[str, list[int | None]]
    if unit == "authors":
        values = dict(_author_counts(commits, buckets, interval))
    elif unit == "commits":
        values = dict(_commit_counts(commits, buckets, interval))
    else:
        values = _change_sums(commits, buckets, interval)

    cohorts = order_cohorts(cohort, {label: weights[label] for label in values})
    rows: list[SeriesRow] = []
    for label in cohorts:
        column = values[label]
        for b, v in zip(buckets, column):
            rows.append(SeriesRow(cohort=label, bucket=b.label, timestamp=b.start_ts, value=v))

    return CohortSeries(
        cohort_type=cohort,
        interval=interval,
        unit=unit,
        cohorts=cohorts,
        buckets=[b.label for b in buckets],
        rows=rows,
    )
