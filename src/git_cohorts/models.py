from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class CommitRecord:
    author_name: str
    author_email: str
    author_time: int | None
    committer_time: int | None
    lines_changed: int | None = None  # None = unknown (metadata-only clone), never 0
    commit_id: str = ""


@dataclasses.dataclass(frozen=True)
class RawCommit:
    commit_id: str
    repo_id: str
    author_name: str
    author_email: str
    author_domain: str
    author_time: int
    author_year: int
    committer_time: int | None
    n_changes: int | None


@dataclasses.dataclass(frozen=True)
class AuthorSummary:
    author_name: str
    first_time: int
    first_year: int
    last_time: int
    last_year: int
    active_time: int
    n_commits: int
    n_changes: int | None


@dataclasses.dataclass
class IngestReport:
    repo_id: str
    seen: int = 0
    inserted: int = 0
    authors_touched: int = 0
    metadata_only: bool = False
    errors: list[str] = dataclasses.field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.errors)


@dataclasses.dataclass(frozen=True)
class SeriesRow:
    cohort: str
    bucket: str
    timestamp: int
    value: int | None  # None = no data (unit=changes only)


@dataclasses.dataclass
class CohortSeries:
    cohort_type: str
    interval: str
    unit: str
    cohorts: list[str]
    buckets: list[str]
    rows: list[SeriesRow]

    def value(self, cohort: str, bucket: str) -> int | None:
        for r in self.rows:
            if r.cohort == cohort and r.bucket == bucket:
                return r.value
        raise KeyError((cohort, bucket))

    def column(self, cohort: str) -> list[int | None]:
        return [r.value for r in self.rows if r.cohort == cohort]

    def totals(self) -> list[int]:
        out: dict[str, int] = {b: 0 for b in self.buckets}
        for r in self.rows:
            if r.value is not None:
                out[r.bucket] += r.value
        return [out[b] for b in self.buckets]
