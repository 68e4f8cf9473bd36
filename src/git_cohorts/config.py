from __future__ import annotations

import dataclasses
import fnmatch
import json
from pathlib import Path

from .errors import ConfigurationError
from .periods import parse_year_month, year_month_end_ts, year_month_start_ts


@dataclasses.dataclass(frozen=True)
class EmailPattern:
    pattern: str
    begin_ts: int | None = None  # inclusive
    end_ts: int | None = None  # exclusive

    def matches(self, email: str, author_time: int) -> bool:
        if not fnmatch.fnmatchcase(email, self.pattern):
            return False
        if self.begin_ts is not None and author_time < self.begin_ts:
            return False
        if self.end_ts is not None and author_time >= self.end_ts:
            return False
        return True


@dataclasses.dataclass(frozen=True)
class DomainMeta:
    name: str
    show: bool | None = None
    aggregate_emails: tuple[EmailPattern, ...] = ()


@dataclasses.dataclass(frozen=True)
class ProjectMeta:
    name: str = ""
    first_year: int | None = None
    last_year: int | None = None
    brief_days: int | None = None
    cohorts: dict[str, str] = dataclasses.field(default_factory=dict)
    domains: tuple[DomainMeta, ...] = ()

    def override(self, name: str) -> str:
        return self.cohorts.get(name, name)

    def matched_domain(self, email: str, author_time: int, domain: str) -> str:
        """
        The domain entry whose email patterns match the commit (first matching
        entry wins), else the commit's own domain.
        """
        for d in self.domains:
            for p in d.aggregate_emails:
                if p.matches(email, author_time):
                    return d.name
        return domain

    def domain_for(self, email: str, author_time: int, domain: str) -> str:
        return self.override(self.matched_domain(email, author_time, domain))

    def hidden_domains(self) -> frozenset[str]:
        return frozenset(d.name for d in self.domains if d.show is False)


def _opt_int(raw: dict, key: str) -> int | None:
    v = raw.get(key)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, int):
        raise ConfigurationError(f"metadata: {key!r} must be an integer, got {v!r}")
    return v


def _parse_pattern(raw: object, domain_name: str) -> EmailPattern:
    if not isinstance(raw, dict) or not str(raw.get("pattern", "") or "").strip():
        raise ConfigurationError(f"metadata: domain {domain_name!r} has an aggregate_emails entry without a pattern")
    begin_ts = end_ts = None
    if raw.get("begin") is not None:
        ym = parse_year_month(raw.get("begin"))
        if ym is None:
            raise ConfigurationError(f"metadata: bad 'begin' for pattern {raw['pattern']!r}")
        begin_ts = year_month_start_ts(ym)
    if raw.get("end") is not None:
        ym = parse_year_month(raw.get("end"))
        if ym is None:
            raise ConfigurationError(f"metadata: bad 'end' for pattern {raw['pattern']!r}")
        end_ts = year_month_end_ts(ym)
    return EmailPattern(pattern=str(raw["pattern"]).strip().lower(), begin_ts=begin_ts, end_ts=end_ts)


def meta_from_dict(raw: dict) -> ProjectMeta:
    if not isinstance(raw, dict):
        raise ConfigurationError("metadata: top level must be a JSON object")

    cohorts_raw = raw.get("cohorts") or {}
    if not isinstance(cohorts_raw, dict):
        raise ConfigurationError("metadata: 'cohorts' must map repository or domain names to labels")
    cohorts = {str(k): str(v) for k, v in cohorts_raw.items()}

    domains: list[DomainMeta] = []
    for d in raw.get("domains") or []:
        if not isinstance(d, dict) or not str(d.get("name", "") or "").strip():
            raise ConfigurationError("metadata: every 'domains' entry needs a name")
        name = str(d["name"]).strip()
        show = d.get("show")
        if show is not None and not isinstance(show, bool):
            raise ConfigurationError(f"metadata: 'show' for domain {name!r} must be true or false")
        patterns = tuple(_parse_pattern(p, name) for p in (d.get("aggregate_emails") or []))
        domains.append(DomainMeta(name=name, show=show, aggregate_emails=patterns))

    meta = ProjectMeta(
        name=str(raw.get("name", "") or ""),
        first_year=_opt_int(raw, "first_year"),
        last_year=_opt_int(raw, "last_year"),
        brief_days=_opt_int(raw, "brief_days"),
        cohorts=cohorts,
        domains=tuple(domains),
    )
    if meta.first_year is not None and meta.last_year is not None and meta.first_year > meta.last_year:
        raise ConfigurationError("metadata: first_year is after last_year")
    return meta


def load_meta(meta_path: Path | None) -> ProjectMeta:
    if meta_path is None:
        return ProjectMeta()
    try:
        text = meta_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"cannot read metadata file {meta_path}: {e}") from e
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"failed to parse metadata file {meta_path}: {e}") from e
    return meta_from_dict(raw)
