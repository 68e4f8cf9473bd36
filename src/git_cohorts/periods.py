from __future__ import annotations

import dataclasses
import datetime as dt

INTERVALS = ("year", "month")


@dataclasses.dataclass(frozen=True)
class Bucket:
    label: str
    start: dt.datetime  # inclusive, UTC
    end: dt.datetime  # exclusive, UTC

    @property
    def start_ts(self) -> int:
        return int(self.start.timestamp())

    @property
    def end_ts(self) -> int:
        return int(self.end.timestamp())


def _utc(year: int, month: int = 1) -> dt.datetime:
    return dt.datetime(year, month, 1, tzinfo=dt.timezone.utc)


def year_of(ts: int) -> int:
    return dt.datetime.fromtimestamp(ts, tz=dt.timezone.utc).year


def year_bucket(year: int) -> Bucket:
    return Bucket(label=f"{year:04d}", start=_utc(year), end=_utc(year + 1))


def month_bucket(year: int, month: int) -> Bucket:
    end = _utc(year + 1) if month == 12 else _utc(year, month + 1)
    return Bucket(label=f"{year:04d}-{month:02d}", start=_utc(year, month), end=end)


def buckets_for_range(interval: str, from_year: int, to_year: int) -> list[Bucket]:
    if interval not in INTERVALS:
        raise ValueError(f"Invalid interval: {interval!r} (expected one of {', '.join(INTERVALS)})")
    if to_year < from_year:
        return []
    out: list[Bucket] = []
    for year in range(from_year, to_year + 1):
        if interval == "year":
            out.append(year_bucket(year))
            continue
        for month in range(1, 13):
            out.append(month_bucket(year, month))
    return out


def bucket_index(buckets: list[Bucket], interval: str, ts: int) -> int | None:
    if not buckets or ts < buckets[0].start_ts or ts >= buckets[-1].end_ts:
        return None
    d = dt.datetime.fromtimestamp(ts, tz=dt.timezone.utc)
    first = buckets[0].start
    if interval == "year":
        return d.year - first.year
    return (d.year - first.year) * 12 + (d.month - first.month)


def parse_year_month(value: dict[str, object] | None) -> tuple[int, int | None] | None:
    """
    Parse a `{"year": 2010, "month": 3}` mapping (month is zero-based and optional).
    """
    if not isinstance(value, dict):
        return None
    try:
        year = int(value["year"])  # type: ignore[arg-type]
    except (KeyError, TypeError, ValueError):
        return None
    month = value.get("month")
    if month is None:
        return year, None
    try:
        m = int(month)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not 0 <= m <= 11:
        return None
    return year, m


def year_month_start_ts(ym: tuple[int, int | None]) -> int:
    year, month = ym
    return int(_utc(year, (month or 0) + 1).timestamp())


def year_month_end_ts(ym: tuple[int, int | None]) -> int:
    year, month = ym
    if month is None or month == 11:
        return int(_utc(year + 1).timestamp())
    return int(_utc(year, month + 2).timestamp())
