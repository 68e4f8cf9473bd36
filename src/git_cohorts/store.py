from __future__ import annotations

import contextlib
import datetime as dt
import hashlib
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Iterator

from . import authors
from .errors import RecordError, StoreError
from .identity import IdentityStrategy, normalize_identity
from .models import AuthorSummary, CommitRecord, IngestReport, RawCommit
from .periods import year_of

MIN_PLAUSIBLE_YEAR = 1980

RAW_COLUMNS = (
    "commit_id",
    "repo_id",
    "author_name",
    "author_email",
    "author_domain",
    "author_time",
    "author_year",
    "committer_time",
    "n_changes",
)

_PRAGMAS = (
    ("journal_mode", "WAL"),
    ("synchronous", "NORMAL"),
    ("temp_store", "MEMORY"),
    ("cache_size", "16384"),
)


def commit_key(record: CommitRecord) -> str:
    if record.commit_id:
        return record.commit_id
    # No hash from the source: identify the commit by author and timestamps.
    ident = "\0".join(
        [
            record.author_name,
            record.author_email,
            str(record.author_time),
            str(record.committer_time),
        ]
    )
    return hashlib.sha1(ident.encode("utf-8")).hexdigest()


def to_raw_commit(
    repo_id: str,
    record: CommitRecord,
    *,
    identity: IdentityStrategy = normalize_identity,
    max_year: int | None = None,
) -> RawCommit:
    if not isinstance(record.author_name, str) or not record.author_name.strip():
        raise RecordError(f"{repo_id}: commit {record.commit_id or '?'} has no author name")
    if not isinstance(record.author_email, str):
        raise RecordError(f"{repo_id}: commit {record.commit_id or '?'} has no author email")
    if record.author_time is None:
        raise RecordError(f"{repo_id}: commit {record.commit_id or '?'} has no author timestamp")
    if record.lines_changed is not None and record.lines_changed < 0:
        raise RecordError(f"{repo_id}: commit {record.commit_id or '?'} has a negative change count")

    year = year_of(record.author_time)
    if max_year is None:
        max_year = dt.date.today().year
    if year < MIN_PLAUSIBLE_YEAR or year > max_year:
        raise RecordError(f"{repo_id}: commit {record.commit_id or '?'} has an implausible author year {year}")

    author_key, domain = identity(record.author_name, record.author_email)
    return RawCommit(
        commit_id=commit_key(record),
        repo_id=repo_id,
        author_name=author_key,
        author_email=record.author_email,
        author_domain=domain,
        author_time=int(record.author_time),
        author_year=year,
        committer_time=None if record.committer_time is None else int(record.committer_time),
        n_changes=record.lines_changed,
    )


class CommitStore:
    """
    SQLite store holding raw_commits (source of truth) and authors (derived).

    All writes go through one lock, and each ingest() call is a single
    transaction covering both the inserted commits and the refreshed author
    rows.
    """

    def __init__(self, conn: sqlite3.Connection, path: Path) -> None:
        self.conn = conn
        self.path = path
        self._write_lock = threading.Lock()

    @classmethod
    def open(cls, path: Path, *, must_exist: bool = False) -> "CommitStore":
        path = Path(path)
        if must_exist and not path.is_file():
            raise StoreError(f"store not found: {path}")
        if not path.parent.exists():
            raise StoreError(f"cannot create store {path}: directory {path.parent} does not exist")
        try:
            conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open store {path}: {e}") from e
        try:
            for name, value in _PRAGMAS:
                conn.execute(f"PRAGMA {name}={value}")
            _create_schema(conn)
        except sqlite3.Error as e:
            conn.close()
            raise StoreError(f"cannot open store {path}: {e}") from e
        return cls(conn, path)

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "CommitStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._write_lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"cannot write to store {self.path}: {e}") from e
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            try:
                self.conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StoreError(f"cannot commit to store {self.path}: {e}") from e

    def ingest(
        self,
        repo_id: str,
        records: Iterable[CommitRecord],
        *,
        identity: IdentityStrategy = normalize_identity,
    ) -> IngestReport:
        report = IngestReport(repo_id=repo_id)
        touched: set[str] = set()
        max_year = dt.date.today().year
        insert_sql = (
            f"INSERT INTO raw_commits ({', '.join(RAW_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in RAW_COLUMNS)}) "
            "ON CONFLICT (repo_id, commit_id) DO NOTHING"
        )

        with self._transaction() as conn:
            try:
                for record in records:
                    report.seen += 1
                    try:
                        row = to_raw_commit(repo_id, record, identity=identity, max_year=max_year)
                    except RecordError as e:
                        report.errors.append(str(e))
                        continue
                    try:
                        cur = conn.execute(
                            insert_sql,
                            (
                                row.commit_id,
                                row.repo_id,
                                row.author_name,
                                row.author_email,
                                row.author_domain,
                                row.author_time,
                                row.author_year,
                                row.committer_time,
                                row.n_changes,
                            ),
                        )
                    except sqlite3.IntegrityError as e:
                        report.errors.append(f"{repo_id}: commit {row.commit_id} rejected by the store: {e}")
                        continue
                    if cur.rowcount == 1:
                        report.inserted += 1
                        touched.add(row.author_name)

                for author_key in sorted(touched):
                    authors.recompute(conn, author_key)
            except sqlite3.Error as e:
                raise StoreError(f"failed writing {repo_id} to {self.path}: {e}") from e

        report.authors_touched = len(touched)
        return report

    def recompute(self, author_key: str) -> None:
        with self._transaction() as conn:
            authors.recompute(conn, author_key)

    def rebuild_all(self) -> int:
        with self._transaction() as conn:
            return authors.rebuild_all(conn)

    def author_summaries(self) -> list[AuthorSummary]:
        return authors.author_summaries(self.conn)

    def author_summary(self, author_key: str) -> AuthorSummary | None:
        return authors.author_summary(self.conn, author_key)

    def raw_commits(self, repo_id: str | None = None) -> list[RawCommit]:
        sql = f"SELECT {', '.join(RAW_COLUMNS)} FROM raw_commits"
        params: tuple[str, ...] = ()
        if repo_id is not None:
            sql += " WHERE repo_id = ?"
            params = (repo_id,)
        sql += " ORDER BY repo_id, author_time, commit_id"
        return [RawCommit(*r) for r in self.conn.execute(sql, params).fetchall()]

    def count_raw_commits(self, author_key: str | None = None) -> int:
        if author_key is None:
            row = self.conn.execute("SELECT COUNT(*) FROM raw_commits").fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) FROM raw_commits WHERE author_name = ?", (author_key,)).fetchone()
        return int(row[0])

    def year_bounds(self) -> tuple[int, int] | None:
        row = self.conn.execute("SELECT MIN(author_year), MAX(author_year) FROM raw_commits").fetchone()
        if row is None or row[0] is None:
            return None
        return int(row[0]), int(row[1])

    def last_committer_times(self) -> dict[str, int]:
        cur = self.conn.execute(
            "SELECT repo_id, MAX(committer_time) FROM raw_commits WHERE committer_time IS NOT NULL GROUP BY repo_id"
        )
        return {repo_id: int(ts) for repo_id, ts in cur.fetchall()}

    def has_change_data(self) -> bool:
        row = self.conn.execute("SELECT 1 FROM raw_commits WHERE n_changes IS NOT NULL LIMIT 1").fetchone()
        return row is not None

    def repos_without_change_data(self) -> list[str]:
        cur = self.conn.execute(
            "SELECT repo_id FROM raw_commits GROUP BY repo_id HAVING COUNT(n_changes) = 0 ORDER BY repo_id"
        )
        return [r[0] for r in cur.fetchall()]


def _create_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS raw_commits (
            commit_id TEXT NOT NULL,
            repo_id TEXT NOT NULL,
            author_name TEXT NOT NULL,
            author_email TEXT NOT NULL,
            author_domain TEXT NOT NULL,
            author_time INTEGER NOT NULL,
            author_year INTEGER NOT NULL,
            committer_time INTEGER,
            n_changes INTEGER,
            PRIMARY KEY (repo_id, commit_id)
        )
        """
    )
    for col in ("repo_id", "author_name", "author_domain", "author_time", "author_year"):
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_raw_commits_{col} ON raw_commits ({col})")
    authors.create_authors_table(conn)
