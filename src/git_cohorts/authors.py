from __future__ import annotations

import sqlite3

from .models import AuthorSummary

AUTHOR_COLUMNS = (
    "author_name",
    "first_time",
    "first_year",
    "last_time",
    "last_year",
    "active_time",
    "n_commits",
    "n_changes",
)

# Shared by recompute() and rebuild_all(). n_changes is NULL as soon as any commit has an
# unknown change count.
_SUMMARY_SELECT = """
    SELECT author_name,
           MIN(author_time) AS first_time,
           MIN(author_year) AS first_year,
           MAX(author_time) AS last_time,
           MAX(author_year) AS last_year,
           MAX(author_time) - MIN(author_time) AS active_time,
           COUNT(*) AS n_commits,
           CASE WHEN COUNT(n_changes) = COUNT(*) THEN SUM(n_changes) END AS n_changes
    FROM raw_commits
"""


def create_authors_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS authors (
            author_name TEXT PRIMARY KEY,
            first_time INTEGER NOT NULL,
            first_year INTEGER NOT NULL,
            last_time INTEGER NOT NULL,
            last_year INTEGER NOT NULL,
            active_time INTEGER NOT NULL,
            n_commits INTEGER NOT NULL,
            n_changes INTEGER
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_authors_first_time ON authors (first_time)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_authors_first_year ON authors (first_year)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_authors_active_time ON authors (active_time)")


def recompute(conn: sqlite3.Connection, author_key: str) -> None:
    """
    Replace the summary row for one author from raw_commits.

    Runs inside the caller's transaction; the row disappears when the author
    has no commits left.
    """
    conn.execute("DELETE FROM authors WHERE author_name = ?", (author_key,))
    conn.execute(
        f"INSERT INTO authors ({', '.join(AUTHOR_COLUMNS)}) "
        + _SUMMARY_SELECT
        + " WHERE author_name = ? GROUP BY author_name",
        (author_key,),
    )


def rebuild_all(conn: sqlite3.Connection) -> int:
    conn.execute("DELETE FROM authors")
    conn.execute(f"INSERT INTO authors ({', '.join(AUTHOR_COLUMNS)}) " + _SUMMARY_SELECT + " GROUP BY author_name")
    row = conn.execute("SELECT COUNT(*) FROM authors").fetchone()
    return int(row[0])


def _row_to_summary(row: tuple) -> AuthorSummary:
    return AuthorSummary(
        author_name=row[0],
        first_time=int(row[1]),
        first_year=int(row[2]),
        last_time=int(row[3]),
        last_year=int(row[4]),
        active_time=int(row[5]),
        n_commits=int(row[6]),
        n_changes=None if row[7] is None else int(row[7]),
    )


def author_summaries(conn: sqlite3.Connection) -> list[AuthorSummary]:
    cur = conn.execute(f"SELECT {', '.join(AUTHOR_COLUMNS)} FROM authors ORDER BY author_name")
    return [_row_to_summary(r) for r in cur.fetchall()]


def author_summary(conn: sqlite3.Connection, author_key: str) -> AuthorSummary | None:
    row = conn.execute(
        f"SELECT {', '.join(AUTHOR_COLUMNS)} FROM authors WHERE author_name = ?",
        (author_key,),
    ).fetchone()
    return _row_to_summary(row) if row is not None else None
