from __future__ import annotations

import csv
import os
import subprocess
from pathlib import Path

import pytest

from git_cohorts.cli import main


def _run(cmd: list[str], *, cwd: Path, env: dict[str, str] | None = None) -> str:
    proc = subprocess.run(cmd, cwd=str(cwd), env=env, check=True, capture_output=True, text=True)
    return proc.stdout.strip()


def _commit(repo: Path, *, message: str, date_iso: str, author: tuple[str, str]) -> None:
    env = os.environ.copy()
    env["GIT_AUTHOR_DATE"] = date_iso
    env["GIT_COMMITTER_DATE"] = date_iso
    env["GIT_AUTHOR_NAME"], env["GIT_AUTHOR_EMAIL"] = author
    _run(["git", "add", "."], cwd=repo)
    _run(["git", "commit", "-m", message], cwd=repo, env=env)


def _init_repo(repo: Path) -> Path:
    repo.mkdir(parents=True, exist_ok=True)
    _run(["git", "init"], cwd=repo)
    _run(["git", "config", "user.name", "Test User"], cwd=repo)
    _run(["git", "config", "user.email", "test@example.com"], cwd=repo)
    _run(["git", "config", "commit.gpgsign", "false"], cwd=repo)

    (repo / "a.txt").write_text("a\n", encoding="utf-8")
    _commit(repo, message="first", date_iso="2010-03-01T12:00:00Z", author=("Alice", "alice@x.com"))
    (repo / "a.txt").write_text("a\nb\nc\n", encoding="utf-8")
    _commit(repo, message="second", date_iso="2010-09-01T12:00:00Z", author=("Alice", "alice@x.com"))
    (repo / "b.txt").write_text("b\n", encoding="utf-8")
    _commit(repo, message="third", date_iso="2012-04-01T12:00:00Z", author=("Bob", "bob@y.org"))
    return repo


def _read_csv(path: Path) -> list[dict[str, str]]:
    with path.open(newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def test_ingest_twice_then_plot_csv(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = _init_repo(tmp_path / "proj-core")
    store = tmp_path / "store.db"

    assert main(["ingest", str(store), str(repo)]) == 0
    out = capsys.readouterr().out
    assert "proj-core: 3 commits, 3 new, 0 skipped, 2 authors updated" in out

    assert main(["ingest", str(store), str(repo)]) == 0
    out = capsys.readouterr().out
    assert "proj-core: 3 commits, 0 new, 0 skipped, 0 authors updated" in out

    csv_path = tmp_path / "authors.csv"
    assert main(["plot", str(store), str(csv_path), "--from", "2010", "--to", "2012"]) == 0
    rows = _read_csv(csv_path)
    assert list(rows[0]) == ["cohort", "bucket", "timestamp", "value"]
    values = {(r["cohort"], r["bucket"]): r["value"] for r in rows}
    assert values[("2010", "2010")] == "1"
    assert values[("2010", "2011")] == "0"
    assert values[("2012", "2012")] == "1"
    assert len(rows) == 6

    changes_path = tmp_path / "changes.csv"
    assert main(["plot", str(store), str(changes_path), "-u", "changes", "-c", "repo"]) == 0
    rows = _read_csv(changes_path)
    assert [(r["bucket"], r["value"]) for r in rows] == [("2010", "3"), ("2011", "0"), ("2012", "1")]


def test_plot_to_stdout(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = _init_repo(tmp_path / "proj-core")
    store = tmp_path / "store.db"
    assert main(["ingest", "--jobs", "1", str(store), str(repo)]) == 0
    capsys.readouterr()

    assert main(["plot", str(store), "-c", "domain", "-u", "commits"]) == 0
    out = capsys.readouterr().out
    lines = out.strip().splitlines()
    assert lines[0] == "cohort,bucket,timestamp,value"
    assert any(line.startswith("x.com,2010,") and line.endswith(",2") for line in lines)


def test_plot_png(tmp_path: Path) -> None:
    repo = _init_repo(tmp_path / "proj-core")
    store = tmp_path / "store.db"
    assert main(["ingest", str(store), str(repo)]) == 0

    png = tmp_path / "authors.png"
    assert main(["plot", str(store), str(png), "-i", "month"]) == 0
    assert png.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"


def test_missing_repo_is_reported_and_others_still_ingested(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    repo = _init_repo(tmp_path / "proj-core")
    store = tmp_path / "store.db"

    assert main(["ingest", str(store), str(tmp_path / "missing"), str(repo)]) == 1
    captured = capsys.readouterr()
    assert "missing" in captured.err
    assert "3 new" in captured.out


def test_metadata_only_store_rejects_changes_unit(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = _init_repo(tmp_path / "proj-core")
    store = tmp_path / "store.db"
    assert main(["ingest", "--metadata-only", str(store), str(repo)]) == 0
    assert "metadata-only" in capsys.readouterr().err

    assert main(["plot", str(store), str(tmp_path / "out.csv"), "-u", "changes"]) == 2
    assert "no change data" in capsys.readouterr().err
    assert not (tmp_path / "out.csv").exists()


def test_incremental_ingest_reads_only_new_history(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = _init_repo(tmp_path / "proj-core")
    store = tmp_path / "store.db"
    assert main(["ingest", str(store), str(repo)]) == 0
    capsys.readouterr()

    (repo / "c.txt").write_text("c\n", encoding="utf-8")
    _commit(repo, message="fourth", date_iso="2013-01-01T12:00:00Z", author=("Carol", "carol@z.net"))

    assert main(["ingest", "--incremental", str(store), str(repo)]) == 0
    out = capsys.readouterr().out
    # The newest stored commit is read again alongside the new one.
    assert "proj-core: 2 commits, 1 new, 0 skipped, 1 authors updated" in out

    csv_path = tmp_path / "commits.csv"
    assert main(["plot", str(store), str(csv_path), "-u", "commits", "-c", "repo"]) == 0
    assert [r["value"] for r in _read_csv(csv_path)] == ["2", "0", "1", "1"]


def test_plot_outside_stored_range(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = _init_repo(tmp_path / "proj-core")
    store = tmp_path / "store.db"
    assert main(["ingest", str(store), str(repo)]) == 0
    capsys.readouterr()

    out = tmp_path / "out.csv"
    assert main(["plot", str(store), str(out), "--from", "2000", "--to", "2001"]) == 0
    err = capsys.readouterr().err
    assert "fall in the requested range" in err
    assert not out.exists()


def test_plot_missing_store(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["plot", str(tmp_path / "missing.db")]) == 2
    assert "store not found" in capsys.readouterr().err


def test_bad_meta_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    meta = tmp_path / "meta.json"
    meta.write_text("[1, 2", encoding="utf-8")
    assert main(["--meta", str(meta), "plot", str(tmp_path / "store.db")]) == 2
    assert "metadata" in capsys.readouterr().err


def test_rebuild(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = _init_repo(tmp_path / "proj-core")
    store = tmp_path / "store.db"
    assert main(["ingest", str(store), str(repo)]) == 0
    capsys.readouterr()

    assert main(["rebuild", str(store)]) == 0
    assert "Rebuilt 2 author summaries." in capsys.readouterr().out


def test_help_lists_commands(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["--help"])
    assert exc.value.code == 0
    out = capsys.readouterr().out
    for command in ("ingest", "plot", "rebuild"):
        assert command in out
