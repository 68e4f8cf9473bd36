from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from typing import Iterator, Optional

from .errors import SourceError
from .models import CommitRecord

COMMIT_MARKER = "@@@"
LOG_FORMAT = COMMIT_MARKER + "%H\t%aN\t%aE\t%at\t%ct"


def run_git(args: list[str], cwd: Path, timeout_s: int = 300) -> tuple[int, str, str]:
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        timeout=timeout_s,
    )
    return proc.returncode, proc.stdout, proc.stderr


def get_repo_toplevel(candidate: Path) -> Optional[Path]:
    try:
        code, out, _ = run_git(["rev-parse", "--show-toplevel"], cwd=candidate)
    except OSError:
        return None
    if code != 0:
        return None
    try:
        return Path(out.strip()).resolve()
    except OSError:
        return None


def repo_id_for(repo: Path) -> str:
    return repo.resolve().name


def has_promisor(repo: Path) -> bool:
    """
    A promisor on origin means a blob-filtered (partial) clone. Asking git for
    per-file stats there would fetch every blob from the remote, so such
    repositories are read as metadata-only.
    """
    code, out, _ = run_git(["config", "--get", "remote.origin.promisor"], cwd=repo)
    return code == 0 and out.strip().lower() == "true"


def open_repo(path: Path) -> Path:
    if not path.exists():
        raise SourceError(f"{path}: no such directory")
    if not path.is_dir():
        raise SourceError(f"{path}: not a directory")
    top = get_repo_toplevel(path)
    if top is None:
        raise SourceError(f"{path}: not a git repository")
    return top


def _parse_int(s: str) -> int | None:
    try:
        return int(s.strip())
    except ValueError:
        return None


def _parse_header(line: str) -> dict[str, object]:
    parts = line[len(COMMIT_MARKER) :].split("\t", 4)
    while len(parts) < 5:
        parts.append("")
    sha, name, email, author_ts, committer_ts = parts
    return {
        "commit_id": sha.strip(),
        "author_name": name,
        "author_email": email.strip().lower(),
        "author_time": _parse_int(author_ts) if author_ts.strip() else None,
        "committer_time": _parse_int(committer_ts) if committer_ts.strip() else None,
    }


def parse_log_lines(lines: Iterator[str], *, with_changes: bool) -> Iterator[CommitRecord]:
    """
    Turn `git log --pretty=format:<LOG_FORMAT> [--numstat]` output into records.

    Without `with_changes` every record carries `lines_changed=None`; with it, a
    commit touching no files reports 0.
    """
    current: dict[str, object] | None = None
    changed = 0

    def finish() -> CommitRecord:
        assert current is not None
        return CommitRecord(
            author_name=str(current["author_name"]),
            author_email=str(current["author_email"]),
            author_time=current["author_time"],  # type: ignore[arg-type]
            committer_time=current["committer_time"],  # type: ignore[arg-type]
            lines_changed=changed if with_changes else None,
            commit_id=str(current["commit_id"]),
        )

    for raw_line in lines:
        line = raw_line.rstrip("\n")
        if not line:
            continue
        if line.startswith(COMMIT_MARKER):
            if current is not None:
                yield finish()
            current = _parse_header(line)
            changed = 0
            continue
        if current is None or not with_changes:
            continue

        parts = line.split("\t", 2)
        if len(parts) < 3:
            continue
        added_s, deleted_s = parts[0], parts[1]
        if added_s == "-" or deleted_s == "-":
            # binary file
            continue
        added = _parse_int(added_s)
        deleted = _parse_int(deleted_s)
        if added is None or deleted is None:
            continue
        changed += added + deleted

    if current is not None:
        yield finish()


def has_head(repo: Path) -> bool:
    try:
        code, _, _ = run_git(["rev-parse", "--verify", "-q", "HEAD"], cwd=repo)
    except OSError as e:
        raise SourceError(f"{repo}: failed to run git: {e}") from e
    return code == 0


def read_commit_records(
    repo: Path,
    *,
    with_changes: bool = True,
    since: int | None = None,
) -> Iterator[CommitRecord]:
    """
    Stream every commit reachable from HEAD and from local and remote-tracking
    branches. With `since` (unix seconds), only commits whose committer time is
    at or after it are read.

    Raises SourceError when git cannot be started or exits non-zero; records
    yielded before the failure should be treated as incomplete.
    """
    cmd = ["git", "log", "--date-order", f"--pretty=format:{LOG_FORMAT}"]
    if with_changes:
        cmd.append("--numstat")
    if since is not None:
        cmd.append(f"--since=@{int(since)}")
    cmd += ["--branches", "--remotes"]
    # An unborn HEAD (empty repository) is not a valid revision.
    if has_head(repo):
        cmd.append("HEAD")

    try:
        proc = subprocess.Popen(
            cmd,
            cwd=str(repo),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise SourceError(f"{repo}: failed to start git log: {e}") from e

    stderr_chunks: list[str] = []
    stderr_chars = 0
    max_stderr_chars = 50_000

    def drain_stderr() -> None:
        nonlocal stderr_chars
        if proc.stderr is None:
            return
        while True:
            chunk = proc.stderr.read(8192)
            if not chunk:
                return
            if stderr_chars >= max_stderr_chars:
                continue
            take = chunk[: max_stderr_chars - stderr_chars]
            stderr_chunks.append(take)
            stderr_chars += len(take)

    stderr_thread: threading.Thread | None = None
    if proc.stderr is not None:
        stderr_thread = threading.Thread(target=drain_stderr, daemon=True)
        stderr_thread.start()

    finished = False
    try:
        assert proc.stdout is not None
        yield from parse_log_lines(iter(proc.stdout), with_changes=with_changes)
        finished = True
    finally:
        if not finished and proc.poll() is None:
            proc.kill()
        code = proc.wait()
        if stderr_thread is not None:
            stderr_thread.join()

    stderr = "".join(stderr_chunks)
    if code != 0:
        raise SourceError(f"{repo}: git log exited {code}: {stderr.strip()[:500]}")
