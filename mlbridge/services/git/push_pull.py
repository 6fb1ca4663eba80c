"""Fetch from and push to a shared remote ref, with bounded rebase-retry."""

import logging
from enum import Enum
from pathlib import Path

from mlbridge.services.git._run import GitRunnerError, _run_git, _run_git_unchecked

MAX_PUSH_RETRIES = 5

_REJECTION_MARKERS = (
    "rejected",
    "non-fast-forward",
    "fetch first",
    "failed to push some refs",
    "cannot lock ref",
)


class PushOutcome(str, Enum):
    """Result of a single push attempt."""

    OK = "ok"
    REJECTED = "rejected"


def try_push(
    ref: str,
    repo_dir: Path,
    remote: str = "origin",
    log: logging.Logger | None = None,
) -> PushOutcome:
    """Push HEAD to ``remote`` ``ref`` once.

    A rejection because the remote moved is reported as REJECTED, any other
    failure raises GitRunnerError.
    """
    code, out, err = _run_git_unchecked(["push", remote, f"HEAD:refs/heads/{ref}"], cwd=Path(repo_dir), log=log)
    if code == 0:
        return PushOutcome.OK
    message = (err or out or "").strip()
    if any(marker in message.lower() for marker in _REJECTION_MARKERS):
        if log:
            log.info("Push to %s rejected, remote has moved", ref)
        return PushOutcome.REJECTED
    raise GitRunnerError(f"git push {remote} {ref}: {message}")


def fetch_ref(
    ref: str,
    repo_dir: Path,
    remote: str = "origin",
    log: logging.Logger | None = None,
) -> str:
    """Fetch ``ref`` from ``remote`` and return the fetched commit hash."""
    cwd = Path(repo_dir)
    _run_git(["fetch", remote, ref], cwd=cwd, log=log)
    return _run_git(["rev-parse", "FETCH_HEAD"], cwd=cwd, log=log).strip()


def rebase_onto(
    upstream: str,
    bot_name: str,
    bot_email: str,
    repo_dir: Path,
    log: logging.Logger | None = None,
) -> None:
    """Rebase the local commits onto ``upstream``; abort and raise on conflict."""
    cwd = Path(repo_dir)
    try:
        _run_git(
            ["-c", f"user.name={bot_name}", "-c", f"user.email={bot_email}", "rebase", upstream],
            cwd=cwd,
            log=log,
        )
    except GitRunnerError:
        _run_git_unchecked(["rebase", "--abort"], cwd=cwd, log=log)
        raise


def push_with_retry(
    ref: str,
    bot_name: str,
    bot_email: str,
    repo_dir: Path,
    remote: str = "origin",
    retries: int = MAX_PUSH_RETRIES,
    log: logging.Logger | None = None,
) -> None:
    """Push HEAD to ``ref``; on rejection fetch, rebase and try again.

    Gives up with GitRunnerError after ``retries`` rebases.
    """
    attempt = 0
    while True:
        if try_push(ref, repo_dir, remote=remote, log=log) is PushOutcome.OK:
            if log:
                log.info("Pushed to %s", ref)
            return
        attempt += 1
        if attempt > retries:
            raise GitRunnerError(f"push to {ref} still rejected after {retries} retries")
        if log:
            log.warning("Push to %s rejected, rebasing and retrying (%s/%s)", ref, attempt, retries)
        updated = fetch_ref(ref, repo_dir, remote=remote, log=log)
        rebase_onto(updated, bot_name, bot_email, repo_dir, log=log)


def materialize(
    url: str,
    ref: str,
    repo_dir: Path,
    log: logging.Logger | None = None,
) -> Path:
    """Create or refresh a local clone of ``url`` checked out at remote ``ref``.

    Local changes and unpushed commits are discarded, so every pass starts
    from what the remote actually has. A ref that does not exist yet leaves
    an empty branch to commit onto.
    """
    path = Path(repo_dir)
    if not (path / ".git").is_dir():
        path.mkdir(parents=True, exist_ok=True)
        _run_git(["init", "--quiet"], cwd=path, log=log)
        _run_git(["remote", "add", "origin", url], cwd=path, log=log)
    else:
        _run_git(["remote", "set-url", "origin", url], cwd=path, log=log)
    code, _, _ = _run_git_unchecked(["fetch", "origin", f"+refs/heads/{ref}:refs/remotes/origin/{ref}"], cwd=path, log=log)
    if code == 0:
        _run_git(["checkout", "--quiet", "--force", "-B", "mlbridge", f"refs/remotes/origin/{ref}"], cwd=path, log=log)
    else:
        if log:
            log.info("Ref %s not found on %s, starting it empty", ref, url)
        _run_git_unchecked(["update-ref", "-d", "refs/heads/mlbridge"], cwd=path, log=log)
        _run_git(["symbolic-ref", "HEAD", "refs/heads/mlbridge"], cwd=path, log=log)
        _run_git_unchecked(["rm", "-rf", "--quiet", "--cached", "."], cwd=path, log=log)
    _run_git(["clean", "-fdxq"], cwd=path, log=log)
    return path
