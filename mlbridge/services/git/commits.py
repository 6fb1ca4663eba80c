"""Stage and commit changes with bot identity."""

import logging
from pathlib import Path
from typing import Sequence

from mlbridge.services.git._run import GitRunnerError, _run_git, _run_git_unchecked


def commit_paths(
    paths: Sequence[Path | str],
    commit_message: str,
    bot_name: str,
    bot_email: str,
    repo_dir: Path,
    log: logging.Logger | None = None,
) -> bool:
    """Stage the given paths and commit them with bot identity.

    Only the given paths are committed. Whether there is anything to commit
    is decided by the staged diff of those paths, not by the state of the
    rest of the working tree: if they are already committed as they are,
    returns False without committing, even when other files are untracked.
    Raises GitRunnerError on any other failure.

    Args:
        paths: Files to stage, relative to repo_dir or absolute.
        commit_message: Commit message.
        bot_name: Git user.name for the commit.
        bot_email: Git user.email for the commit.
        repo_dir: Repository directory.
        log: Optional logger.

    Returns:
        True if a commit was made, False if nothing to commit.
    """
    cwd = Path(repo_dir)
    pathspec = [str(p) for p in paths]
    _run_git(["add", "-A", "--"] + pathspec, cwd=cwd, log=log)
    code, out, err = _run_git_unchecked(["diff", "--cached", "--quiet", "--"] + pathspec, cwd=cwd, log=log)
    if code == 0:
        if log:
            log.info("Nothing to commit for %s paths", len(pathspec))
        return False
    if code != 1:
        raise GitRunnerError(f"git diff --cached --quiet: {(err or out).strip()}")
    _run_git(
        [
            "-c",
            f"user.name={bot_name}",
            "-c",
            f"user.email={bot_email}",
            "commit",
            "-m",
            commit_message,
            "--",
        ]
        + pathspec,
        cwd=cwd,
        log=log,
    )
    return True


def is_clean(repo_dir: Path, log: logging.Logger | None = None) -> bool:
    """Return True when the working tree has no staged, unstaged or untracked changes."""
    return not _run_git(["status", "--porcelain"], cwd=Path(repo_dir), log=log).strip()
