"""Internal helpers: run git commands, GitRunnerError."""

import logging
import subprocess
from pathlib import Path

GIT_TIMEOUT = 600


class GitRunnerError(Exception):
    """Raised when a git command fails."""

    pass


def _run_git_unchecked(
    args: list[str],
    cwd: Path,
    log: logging.Logger | None = None,
) -> tuple[int, str, str]:
    """Run git command and return (exit code, stdout, stderr) without raising on failure."""
    cmd = ["git"] + args
    try:
        proc = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, timeout=GIT_TIMEOUT)
    except FileNotFoundError as e:
        raise GitRunnerError("git not found") from e
    except subprocess.TimeoutExpired as e:
        raise GitRunnerError(f"git {' '.join(args)}: timed out") from e
    if log and proc.returncode != 0:
        log.debug("Git %s exited with %s", args, proc.returncode)
    return proc.returncode, proc.stdout, proc.stderr


def _run_git(args: list[str], cwd: Path, log: logging.Logger | None = None) -> str:
    """Run git command; return stdout, raise GitRunnerError on non-zero exit."""
    code, out, err = _run_git_unchecked(args, cwd, log=log)
    if code != 0:
        msg = (err or out or "").strip()
        if log:
            log.warning("Git %s failed: %s", args, msg)
        raise GitRunnerError(f"git {' '.join(args)}: {msg}")
    return out
