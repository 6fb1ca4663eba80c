"""Read-only queries against the local clone of the source repository."""

import logging
from datetime import datetime
from pathlib import Path
from typing import List

from mlbridge.models import Commit
from mlbridge.services.git._run import GitRunnerError, _run_git, _run_git_unchecked

LOG = logging.getLogger("mlbridge.services.git.repository")

# Unit and record separators keep multi-line commit messages intact
_LOG_FORMAT = "%H%x1f%P%x1f%an%x1f%ae%x1f%cI%x1f%B%x1e"


class SourceRepository:
    """Local clone used for merge bases, commit lists, diffs and file contents."""

    def __init__(self, repo_dir: Path, log: logging.Logger | None = None) -> None:
        self.repo_dir = Path(repo_dir)
        self._log = log or LOG

    def ensure(self) -> None:
        """Initialise the clone directory if it does not exist yet."""
        if not (self.repo_dir / ".git").is_dir():
            self.repo_dir.mkdir(parents=True, exist_ok=True)
            _run_git(["init", "--quiet"], cwd=self.repo_dir, log=self._log)

    def fetch(self, url: str, ref: str) -> str:
        """Fetch ``ref`` from ``url`` and return its commit hash."""
        self.ensure()
        _run_git(["fetch", "--quiet", url, ref], cwd=self.repo_dir, log=self._log)
        return _run_git(["rev-parse", "FETCH_HEAD"], cwd=self.repo_dir, log=self._log).strip()

    def merge_base(self, a: str, b: str) -> str:
        return _run_git(["merge-base", a, b], cwd=self.repo_dir, log=self._log).strip()

    def has_commit(self, ref: str) -> bool:
        code, _, _ = _run_git_unchecked(["cat-file", "-e", f"{ref}^{{commit}}"], cwd=self.repo_dir, log=self._log)
        return code == 0

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """True if ``ancestor`` is reachable from ``descendant``.

        An ancestor that is no longer present locally counts as not reachable.
        """
        code, _, _ = _run_git_unchecked(
            ["merge-base", "--is-ancestor", ancestor, descendant],
            cwd=self.repo_dir,
            log=self._log,
        )
        return code == 0

    def commits(self, base: str, head: str) -> List[Commit]:
        """Commits reachable from ``head`` but not from ``base``, oldest first."""
        out = _run_git(
            ["log", "--reverse", f"--format={_LOG_FORMAT}", f"{base}..{head}"],
            cwd=self.repo_dir,
            log=self._log,
        )
        commits = []
        for record in out.split("\x1e"):
            record = record.strip("\n")
            if not record:
                continue
            sha, parents, name, email, date, message = record.split("\x1f", 5)
            commits.append(
                Commit(
                    hash=sha,
                    parents=parents.split(),
                    message=message.strip(),
                    author_name=name,
                    author_email=email,
                    committed_at=datetime.fromisoformat(date) if date else None,
                )
            )
        return commits

    def commit(self, ref: str) -> Commit:
        """Single commit by hash or ref."""
        out = _run_git(["log", "-1", f"--format={_LOG_FORMAT}", ref], cwd=self.repo_dir, log=self._log)
        sha, parents, name, email, date, message = out.strip().strip("\x1e").split("\x1f", 5)
        return Commit(
            hash=sha,
            parents=parents.split(),
            message=message.strip(),
            author_name=name,
            author_email=email,
            committed_at=datetime.fromisoformat(date) if date else None,
        )

    def diff(self, base: str, head: str) -> str:
        """Unified diff between two commits or trees."""
        return _run_git(
            ["diff", "--no-color", "--no-ext-diff", "--find-renames", "--full-index", base, head],
            cwd=self.repo_dir,
            log=self._log,
        )

    def tree(self, ref: str) -> str:
        return _run_git(["rev-parse", f"{ref}^{{tree}}"], cwd=self.repo_dir, log=self._log).strip()

    def merge_tree(self, ours: str, theirs: str) -> tuple[str, bool]:
        """Three-way merge of two commits without touching the worktree.

        Returns the resulting tree and whether it merged cleanly. A conflicted
        merge still yields a tree, with conflict markers in the affected files.
        """
        code, out, err = _run_git_unchecked(
            ["merge-tree", "--write-tree", "--no-messages", ours, theirs],
            cwd=self.repo_dir,
            log=self._log,
        )
        if code not in (0, 1):
            raise GitRunnerError(f"git merge-tree {ours} {theirs}: {(err or out).strip()}")
        return out.split("\n", 1)[0].strip(), code == 0

    def file_lines(self, ref: str, path: str) -> List[str]:
        """Lines of ``path`` at ``ref``; empty when the file does not exist there."""
        code, out, _ = _run_git_unchecked(["show", f"{ref}:{path}"], cwd=self.repo_dir, log=self._log)
        if code != 0:
            return []
        return out.splitlines()
