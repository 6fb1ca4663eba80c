"""Tests for mlbridge.services.git (push_pull, commits, repository)."""

from pathlib import Path
from unittest.mock import patch

import pytest

from mlbridge.services.git import (
    GitRunnerError,
    PushOutcome,
    SourceRepository,
    commit_paths,
    is_clean,
    push_with_retry,
    try_push,
)
from mlbridge.services.git._run import _run_git
from tests.helpers import requires_git


class TestPushPull:
    """mlbridge.services.git.push_pull: try_push, push_with_retry."""

    def test_try_push_ok(self) -> None:
        """A successful push reports OK."""
        with patch("mlbridge.services.git.push_pull._run_git_unchecked", return_value=(0, "", "")) as mock_run:
            assert try_push("webrevs", Path("/tmp/repo")) is PushOutcome.OK
        mock_run.assert_called_once_with(["push", "origin", "HEAD:refs/heads/webrevs"], cwd=Path("/tmp/repo"), log=None)

    def test_try_push_rejected_is_a_result(self) -> None:
        """A push rejected because the remote moved is REJECTED, not an exception."""
        err = " ! [rejected]        HEAD -> webrevs (fetch first)\nerror: failed to push some refs"
        with patch("mlbridge.services.git.push_pull._run_git_unchecked", return_value=(1, "", err)):
            assert try_push("webrevs", Path("/tmp/repo")) is PushOutcome.REJECTED

    def test_try_push_other_failure_raises(self) -> None:
        """Authentication and other failures raise GitRunnerError."""
        with patch(
            "mlbridge.services.git.push_pull._run_git_unchecked",
            return_value=(128, "", "fatal: Authentication failed"),
        ):
            with pytest.raises(GitRunnerError, match="Authentication failed"):
                try_push("webrevs", Path("/tmp/repo"))

    def test_push_with_retry_rebases_after_rejection(self) -> None:
        """A rejected push is fetched, rebased and pushed again."""
        with (
            patch(
                "mlbridge.services.git.push_pull.try_push",
                side_effect=[PushOutcome.REJECTED, PushOutcome.REJECTED, PushOutcome.OK],
            ) as mock_push,
            patch("mlbridge.services.git.push_pull.fetch_ref", return_value="c" * 40) as mock_fetch,
            patch("mlbridge.services.git.push_pull.rebase_onto") as mock_rebase,
        ):
            push_with_retry("webrevs", "bot", "bot@example.org", Path("/tmp/repo"))
        assert mock_push.call_count == 3
        assert mock_fetch.call_count == 2
        assert mock_rebase.call_count == 2
        assert mock_rebase.call_args[0][0] == "c" * 40

    def test_push_with_retry_gives_up_after_bound(self) -> None:
        """After five rebases the push fails with GitRunnerError."""
        with (
            patch("mlbridge.services.git.push_pull.try_push", return_value=PushOutcome.REJECTED) as mock_push,
            patch("mlbridge.services.git.push_pull.fetch_ref", return_value="c" * 40),
            patch("mlbridge.services.git.push_pull.rebase_onto") as mock_rebase,
        ):
            with pytest.raises(GitRunnerError, match="after 5 retries"):
                push_with_retry("webrevs", "bot", "bot@example.org", Path("/tmp/repo"))
        assert mock_push.call_count == 6
        assert mock_rebase.call_count == 5


class TestCommits:
    """mlbridge.services.git.commits: commit_paths, is_clean."""

    def test_commit_paths_commits_with_bot_identity(self) -> None:
        """Paths are staged and committed as the bot."""
        with (
            patch("mlbridge.services.git.commits._run_git") as mock_run,
            patch("mlbridge.services.git.commits._run_git_unchecked", return_value=(1, "", "")) as mock_diff,
        ):
            assert commit_paths(["a.mbox"], "Add mail", "bot", "bot@example.org", Path("/tmp/repo")) is True
        assert mock_run.call_args_list[0][0][0] == ["add", "-A", "--", "a.mbox"]
        assert mock_diff.call_args[0][0] == ["diff", "--cached", "--quiet", "--", "a.mbox"]
        commit_args = mock_run.call_args_list[1][0][0]
        assert "user.name=bot" in commit_args
        assert "user.email=bot@example.org" in commit_args
        assert commit_args[-5:] == ["commit", "-m", "Add mail", "--", "a.mbox"]

    def test_commit_paths_nothing_staged_returns_false(self) -> None:
        """No staged change for the paths means no commit."""
        with (
            patch("mlbridge.services.git.commits._run_git") as mock_run,
            patch("mlbridge.services.git.commits._run_git_unchecked", return_value=(0, "", "")),
        ):
            assert commit_paths(["a"], "msg", "bot", "b@x", Path("/tmp/repo")) is False
        assert mock_run.call_count == 1

    def test_commit_paths_diff_failure_raises(self) -> None:
        """A failing staged-diff check propagates."""
        with (
            patch("mlbridge.services.git.commits._run_git"),
            patch("mlbridge.services.git.commits._run_git_unchecked", return_value=(128, "", "bad index")),
        ):
            with pytest.raises(GitRunnerError, match="bad index"):
                commit_paths(["a"], "msg", "bot", "b@x", Path("/tmp/repo"))

    def test_commit_paths_commit_error_raises(self) -> None:
        """Commit failures propagate."""
        with (
            patch("mlbridge.services.git.commits._run_git", side_effect=[None, GitRunnerError("index.lock exists")]),
            patch("mlbridge.services.git.commits._run_git_unchecked", return_value=(1, "", "")),
        ):
            with pytest.raises(GitRunnerError, match="index.lock"):
                commit_paths(["a"], "msg", "bot", "b@x", Path("/tmp/repo"))

    @requires_git
    def test_committed_batch_is_skipped_while_others_are_untracked(self, tmp_path: Path) -> None:
        """A committed batch reports nothing to commit even if later batches are untracked."""
        _run_git(["init", "-q"], cwd=tmp_path)
        (tmp_path / "a.html").write_text("a")
        (tmp_path / "b.html").write_text("b")
        assert commit_paths(["a.html"], "first", "bot", "b@x", tmp_path) is True
        assert commit_paths(["a.html"], "again", "bot", "b@x", tmp_path) is False
        assert commit_paths(["b.html"], "second", "bot", "b@x", tmp_path) is True
        log = _run_git(["log", "--format=%s"], cwd=tmp_path).split()
        assert log == ["second", "first"]
        assert is_clean(tmp_path) is True

    @requires_git
    def test_commit_paths_leaves_other_staged_files_alone(self, tmp_path: Path) -> None:
        """Only the given paths go into the commit."""
        _run_git(["init", "-q"], cwd=tmp_path)
        (tmp_path / "a.html").write_text("a")
        (tmp_path / "b.html").write_text("b")
        _run_git(["add", "b.html"], cwd=tmp_path)
        assert commit_paths(["a.html"], "first", "bot", "b@x", tmp_path) is True
        assert _run_git(["ls-tree", "--name-only", "HEAD"], cwd=tmp_path).split() == ["a.html"]

    def test_is_clean(self) -> None:
        """An empty porcelain status means clean."""
        with patch("mlbridge.services.git.commits._run_git", return_value=""):
            assert is_clean(Path("/tmp/repo")) is True
        with patch("mlbridge.services.git.commits._run_git", return_value="?? new.html\n"):
            assert is_clean(Path("/tmp/repo")) is False


class TestSourceRepository:
    """mlbridge.services.git.repository: queries on the source clone."""

    def test_commits_parses_log_records(self) -> None:
        """Commits come back oldest first with parents and summary."""
        out = (
            "aaa\x1fppp\x1fDuke\x1fduke@example.org\x1f2024-03-01T12:00:00+00:00\x1fFirst change\n\nDetails\x1e\n"
            "bbb\x1faaa\x1fDuke\x1fduke@example.org\x1f2024-03-01T13:00:00+00:00\x1fSecond change\x1e\n"
        )
        repo = SourceRepository(Path("/tmp/src"))
        with patch("mlbridge.services.git.repository._run_git", return_value=out) as mock_run:
            commits = repo.commits("base", "head")
        assert mock_run.call_args[0][0][-1] == "base..head"
        assert [c.hash for c in commits] == ["aaa", "bbb"]
        assert commits[0].summary == "First change"
        assert commits[1].parents == ["aaa"]
        assert not commits[1].is_merge

    def test_is_ancestor_uses_exit_code(self) -> None:
        """is_ancestor is true only for exit code 0."""
        repo = SourceRepository(Path("/tmp/src"))
        with patch("mlbridge.services.git.repository._run_git_unchecked", return_value=(0, "", "")):
            assert repo.is_ancestor("a", "b") is True
        with patch("mlbridge.services.git.repository._run_git_unchecked", return_value=(1, "", "")):
            assert repo.is_ancestor("a", "b") is False

    def test_merge_tree_reports_conflicts(self) -> None:
        """Exit code 1 is a conflicted merge that still yields a tree."""
        repo = SourceRepository(Path("/tmp/src"))
        with patch("mlbridge.services.git.repository._run_git_unchecked", return_value=(1, "t" * 40 + "\n", "")):
            assert repo.merge_tree("a", "b") == ("t" * 40, False)
        with patch("mlbridge.services.git.repository._run_git_unchecked", return_value=(0, "u" * 40 + "\n", "")):
            assert repo.merge_tree("a", "b") == ("u" * 40, True)
        with patch("mlbridge.services.git.repository._run_git_unchecked", return_value=(128, "", "bad object")):
            with pytest.raises(GitRunnerError, match="bad object"):
                repo.merge_tree("a", "b")

    def test_file_lines_missing_file_is_empty(self) -> None:
        """A path that does not exist at the ref has no lines."""
        repo = SourceRepository(Path("/tmp/src"))
        with patch("mlbridge.services.git.repository._run_git_unchecked", return_value=(128, "", "fatal")):
            assert repo.file_lines("abc", "missing.txt") == []
        with patch("mlbridge.services.git.repository._run_git_unchecked", return_value=(0, "one\ntwo\n", "")):
            assert repo.file_lines("abc", "f.txt") == ["one", "two"]
