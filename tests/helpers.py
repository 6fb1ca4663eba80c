"""Model factories and an in-memory review host shared by the tests."""

import shutil
from datetime import UTC, datetime, timedelta
from typing import Dict, List

import pytest

from mlbridge.adapters.base import ReviewHostAdapter
from mlbridge.models import Comment, PRState, PullRequest, Review, ReviewComment, User, Verdict

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def at(minutes: int) -> datetime:
    """Timestamp ``minutes`` after T0."""
    return T0 + timedelta(minutes=minutes)


def make_user(username: str = "duke", full_name: str = "") -> User:
    return User(username=username, full_name=full_name or username.capitalize())


def make_pr(**kwargs) -> PullRequest:
    data = dict(
        id="1",
        title="1234: Fix the frobnicator",
        body="This fixes the frobnicator.",
        author=make_user("duke", "Duke Duck"),
        source_branch="fix",
        target_branch="master",
        head_hash="b" * 40,
        labels=["rfr"],
        state=PRState.OPEN,
        repository="openjdk/playground",
        repository_url="https://github.com/openjdk/playground.git",
        web_url="https://github.com/openjdk/playground/pull/1",
        fetch_ref="pull/1/head",
        source_repository="duke/playground",
        created_at=T0,
        updated_at=T0,
    )
    data.update(kwargs)
    return PullRequest(**data)


def make_comment(cid: str, body: str, user: str = "reviewer", minutes: int = 10) -> Comment:
    return Comment(id=cid, body=body, author=make_user(user), created_at=at(minutes))


def make_review_comment(
    cid: str,
    body: str,
    user: str = "reviewer",
    minutes: int = 10,
    path: str = "src/Frob.java",
    line: int | None = 3,
    parent_id: str | None = None,
) -> ReviewComment:
    return ReviewComment(
        id=cid,
        body=body,
        author=make_user(user),
        path=path,
        line=line,
        hash="b" * 40,
        parent_id=parent_id,
        created_at=at(minutes),
    )


def make_review(
    rid: str, verdict: Verdict = Verdict.APPROVED, body: str = "", user: str = "reviewer", minutes: int = 20
) -> Review:
    return Review(id=rid, verdict=verdict, body=body, author=make_user(user), created_at=at(minutes))


class FakeHost(ReviewHostAdapter):
    """In-memory review host holding one repository's pull requests."""

    def __init__(self) -> None:
        self.prs: Dict[str, PullRequest] = {}
        self.comments: Dict[str, List[Comment]] = {}
        self.review_comments: Dict[str, List[ReviewComment]] = {}
        self.reviews: Dict[str, List[Review]] = {}
        self.posted: Dict[str, Comment] = {}
        self.posted_on: Dict[str, str] = {}
        self.bot_username = "mlbridge"
        self._next_id = 1000

    def add_pr(self, pr: PullRequest) -> PullRequest:
        self.prs[pr.id] = pr
        return pr

    def list_pull_requests(self, repo: str) -> List[PullRequest]:
        return list(self.prs.values())

    def get_comments(self, repo: str, pr_id: str) -> List[Comment]:
        own = [c for cid, c in self.posted.items() if self.posted_on[cid] == pr_id]
        return list(self.comments.get(pr_id, [])) + own

    def get_review_comments(self, repo: str, pr_id: str) -> List[ReviewComment]:
        return list(self.review_comments.get(pr_id, []))

    def get_reviews(self, repo: str, pr_id: str) -> List[Review]:
        return list(self.reviews.get(pr_id, []))

    def create_comment(self, repo: str, pr_id: str, body: str) -> Comment:
        self._next_id += 1
        comment = Comment(id=str(self._next_id), body=body, author=make_user(self.bot_username), created_at=T0)
        self.posted_on[comment.id] = pr_id
        self.posted[comment.id] = comment
        return comment

    def update_comment(self, repo: str, pr_id: str, comment_id: str, body: str) -> Comment:
        comment = self.posted[comment_id].model_copy(update={"body": body})
        self.posted[comment_id] = comment
        return comment
