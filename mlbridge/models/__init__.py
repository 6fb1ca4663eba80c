"""Data models for pull requests, comments, revisions and messages (Pydantic)."""

from mlbridge.models.comment import Comment, Review, ReviewComment, Verdict
from mlbridge.models.message import LogicalMessage, MessageKind
from mlbridge.models.pull_request import PRState, PullRequest, User
from mlbridge.models.revision import Commit, Revision, RevisionKind

__all__ = [
    "Comment",
    "Commit",
    "LogicalMessage",
    "MessageKind",
    "PRState",
    "PullRequest",
    "Review",
    "ReviewComment",
    "Revision",
    "RevisionKind",
    "User",
    "Verdict",
]
