"""Abstract base for review host adapters."""

from abc import ABC, abstractmethod
from typing import List

from mlbridge.errors import BridgeError
from mlbridge.models import Comment, PullRequest, Review, ReviewComment, User


class ReviewHostError(BridgeError):
    """Raised when a review host API call fails."""

    pass


class ReviewHostAdapter(ABC):
    """Abstract interface for code review hosts (GitHub, GitLab, ...)."""

    @abstractmethod
    def list_pull_requests(self, repo: str) -> List[PullRequest]:
        """Open pull requests and recently closed ones."""
        ...

    @abstractmethod
    def get_comments(self, repo: str, pr_id: str) -> List[Comment]:
        """Top-level comments, oldest first."""
        ...

    @abstractmethod
    def get_review_comments(self, repo: str, pr_id: str) -> List[ReviewComment]:
        """Inline review comments (with reply links), oldest first."""
        ...

    @abstractmethod
    def get_reviews(self, repo: str, pr_id: str) -> List[Review]:
        """Submitted reviews, oldest first."""
        ...

    @abstractmethod
    def create_comment(self, repo: str, pr_id: str, body: str) -> Comment:
        """Post a top-level comment as the bot."""
        ...

    @abstractmethod
    def update_comment(self, repo: str, pr_id: str, comment_id: str, body: str) -> Comment:
        """Replace the body of a comment the bot posted earlier."""
        ...

    def get_user(self, username: str) -> User:
        """Look up a user's display name. Override if the host provides one."""
        return User(username=username)
