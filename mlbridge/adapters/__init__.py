"""Review host and issue tracker adapters."""

from mlbridge.adapters.base import ReviewHostAdapter, ReviewHostError
from mlbridge.adapters.github import GitHubAdapter
from mlbridge.adapters.issue_tracker import UrlIssueTracker, issue_id_from_title

__all__ = [
    "GitHubAdapter",
    "ReviewHostAdapter",
    "ReviewHostError",
    "UrlIssueTracker",
    "issue_id_from_title",
]
