"""Pull request model as seen by the bridge (read-only)."""

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class PRState(str, Enum):
    """Lifecycle state of a pull request."""

    OPEN = "open"
    INTEGRATED = "integrated"
    CLOSED = "closed"


class User(BaseModel):
    """Account on the review host."""

    username: str
    full_name: str = ""

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


class PullRequest(BaseModel):
    """Pull request (or merge request)."""

    id: str
    title: str
    body: str = ""
    author: User
    source_branch: str
    target_branch: str
    head_hash: str
    labels: List[str] = Field(default_factory=list)
    state: PRState = PRState.OPEN
    repository: str = Field(..., description="Target repository full name, e.g. openjdk/jdk")
    repository_url: str = Field(default="", description="Clone URL of the target repository")
    web_url: str = ""
    fetch_ref: str = Field(default="", description="Ref the head can be fetched from, e.g. pull/1/head")
    source_repository: str | None = Field(default=None, description="Full name of the fork, if known")
    source_repository_url: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def repository_name(self) -> str:
        """Last path component of the repository name (``jdk`` for ``openjdk/jdk``)."""
        return self.repository.rstrip("/").rsplit("/", 1)[-1]
