"""Commits and the revisions a pull request moves through."""

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class Commit(BaseModel):
    """Single commit of a pull request."""

    hash: str
    parents: List[str] = Field(default_factory=list)
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    committed_at: datetime | None = None

    @property
    def summary(self) -> str:
        """First line of the commit message."""
        return self.message.strip().split("\n", 1)[0]

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


class RevisionKind(str, Enum):
    """How a revision relates to the previously bridged one."""

    FIRST = "first"
    INCREMENTAL = "incremental"
    REBASED = "rebased"
    FORCE_PUSHED = "force_pushed"


class Revision(BaseModel):
    """A pull request head together with the commits it brings.

    ``commits`` holds every commit between the merge base and the head;
    ``new_commits`` holds only those added since ``previous_hash`` (equal to
    ``commits`` unless the revision is incremental).
    """

    hash: str
    merge_base: str
    kind: RevisionKind = RevisionKind.FIRST
    previous_hash: str | None = None
    commits: List[Commit] = Field(default_factory=list)
    new_commits: List[Commit] = Field(default_factory=list)

    @property
    def head_commit(self) -> Commit | None:
        for commit in self.commits:
            if commit.hash == self.hash:
                return commit
        return None
