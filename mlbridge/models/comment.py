"""Top-level comments, inline review comments and reviews."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from mlbridge.models.pull_request import User


class Comment(BaseModel):
    """Top-level comment on a pull request."""

    id: str
    body: str
    author: User
    created_at: datetime
    updated_at: datetime | None = None
    web_url: str | None = None


class ReviewComment(BaseModel):
    """Line-level (or file-level) comment on a pull request review.

    Replies point at their parent through ``parent_id``; the comments of one
    review thread form a tree rooted at a comment without a parent.
    """

    id: str
    body: str
    author: User
    path: str
    line: int | None = None
    hash: str = ""
    parent_id: str | None = None
    created_at: datetime
    web_url: str | None = None


class Verdict(str, Enum):
    """Review verdict; NONE is a plain review comment."""

    APPROVED = "approved"
    DISAPPROVED = "disapproved"
    NONE = "none"


class Review(BaseModel):
    """Review with an optional verdict."""

    id: str
    verdict: Verdict = Verdict.NONE
    body: str = ""
    author: User
    created_at: datetime
    hash: str | None = None
    web_url: str | None = None
