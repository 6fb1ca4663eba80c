"""Logical messages planned by the conversation and rendered into mail."""

from datetime import datetime
from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from mlbridge.models.pull_request import User
from mlbridge.models.revision import Revision


class MessageKind(str, Enum):
    """Kinds of message one pull request thread is made of."""

    RFR = "rfr"
    INCREMENTAL = "incremental"
    REBASE = "rebase"
    INTEGRATED = "integrated"
    WITHDRAWN = "withdrawn"
    REVIEW_VERDICT = "review_verdict"
    COMMENT = "comment"
    REVIEW_COMMENT_GROUP = "review_comment_group"


class LogicalMessage(BaseModel):
    """One message the bridge intends to send.

    ``item_ids`` are the activity items (comments, reviews, revisions,
    lifecycle notices) the message covers; all of them are recorded as
    bridged once it is sent. The first one names the message and
    determines its Message-Id. ``body`` is the quotable text; ``footer``
    is appended below a separator when rendered and is filled in for
    revision messages once their webrevs exist.
    """

    kind: MessageKind
    item_ids: List[str]
    author: User
    subject: str
    body: str
    footer: str = ""
    message_id: str
    in_reply_to: str | None = None
    references: List[str] = Field(default_factory=list)
    thread_ids: List[str] = Field(default_factory=list, description="Review threads this message continues")
    version: int | None = Field(default=None, description="Subject version of a revision message")
    created_at: datetime
    revision: Revision | None = None
    verdict: str | None = None

    @property
    def key(self) -> str:
        return self.item_ids[0]

    @property
    def text(self) -> str:
        """Full body as it goes out: quotable text, then the footer."""
        if not self.footer:
            return self.body.rstrip() + "\n"
        if not self.body.strip():
            return self.footer.rstrip() + "\n"
        return f"{self.body.rstrip()}\n\n-------------\n\n{self.footer.rstrip()}\n"
