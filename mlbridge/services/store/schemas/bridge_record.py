"""Bridge record as stored in <state_dir>/<pr_id>.yaml."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class MessageRef(BaseModel):
    """A message already sent, kept so later replies can thread and quote it."""

    message_id: str = Field(..., description="Message-Id header value, with angle brackets")
    subject: str = Field(default="", description="Subject the message was sent with")
    author_username: str = Field(default="", description="Review host login of the author")
    author_name: str = Field(default="", description="Display name of the author")
    date: str = Field(..., description="ISO timestamp of the underlying activity")
    quote: str = Field(default="", description="Quotable text (body above the footer)")

    model_config = {"extra": "forbid"}


class WebrevRef(BaseModel):
    """A published webrev, listed in the bot's webrev comment."""

    version: int
    identifier: str
    uri: str
    type: str
    description: Optional[str] = None
    head: str = Field(default="", description="Head hash of the revision")

    model_config = {"extra": "forbid"}


class BridgeRecord(BaseModel):
    """Per-PR bookkeeping of everything already projected into the archive."""

    pr_id: str = Field(..., description="Pull request ID")
    repo: str = Field(..., description="Repository full_name, e.g. owner/repo")
    ready: bool = Field(default=False, description="PR has been seen ready for review")
    root_message_id: Optional[str] = Field(default=None, description="Message-Id of the thread root")
    root_subject: Optional[str] = Field(default=None, description="Subject of the thread root, without Re:")
    version: int = Field(default=0, description="Number of revisions bridged so far")
    last_revision: Optional[str] = Field(default=None, description="Head hash of the last bridged revision")
    last_base: Optional[str] = Field(default=None, description="Merge base of the last bridged revision")
    bridged: List[str] = Field(default_factory=list, description="Activity item ids already handled")
    messages: Dict[str, MessageRef] = Field(default_factory=dict, description="Item key -> sent message")
    thread_heads: Dict[str, str] = Field(
        default_factory=dict,
        description="Review thread root comment id -> key of the latest message in that thread",
    )
    verdicts: Dict[str, str] = Field(default_factory=dict, description="Reviewer login -> last bridged verdict")
    webrevs: List[WebrevRef] = Field(default_factory=list, description="Published webrevs, oldest first")
    undelivered: List[str] = Field(default_factory=list, description="Archived Message-Ids not yet sent by SMTP")
    webrev_comment_id: Optional[str] = Field(default=None, description="Bot comment listing the webrevs")
    last_emitted_at: Optional[str] = Field(default=None, description="ISO timestamp of the last sent mail")
    created_at: str = Field(..., description="ISO timestamp when record was created")
    updated_at: str = Field(..., description="ISO timestamp of last update")

    model_config = {"extra": "forbid", "populate_by_name": True}

    def is_bridged(self, item_id: str) -> bool:
        return item_id in self.bridged

    def latest_message_by(self, username: str) -> Optional[str]:
        """Key of the most recent message authored by ``username``."""
        matches = [k for k, m in self.messages.items() if m.author_username.lower() == username.lower()]
        if not matches:
            return None
        return max(matches, key=lambda k: self.messages[k].date)
