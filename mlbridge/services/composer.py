"""Render logical messages into mail."""

import re
from email.message import EmailMessage
from email.utils import format_datetime, formataddr
from typing import Iterable, List

from mlbridge.config import BotConfig, MailingListConfig
from mlbridge.models import LogicalMessage, PullRequest
from mlbridge.services.archive import EMLPOLICY

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9.\-_]")


def message_id_for(pr_id: str, key: str, domain: str) -> str:
    """Deterministic Message-Id for the message covering item ``key``.

    The same pull request and item always give the same id, which is what
    lets a later pass recognise an already archived message.
    """
    local = _UNSAFE_ID_CHARS.sub("-", f"pr{pr_id}.{key}")
    return f"<{local}@{domain}>"


def recipients_for(pr: PullRequest, lists: Iterable[MailingListConfig]) -> List[str]:
    """Addresses of every list whose labels match the pull request.

    A list without labels receives every pull request.
    """
    labels = set(pr.labels)
    out = []
    for ml in lists:
        if not ml.labels or labels.intersection(ml.labels):
            if ml.address not in out:
                out.append(ml.address)
    return out


class MailComposer:
    """Turns a LogicalMessage into an EmailMessage from the bot's address."""

    def __init__(self, bot: BotConfig, headers: dict[str, str] | None = None) -> None:
        self.bot = bot
        self.headers = dict(headers or {})

    def compose(self, message: LogicalMessage, recipients: List[str]) -> EmailMessage:
        msg = EmailMessage(policy=EMLPOLICY)
        msg["From"] = formataddr((message.author.display_name, self.bot.email))
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = message.subject
        msg["Message-Id"] = message.message_id
        msg["Date"] = format_datetime(message.created_at)
        if message.in_reply_to:
            msg["In-Reply-To"] = message.in_reply_to
        if message.references:
            msg["References"] = " ".join(message.references)
        for name, value in self.headers.items():
            msg[name] = value
        # EMLPOLICY sets no line length, so the transfer encoding is given here
        msg.set_content(message.text, cte="8bit")
        return msg
