"""Strip bot directives and hidden annotations from comment bodies.

Filtering is applied in order:

1. everything from the hidden-section marker to the end of the text is dropped
2. ``<!-- ... -->`` spans are dropped (non-greedy, may span lines)
3. a line starting with a slash command (``/cc``, ``/integrate``) is dropped
   together with the non-blank lines directly following it; a command that
   follows prose on the same line is left alone
4. runs of blank lines collapse to a single blank line

``classify`` wraps this with the ignore rules and reports why a body is not
bridged.
"""

import re
from enum import Enum
from typing import Iterable, NamedTuple

from mlbridge.models import User

_HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_COMMAND_LINE = re.compile(r"^\s*/[A-Za-z][\w-]*(\s|$)")
_BLANK_RUN = re.compile(r"\n(?:[ \t]*\n){2,}")


class FilterOutcome(str, Enum):
    """Whether a body is bridged, and why not."""

    KEEP = "keep"
    DROP_EMPTY = "drop_empty"
    DROP_IGNORED_PATTERN = "drop_ignored_pattern"
    DROP_IGNORED_USER = "drop_ignored_user"


class FilterResult(NamedTuple):
    outcome: FilterOutcome
    body: str = ""

    @property
    def keep(self) -> bool:
        return self.outcome is FilterOutcome.KEEP


def _drop_commands(text: str) -> str:
    kept = []
    in_command = False
    for line in text.split("\n"):
        if in_command:
            if line.strip():
                continue
            in_command = False
        if _COMMAND_LINE.match(line):
            in_command = True
            continue
        kept.append(line)
    return "\n".join(kept)


def filter_body(text: str, hidden_marker: str | None = None) -> str:
    """Return ``text`` without hidden sections, HTML comments and commands.

    The result is stripped; an empty string means nothing is left to bridge.
    """
    text = text.replace("\r\n", "\n")
    if hidden_marker:
        idx = text.find(hidden_marker)
        if idx >= 0:
            text = text[:idx]
    text = _HTML_COMMENT.sub("", text)
    text = _drop_commands(text)
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    text = _BLANK_RUN.sub("\n\n", text)
    return text.strip()


class CommentFilter:
    """Filter plus ignore rules from the ``comments`` config section."""

    def __init__(
        self,
        hidden_marker: str | None = None,
        ignored_users: Iterable[str] = (),
        ignored_patterns: Iterable[str] = (),
        bot_username: str | None = None,
    ) -> None:
        self.hidden_marker = hidden_marker
        self.ignored_users = {u.lower() for u in ignored_users}
        if bot_username:
            self.ignored_users.add(bot_username.lower())
        self.ignored_patterns = [re.compile(p, re.MULTILINE | re.DOTALL) for p in ignored_patterns]

    def is_ignored_user(self, user: User) -> bool:
        return user.username.lower() in self.ignored_users

    def classify(self, body: str, author: User) -> FilterResult:
        """Decide whether a comment by ``author`` is bridged.

        Ignored authors win over ignored patterns, which win over an empty
        filtered body. The pattern check runs on the raw text so that
        patterns can match content the filter would strip.
        """
        if self.is_ignored_user(author):
            return FilterResult(FilterOutcome.DROP_IGNORED_USER)
        for pattern in self.ignored_patterns:
            if pattern.search(body):
                return FilterResult(FilterOutcome.DROP_IGNORED_PATTERN)
        filtered = filter_body(body, self.hidden_marker)
        if not filtered:
            return FilterResult(FilterOutcome.DROP_EMPTY)
        return FilterResult(FilterOutcome.KEEP, filtered)
