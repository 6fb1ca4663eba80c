"""Quoting helpers for replies: intro lines, quoted parents, inline context."""

import re
from datetime import datetime
from email.utils import format_datetime
from typing import List, Sequence

SEPARATOR = "-------------"

_MENTION = re.compile(r"(?<![\w@])@([A-Za-z0-9][A-Za-z0-9_-]*)")
_QUOTE_LINE = re.compile(r"^>\s?(.*)$")


def quotable(text: str) -> str:
    """Part of a message body that replies quote: everything above the footer separator."""
    lines = text.split("\n")
    if SEPARATOR in lines:
        lines = lines[: lines.index(SEPARATOR)]
    return "\n".join(lines).strip()


def quote(text: str) -> str:
    """Prefix every line with ``> ``; already quoted lines nest as ``>>``."""
    out = []
    for line in text.strip().split("\n"):
        if line.startswith(">"):
            out.append(">" + line)
        elif line:
            out.append("> " + line)
        else:
            out.append(">")
    return "\n".join(out)


def reply_intro(date: datetime, full_name: str) -> str:
    return f"On {format_datetime(date)}, {full_name} wrote:"


def reply_body(parent_date: datetime, parent_name: str, parent_quote: str, text: str) -> str:
    """Reply text: intro line, the quoted parent, a blank line, then ``text``."""
    return f"{reply_intro(parent_date, parent_name)}\n\n{quote(parent_quote)}\n\n{text.strip()}"


def quoted_text(body: str) -> str:
    """Lines a comment quotes (``> ``-prefixed), unprefixed and joined."""
    lines = []
    for line in body.split("\n"):
        m = _QUOTE_LINE.match(line)
        if m:
            lines.append(m.group(1).rstrip())
    return "\n".join(lines).strip()


def mentions(body: str) -> List[str]:
    """Logins ``@mentioned`` in ``body``, in order of appearance."""
    return _MENTION.findall(body)


def inline_context(file_lines: Sequence[str], line: int | None) -> str:
    """Lines ``line - 1`` and ``line`` of a file, quoted as ``> <n>: <text>``.

    Lines are 1-based; lines outside the file are skipped.
    """
    if not line:
        return ""
    out = []
    for n in (line - 1, line):
        if 1 <= n <= len(file_lines):
            out.append(f"> {n}: {file_lines[n - 1]}")
    return "\n".join(out)
