"""Replace oversized webrev files with instructions for regenerating them."""

import logging
from pathlib import Path

LOG = logging.getLogger("mlbridge.services.webrev.placeholder")

MAX_FILE_SIZE = 1_000_000

# Index and metadata files are always published as generated
NEVER_REPLACE = frozenset({"index.html", "comparison.json", "commits.json", "metadata.json"})


def placeholder_text(repository_url: str, fetch_ref: str, base: str, head: str) -> str:
    return (
        "This file was too large to be included in the published webrev, and has been replaced with "
        "this placeholder message. It is possible to generate the original content locally by "
        "following these instructions:\n\n"
        f"  $ git fetch {repository_url} {fetch_ref}\n"
        f"  $ git checkout {head}\n"
        f"  $ git webrev -r {base}\n"
    )


def should_be_replaced(path: Path) -> bool:
    if path.name in NEVER_REPLACE:
        return False
    try:
        return path.stat().st_size >= MAX_FILE_SIZE
    except OSError:
        return False


def replace_content(path: Path, placeholder: str) -> None:
    """Overwrite ``path`` with ``placeholder``.

    HTML pages keep everything up to their first ``<pre>`` and from their
    last ``</pre>``, so the page still renders with its navigation.
    """
    if path.suffix == ".html":
        existing = path.read_text(encoding="utf-8", errors="replace")
        header_end = existing.find("<pre>")
        footer_start = existing.rfind("</pre>")
        if header_end > 0 and footer_start > 0:
            path.write_text(existing[: header_end + 5] + placeholder + existing[footer_start:], encoding="utf-8")
            return
    path.write_text(placeholder, encoding="utf-8")


def replace_large_files(root: Path, placeholder: str) -> int:
    """Apply placeholders under ``root``; return how many files were replaced."""
    replaced = 0
    for path in sorted(p for p in root.rglob("*") if p.is_file()):
        if should_be_replaced(path):
            LOG.info("Replacing %s (%s bytes) with a placeholder", path.name, path.stat().st_size)
            replace_content(path, placeholder)
            replaced += 1
    return replaced
