"""Write webrev output trees: browsable HTML pages or the JSON triple.

HTML layout::

    index.html            summary, commit list and one link per file
    <path>.html           the file's patch inside a single <pre> block

JSON layout: ``commits.json``, ``metadata.json`` and ``comparison.json``.
"""

import html
import json
from pathlib import Path
from typing import List, Sequence

from pydantic import BaseModel, Field

from mlbridge.models import Commit
from mlbridge.services.webrev.diff import FilePatch, diff_stats


class WebrevMeta(BaseModel):
    """What a webrev is about, shown in its header."""

    title: str
    pr_url: str = ""
    upstream: str = ""
    upstream_name: str = ""
    fork: str = ""
    fork_name: str = ""
    author: str = ""
    base: str
    head: str
    description: str = ""
    commits: List[Commit] = Field(default_factory=list)


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>{html.escape(title)}</title>\n"
        "</head>\n<body>\n"
        f"{body}"
        "</body>\n</html>\n"
    )


def _file_page(meta: WebrevMeta, patch: FilePatch) -> str:
    body = (
        f"<h2>{html.escape(patch.path)}</h2>\n"
        f'<p><a href="{"../" * patch.path.count("/")}index.html">index</a></p>\n'
        f"<pre>{html.escape(patch.text())}</pre>\n"
    )
    return _page(f"{meta.title} - {patch.path}", body)


def _index_page(meta: WebrevMeta, patches: Sequence[FilePatch]) -> str:
    stats = diff_stats(list(patches))
    rows = []
    for patch in patches:
        s = patch.stats()
        rows.append(
            f'<li><a href="{html.escape(patch.path)}.html">{html.escape(patch.path)}</a> '
            f"({patch.status}; {s.insertions} ins; {s.deletions} del; {s.modifications} mod)</li>"
        )
    commits = "".join(
        f"<li><code>{c.hash[:12]}</code> {html.escape(c.summary)}</li>\n" for c in meta.commits
    )
    links = ""
    if meta.pr_url:
        links += f'<p>Pull request: <a href="{html.escape(meta.pr_url)}">{html.escape(meta.pr_url)}</a></p>\n'
    if meta.upstream:
        links += f"<p>Upstream: {html.escape(meta.upstream)}</p>\n"
    body = (
        f"<h1>{html.escape(meta.title)}</h1>\n"
        + (f"<p>{html.escape(meta.description)}</p>\n" if meta.description else "")
        + (f"<p>Prepared by: {html.escape(meta.author)}</p>\n" if meta.author else "")
        + links
        + f"<p>Compare: <code>{meta.base}</code> .. <code>{meta.head}</code></p>\n"
        + (f"<h2>Commits</h2>\n<ul>\n{commits}</ul>\n" if commits else "")
        + f"<h2>Files</h2>\n<ul>\n{chr(10).join(rows)}\n</ul>\n"
        + f"<p>{stats.summary()}</p>\n"
    )
    return _page(meta.title, body)


def write_html(output_dir: Path, meta: WebrevMeta, patches: Sequence[FilePatch]) -> List[Path]:
    """Write the HTML tree; return the files written."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    index = output_dir / "index.html"
    index.write_text(_index_page(meta, patches), encoding="utf-8")
    written.append(index)
    for patch in patches:
        target = output_dir / f"{patch.path}.html"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(_file_page(meta, patch), encoding="utf-8")
        written.append(target)
    return written


def write_json(output_dir: Path, meta: WebrevMeta, patches: Sequence[FilePatch]) -> List[Path]:
    """Write commits.json, metadata.json and comparison.json; return them."""
    output_dir.mkdir(parents=True, exist_ok=True)
    commits = [
        {
            "sha": c.hash,
            "parents": c.parents,
            "message": c.message,
            "author": {"name": c.author_name, "email": c.author_email},
            "date": c.committed_at.isoformat() if c.committed_at else None,
        }
        for c in meta.commits
    ]
    metadata = {
        "base": {"sha": meta.base, "repo": {"html_url": meta.upstream, "full_name": meta.upstream_name}},
        "head": {"sha": meta.head, "repo": {"html_url": meta.fork, "full_name": meta.fork_name}},
        "title": meta.title,
    }
    stats = diff_stats(list(patches))
    comparison = {
        "files": [
            {
                "filename": p.path,
                "previous_filename": p.old_path if p.status == "renamed" else None,
                "status": p.status,
                "binary": p.binary,
                "additions": p.stats().insertions + p.stats().modifications,
                "deletions": p.stats().deletions + p.stats().modifications,
                "patch": p.text(),
            }
            for p in patches
        ],
        "summary": stats.summary(),
    }
    written = []
    for name, payload in (("commits.json", commits), ("metadata.json", metadata), ("comparison.json", comparison)):
        path = output_dir / name
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        written.append(path)
    return written
