"""Generate and publish the webrevs of a pull request revision.

The artifacts a revision needs are decided by ``plan_webrevs``, a pure
function of the configured output formats and the merge analysis:

- HTML_ARTIFACT / JSON_ARTIFACT: a full webrev, plus a range webrev from the
  previously bridged head when that head is still reachable
- MERGE_ARTIFACT_SET: the merge-specific webrevs from the merge analysis
- NO_ARTIFACT_NEEDED: only a note (trivial merges, or all formats disabled)

Identifiers are two-digit sequence numbers (``00`` for the first revision),
``00-01`` for a range and ``01.0``, ``01.1`` or ``01.conflicts`` for merges.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import List, Sequence

from pydantic import BaseModel, Field

from mlbridge.config import AppConfig
from mlbridge.errors import ConfigurationError, ContentError
from mlbridge.models import Commit, PullRequest, Revision, RevisionKind
from mlbridge.services.git import SourceRepository
from mlbridge.services.webrev.diff import FilePatch, diff_stats, parse_diff
from mlbridge.services.webrev.merge import MergeAnalysis, MergeKind, analyze_merge, is_merge_title, merge_note
from mlbridge.services.webrev.placeholder import placeholder_text
from mlbridge.services.webrev.publication import PublicationChecker
from mlbridge.services.webrev.render import WebrevMeta, write_html, write_json
from mlbridge.services.webrev.storage import WebrevStorage

LOG = logging.getLogger("mlbridge.services.webrev.engine")


class ArtifactKind(str, Enum):
    HTML_ARTIFACT = "html"
    JSON_ARTIFACT = "json"
    MERGE_ARTIFACT_SET = "merge"
    NO_ARTIFACT_NEEDED = "none"


class WebrevType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    MERGE_TARGET = "merge_target"
    MERGE_SOURCE = "merge_source"
    MERGE_CONFLICT = "merge_conflict"


_MERGE_TYPES = {
    "0": WebrevType.MERGE_TARGET,
    "1": WebrevType.MERGE_SOURCE,
    "conflicts": WebrevType.MERGE_CONFLICT,
}


class WebrevArtifact(BaseModel):
    """A published webrev."""

    identifier: str
    uri: str
    type: WebrevType
    description: str | None = None


class WebrevResult(BaseModel):
    """Everything generated for one revision."""

    kind: ArtifactKind
    artifacts: List[WebrevArtifact] = Field(default_factory=list)
    note: str = ""
    stats: str = ""


def webrev_id(version: int) -> str:
    """Two-digit identifier of the webrev for subject version ``version`` (v1 -> ``00``)."""
    return f"{version - 1:02d}"


def plan_webrevs(generate_html: bool, generate_json: bool, merge: MergeAnalysis | None) -> ArtifactKind:
    if merge is not None:
        if merge.kind is MergeKind.TRIVIAL:
            return ArtifactKind.NO_ARTIFACT_NEEDED
        return ArtifactKind.MERGE_ARTIFACT_SET
    if generate_html:
        return ArtifactKind.HTML_ARTIFACT
    if generate_json:
        return ArtifactKind.JSON_ARTIFACT
    return ArtifactKind.NO_ARTIFACT_NEEDED


class WebrevEngine:
    """Renders webrevs from the source clone and publishes them to storage."""

    def __init__(
        self,
        repo: SourceRepository,
        base_uri: str,
        html_storage: WebrevStorage | None = None,
        json_storage: WebrevStorage | None = None,
        checker: PublicationChecker | None = None,
        author: str = "",
    ) -> None:
        self.repo = repo
        self.base_uri = base_uri.rstrip("/")
        self.html_storage = html_storage
        self.json_storage = json_storage
        self.checker = checker
        self.author = author

    @classmethod
    def from_config(cls, config: AppConfig, repo: SourceRepository) -> "WebrevEngine":
        wc = config.webrev
        scratch = Path(wc.scratch_dir)
        html_storage = json_storage = None
        if wc.generate_html:
            html_storage = WebrevStorage(
                wc.html_storage_url, wc.ref, wc.base_path, scratch / "html", config.bot.name, config.bot.email
            )
        if wc.generate_json:
            json_storage = WebrevStorage(
                wc.json_storage_url or wc.html_storage_url,
                wc.ref,
                wc.base_path,
                scratch / "json",
                config.bot.name,
                config.bot.email,
            )
        checker = PublicationChecker(wc.publish_timeout_minutes, wc.poll_interval_seconds)
        return cls(repo, wc.base_uri, html_storage, json_storage, checker, author=config.bot.name)

    def html_uri(self, pr: PullRequest, identifier: str) -> str:
        if self.html_storage is None:
            raise ConfigurationError("HTML webrevs are requested but no HTML webrev storage is configured")
        return f"{self.base_uri}/{self.html_storage.relative_folder(pr.id, identifier)}"

    def json_uri(self, pr: PullRequest, identifier: str) -> str:
        return f"{self.base_uri}?repo={pr.repository_name}&pr={pr.id}&range={identifier}"

    def generate(
        self,
        pr: PullRequest,
        base: str,
        head: str,
        identifier: str,
        type: WebrevType,
        description: str | None = None,
    ) -> WebrevArtifact:
        """Webrev of the commits between ``base`` and ``head``."""
        patches = parse_diff(self.repo.diff(base, head))
        commits = self.repo.commits(base, head)
        return self._create(pr, base, head, identifier, type, description, patches, commits)

    def generate_diff(
        self,
        pr: PullRequest,
        diff: str,
        base: str,
        head: str,
        identifier: str,
        type: WebrevType,
        description: str | None = None,
    ) -> WebrevArtifact:
        """Webrev of an already computed diff (``base`` and ``head`` may be trees)."""
        return self._create(pr, base, head, identifier, type, description, parse_diff(diff), [])

    def _create(
        self,
        pr: PullRequest,
        base: str,
        head: str,
        identifier: str,
        type: WebrevType,
        description: str | None,
        patches: Sequence[FilePatch],
        commits: List[Commit],
    ) -> WebrevArtifact:
        if self.json_storage is not None and not pr.source_repository:
            raise ContentError(
                f"Cannot generate JSON for PR without source repository. PR: {pr.id}, repo: {pr.repository}"
            )
        meta = WebrevMeta(
            title=pr.title,
            pr_url=pr.web_url,
            upstream=pr.repository_url,
            upstream_name=pr.repository,
            fork=pr.source_repository_url or "",
            fork_name=pr.source_repository or "",
            author=pr.author.display_name,
            base=base,
            head=head,
            description=description or "",
            commits=commits,
        )
        placeholder = placeholder_text(pr.repository_url or pr.web_url, pr.fetch_ref, base, head)
        uri = ""
        if self.json_storage is not None:
            self.json_storage.publish(pr.id, identifier, lambda out: write_json(out, meta, patches), placeholder)
            uri = self.json_uri(pr, identifier)
        if self.html_storage is not None:
            self.html_storage.publish(pr.id, identifier, lambda out: write_html(out, meta, patches), placeholder)
            uri = self.html_uri(pr, identifier)
            if self.checker is not None:
                self.checker.await_publication(uri)
        LOG.info("Webrev %s/%s available at %s", pr.id, identifier, uri)
        return WebrevArtifact(identifier=identifier, uri=uri, type=type, description=description)

    def for_revision(
        self,
        pr: PullRequest,
        revision: Revision,
        version: int,
        target_hash: str,
    ) -> WebrevResult:
        """Generate every webrev subject version ``version`` of ``pr`` needs."""
        nn = webrev_id(version)
        merge = None
        head = revision.head_commit
        if is_merge_title(pr.title):
            if head is None:
                head = self.repo.commit(revision.hash)
            merge = analyze_merge(self.repo, head, target_hash)
        kind = plan_webrevs(self.html_storage is not None, self.json_storage is not None, merge)
        note = merge_note(merge.kind, pr.target_branch) if merge else ""

        if merge is not None and merge.ranges:
            first = merge.ranges[0]
            stats = diff_stats(parse_diff(self.repo.diff(first.base, first.head)))
        else:
            stats = diff_stats(parse_diff(self.repo.diff(revision.merge_base, revision.hash)))
        result = WebrevResult(kind=kind, note=note, stats=stats.summary())

        if kind is ArtifactKind.NO_ARTIFACT_NEEDED:
            return result
        if kind is ArtifactKind.MERGE_ARTIFACT_SET:
            for r in merge.ranges:
                result.artifacts.append(
                    self.generate_diff(
                        pr,
                        self.repo.diff(r.base, r.head),
                        r.base,
                        r.head,
                        f"{nn}.{r.suffix}",
                        _MERGE_TYPES[r.suffix],
                        r.description,
                    )
                )
            return result

        result.artifacts.append(self.generate(pr, revision.merge_base, revision.hash, nn, WebrevType.FULL))
        if version > 1 and self._has_range(revision):
            result.artifacts.append(
                self.generate(
                    pr,
                    revision.previous_hash,
                    revision.hash,
                    f"{webrev_id(version - 1)}-{nn}",
                    WebrevType.INCREMENTAL,
                )
            )
        return result

    def _has_range(self, revision: Revision) -> bool:
        """Whether a range webrev from the previous head makes sense."""
        if not revision.previous_hash or revision.previous_hash == revision.hash:
            return False
        if revision.kind is RevisionKind.INCREMENTAL:
            return True
        if revision.kind is RevisionKind.REBASED:
            return self.repo.is_ancestor(revision.previous_hash, revision.hash)
        if revision.kind is RevisionKind.FORCE_PUSHED:
            return self.repo.has_commit(revision.previous_hash)
        return False
