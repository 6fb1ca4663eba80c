"""Webrev generation, placeholder handling, storage and publication checks."""

from mlbridge.services.webrev.diff import DiffStats, FilePatch, diff_stats, parse_diff
from mlbridge.services.webrev.engine import (
    ArtifactKind,
    WebrevArtifact,
    WebrevEngine,
    WebrevResult,
    WebrevType,
    plan_webrevs,
    webrev_id,
)
from mlbridge.services.webrev.merge import MergeAnalysis, MergeKind, MergeRange, analyze_merge, is_merge_title
from mlbridge.services.webrev.publication import PublicationChecker
from mlbridge.services.webrev.storage import WebrevStorage

__all__ = [
    "ArtifactKind",
    "DiffStats",
    "FilePatch",
    "MergeAnalysis",
    "MergeKind",
    "MergeRange",
    "PublicationChecker",
    "WebrevArtifact",
    "WebrevEngine",
    "WebrevResult",
    "WebrevStorage",
    "WebrevType",
    "analyze_merge",
    "diff_stats",
    "is_merge_title",
    "parse_diff",
    "plan_webrevs",
    "webrev_id",
]
