"""Classify merge pull requests and decide which merge webrevs they need.

A pull request is a merge when its title starts with ``Merge``. Its head is
compared with what git would produce on its own:

- TRIVIAL: git's automatic merge gives exactly the head, nothing to review
- CONFLICTS: the automatic merge conflicts; the webrev shows the head (or,
  while the merge is not committed yet, the target) against the conflicted
  automatic merge
- ADJUSTED: the automatic merge is clean but the head differs from it; one
  webrev per parent shows what was changed relative to that parent
"""

import logging
from enum import Enum
from typing import List, NamedTuple

from mlbridge.models import Commit
from mlbridge.services.git import SourceRepository

LOG = logging.getLogger("mlbridge.services.webrev.merge")


class MergeKind(str, Enum):
    TRIVIAL = "trivial"
    CONFLICTS = "conflicts"
    ADJUSTED = "adjusted"


class MergeRange(NamedTuple):
    """One merge webrev: a diff range, its identifier suffix and description."""

    base: str
    head: str
    suffix: str
    description: str


class MergeAnalysis(NamedTuple):
    kind: MergeKind
    ranges: List[MergeRange]


def is_merge_title(title: str) -> bool:
    return title.strip().lower().startswith("merge")


def analyze_merge(repo: SourceRepository, head: Commit, target_hash: str) -> MergeAnalysis:
    """Classify the merge at ``head`` (or the pending merge of ``head`` into ``target_hash``)."""
    if head.is_merge:
        ours, theirs = head.parents[0], head.parents[1]
        auto_tree, clean = repo.merge_tree(ours, theirs)
        head_tree = repo.tree(head.hash)
        if clean and auto_tree == head_tree:
            LOG.debug("Merge %s is trivial", head.hash)
            return MergeAnalysis(MergeKind.TRIVIAL, [])
        if not clean:
            return MergeAnalysis(MergeKind.CONFLICTS, [MergeRange(auto_tree, head.hash, "conflicts", "Merge conflicts")])
        return MergeAnalysis(
            MergeKind.ADJUSTED,
            [
                MergeRange(ours, head.hash, "0", "Merge target"),
                MergeRange(theirs, head.hash, "1", "Merge source"),
            ],
        )
    auto_tree, clean = repo.merge_tree(target_hash, head.hash)
    if clean:
        return MergeAnalysis(MergeKind.TRIVIAL, [])
    return MergeAnalysis(MergeKind.CONFLICTS, [MergeRange(target_hash, auto_tree, "conflicts", "Merge conflicts")])


def merge_note(kind: MergeKind, target_branch: str) -> str:
    if kind is MergeKind.TRIVIAL:
        return "The merge commit only contains trivial merges, so no merge-specific webrevs have been generated."
    if kind is MergeKind.CONFLICTS:
        return f"The webrev contains the conflicts with {target_branch}:"
    return "The webrevs contain the adjustments done while merging with regards to each parent branch:"
