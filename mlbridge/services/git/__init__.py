"""Git operations: queries on the source clone, commits, fetch/push with retry."""

from mlbridge.services.git._run import GitRunnerError
from mlbridge.services.git.commits import commit_paths, is_clean
from mlbridge.services.git.push_pull import (
    MAX_PUSH_RETRIES,
    PushOutcome,
    fetch_ref,
    materialize,
    push_with_retry,
    rebase_onto,
    try_push,
)
from mlbridge.services.git.repository import SourceRepository

__all__ = [
    "MAX_PUSH_RETRIES",
    "GitRunnerError",
    "PushOutcome",
    "SourceRepository",
    "commit_paths",
    "fetch_ref",
    "is_clean",
    "materialize",
    "push_with_retry",
    "rebase_onto",
    "try_push",
]
