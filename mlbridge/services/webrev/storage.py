"""Publish webrev trees to a shared git repository.

Files are committed in batches of at most 1000 and pushed to the storage
ref. A push rejected because someone else moved the ref is rebased and
retried (bounded). A batch that has nothing to commit was already
published by an earlier, interrupted attempt and is skipped, so publishing
can be resumed after a crash.
"""

import logging
import shutil
from pathlib import Path
from typing import Callable, List

from mlbridge.errors import WebrevPublishError
from mlbridge.services.git import (
    MAX_PUSH_RETRIES,
    GitRunnerError,
    commit_paths,
    is_clean,
    materialize,
    push_with_retry,
)
from mlbridge.services.webrev.placeholder import replace_large_files

LOG = logging.getLogger("mlbridge.services.webrev.storage")

BATCH_SIZE = 1000


def batches(paths: List[Path], size: int = BATCH_SIZE) -> List[List[Path]]:
    return [paths[i : i + size] for i in range(0, len(paths), size)]


class WebrevStorage:
    """A storage repository (URL and ref) plus its local scratch clone."""

    def __init__(
        self,
        url: str,
        ref: str,
        base_path: str,
        local_dir: Path,
        bot_name: str,
        bot_email: str,
        retries: int = MAX_PUSH_RETRIES,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        self.url = url
        self.ref = ref
        self.base_path = base_path.strip("/")
        self.local_dir = Path(local_dir)
        self.bot_name = bot_name
        self.bot_email = bot_email
        self.retries = retries
        self.batch_size = batch_size

    def relative_folder(self, pr_id: str, identifier: str = "") -> str:
        parts = [p for p in (self.base_path, pr_id, identifier) if p]
        return "/".join(parts)

    def publish(
        self,
        pr_id: str,
        identifier: str,
        write: Callable[[Path], object],
        placeholder: str,
    ) -> None:
        """Generate a webrev with ``write(output_dir)`` and push it.

        Raises WebrevPublishError when git fails or the push is still
        rejected after the retry bound.
        """
        try:
            self._publish(pr_id, identifier, write, placeholder)
        except GitRunnerError as e:
            raise WebrevPublishError(f"Publishing webrev {pr_id}/{identifier} to {self.url} failed: {e}") from e

    def _publish(self, pr_id: str, identifier: str, write: Callable[[Path], object], placeholder: str) -> None:
        clone = materialize(self.url, self.ref, self.local_dir, log=LOG)
        relative = self.relative_folder(pr_id, identifier)
        output = clone / relative
        if output.exists():
            shutil.rmtree(output)
        write(output)
        replace_large_files(output, placeholder)

        if is_clean(clone, log=LOG):
            LOG.info("Webrev %s is already published", relative)
            return

        files = sorted(p.relative_to(clone) for p in output.rglob("*") if p.is_file())
        chunks = batches(files, self.batch_size)
        label = self.relative_folder(pr_id)
        for index, chunk in enumerate(chunks, start=1):
            message = f"Added webrev for {label}"
            if len(chunks) > 1:
                message += f" ({index}/{len(chunks)})"
            if not commit_paths(chunk, message, self.bot_name, self.bot_email, clone, log=LOG):
                LOG.info("Batch %s/%s of %s already committed, skipping", index, len(chunks), relative)
                continue
            push_with_retry(
                self.ref,
                self.bot_name,
                self.bot_email,
                clone,
                retries=self.retries,
                log=LOG,
            )
        LOG.info("Published webrev %s (%s files)", relative, len(files))
