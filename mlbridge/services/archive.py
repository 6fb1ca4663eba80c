"""Git-backed mail archive: one mbox file per pull request.

The archive is the durable record of what the bridge has said. Every
appended mail is committed and pushed (with the same bounded rebase-retry
as webrev storage) before it is delivered to the mailing lists, and its
Message-Id is what later passes look for to avoid sending anything twice.
"""

import email
import email.generator
import email.policy
import logging
import mailbox
from email.message import EmailMessage
from pathlib import Path
from typing import Set

from mlbridge.errors import ArchiveError
from mlbridge.services.git import MAX_PUSH_RETRIES, GitRunnerError, commit_paths, materialize, push_with_retry

LOG = logging.getLogger("mlbridge.services.archive")

EMLPOLICY = email.policy.EmailPolicy(utf8=True, cte_type="8bit", max_line_length=None)

MBOX_FROM_LINE = b"From mboxrd@z Thu Jan  1 00:00:00 1970\n"


def _mbox_name(pr_id: str) -> str:
    return f"{str(pr_id).replace('/', '_')}.mbox"


class MboxArchive:
    """Local clone of the archive repository plus an index of its Message-Ids."""

    def __init__(
        self,
        url: str,
        ref: str,
        local_dir: Path,
        bot_name: str,
        bot_email: str,
        retries: int = MAX_PUSH_RETRIES,
    ) -> None:
        self.url = url
        self.ref = ref
        self.local_dir = Path(local_dir)
        self.bot_name = bot_name
        self.bot_email = bot_email
        self.retries = retries
        self._message_ids: Set[str] = set()

    def refresh(self) -> None:
        """Bring the local clone up to date and re-index the Message-Ids."""
        try:
            materialize(self.url, self.ref, self.local_dir, log=LOG)
        except GitRunnerError as e:
            raise ArchiveError(f"Cannot fetch archive {self.url}: {e}") from e
        ids: Set[str] = set()
        for path in sorted(self.local_dir.glob("*.mbox")):
            for msg in self._read(path):
                mid = msg.get("Message-Id")
                if mid:
                    ids.add(str(mid).strip())
        self._message_ids = ids
        LOG.debug("Archive holds %s messages", len(ids))

    def _read(self, path: Path):
        box = mailbox.mbox(str(path), create=False)
        try:
            return list(box)
        finally:
            box.close()

    def contains(self, message_id: str) -> bool:
        return message_id in self._message_ids

    def load(self, pr_id: str, message_id: str) -> EmailMessage | None:
        """Archived mail with ``message_id``, parsed again, or None."""
        path = self.local_dir / _mbox_name(pr_id)
        if not path.is_file():
            return None
        for msg in self._read(path):
            if str(msg.get("Message-Id", "")).strip() == message_id:
                return email.message_from_bytes(msg.as_bytes(), policy=EMLPOLICY)
        return None

    def append(self, pr_id: str, msg: EmailMessage) -> None:
        """Append ``msg`` to the PR's mbox, commit and push.

        Raises ArchiveError when the push cannot be completed.
        """
        name = _mbox_name(pr_id)
        path = self.local_dir / name
        try:
            with open(path, "ab") as fh:
                fh.write(MBOX_FROM_LINE)
                gen = email.generator.BytesGenerator(fh, mangle_from_=True, policy=EMLPOLICY)
                gen.flatten(msg)
                fh.write(b"\n")
            committed = commit_paths(
                [name],
                f"Added mail {msg['Message-Id']} for PR {pr_id}",
                self.bot_name,
                self.bot_email,
                self.local_dir,
                log=LOG,
            )
            if committed:
                push_with_retry(self.ref, self.bot_name, self.bot_email, self.local_dir, retries=self.retries, log=LOG)
        except (OSError, GitRunnerError) as e:
            raise ArchiveError(f"Cannot archive {msg['Message-Id']} for PR {pr_id}: {e}") from e
        self._message_ids.add(str(msg["Message-Id"]).strip())
        LOG.info("Archived %s in %s", msg["Message-Id"], name)
