"""Which activity items have been bridged, backed by records and the archive.

The local record is a cache; the archive is the authority. An item counts as
bridged when the record says so, or when a message with its deterministic
Message-Id is already in the archive (a previous run archived it but died
before recording).
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable

from mlbridge.models import LogicalMessage, MessageKind
from mlbridge.services.archive import MboxArchive
from mlbridge.services.quoting import quotable
from mlbridge.services.store.record_store import load_record, new_record, save_record
from mlbridge.services.store.schemas import BridgeRecord, MessageRef, WebrevRef

LOG = logging.getLogger("mlbridge.services.store.tracker")


def apply_message(record: BridgeRecord, message: LogicalMessage) -> None:
    """Update ``record`` in memory as if ``message`` had been sent."""
    for item_id in message.item_ids:
        if item_id not in record.bridged:
            record.bridged.append(item_id)
    record.messages[message.key] = MessageRef(
        message_id=message.message_id,
        subject=message.subject,
        author_username=message.author.username,
        author_name=message.author.display_name,
        date=message.created_at.isoformat(),
        quote=quotable(message.body),
    )
    if message.in_reply_to is None:
        record.root_message_id = message.message_id
        record.root_subject = message.subject
    if message.kind is MessageKind.RFR:
        record.ready = True
    if message.version:
        record.version = max(record.version, message.version)
    if message.revision is not None:
        record.last_revision = message.revision.hash
        record.last_base = message.revision.merge_base
    if message.kind is MessageKind.REVIEW_VERDICT and message.verdict:
        record.verdicts[message.author.username] = message.verdict
    for thread_id in message.thread_ids:
        record.thread_heads[thread_id] = message.key


class StateTracker:
    """Loads, updates and durably saves BridgeRecords."""

    def __init__(self, state_dir: Path, archive: MboxArchive | None = None) -> None:
        self.state_dir = Path(state_dir)
        self.archive = archive

    def load(self, pr_id: str, repo: str) -> BridgeRecord:
        return load_record(self.state_dir, pr_id) or new_record(pr_id, repo)

    def save(self, record: BridgeRecord) -> None:
        save_record(self.state_dir, record)

    def has_been_bridged(self, record: BridgeRecord, item_id: str, message_id: str | None = None) -> bool:
        if record.is_bridged(item_id):
            return True
        if message_id and self.archive is not None and self.archive.contains(message_id):
            LOG.info("PR #%s: %s found in archive but not in record", record.pr_id, message_id)
            return True
        return False

    def in_archive(self, message_id: str) -> bool:
        return self.archive is not None and self.archive.contains(message_id)

    def mark_seen(self, record: BridgeRecord, item_ids: Iterable[str]) -> None:
        """Mark items that produce no mail (filtered out, ignored) as handled."""
        changed = False
        for item_id in item_ids:
            if item_id not in record.bridged:
                record.bridged.append(item_id)
                changed = True
        if changed:
            self.save(record)

    def record_bridged(self, record: BridgeRecord, message: LogicalMessage, when: datetime) -> None:
        """Record an archived message and everything it implies, then save.

        The message is listed as undelivered until ``mark_delivered``.
        """
        apply_message(record, message)
        if message.message_id not in record.undelivered:
            record.undelivered.append(message.message_id)
        record.last_emitted_at = when.isoformat()
        self.save(record)
        LOG.debug("PR #%s: recorded %s as %s", record.pr_id, message.item_ids, message.message_id)

    def mark_delivered(self, record: BridgeRecord, message_id: str) -> None:
        if message_id in record.undelivered:
            record.undelivered.remove(message_id)
            self.save(record)

    def record_webrevs(self, record: BridgeRecord, version: int, head: str, artifacts) -> None:
        known = {w.identifier for w in record.webrevs}
        for artifact in artifacts:
            if artifact.identifier in known:
                continue
            record.webrevs.append(
                WebrevRef(
                    version=version,
                    identifier=artifact.identifier,
                    uri=artifact.uri,
                    type=artifact.type.value,
                    description=artifact.description,
                    head=head,
                )
            )
        self.save(record)
