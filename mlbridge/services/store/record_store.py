"""Bridge record storage in <state_dir>/ as YAML files.

One file per PR: {pr_id}.yaml. Files are replaced atomically (write to a
temporary file, then rename), so a crash never leaves a half-written record.
"""

import logging
import os
from datetime import UTC, datetime
from pathlib import Path

import yaml

from mlbridge.services.store.schemas import BridgeRecord

LOG = logging.getLogger("mlbridge.services.store.record_store")


def _record_path(state_dir: Path, pr_id: str) -> Path:
    safe = str(pr_id).replace("/", "_")
    return Path(state_dir) / f"{safe}.yaml"


def new_record(pr_id: str, repo: str) -> BridgeRecord:
    now = datetime.now(UTC).isoformat()
    return BridgeRecord(pr_id=str(pr_id), repo=repo, created_at=now, updated_at=now)


def load_record(state_dir: Path, pr_id: str) -> BridgeRecord | None:
    """Load record from {state_dir}/{pr_id}.yaml. Returns None if missing or invalid.

    An unreadable record is treated like a missing one; the archive re-scan
    keeps already sent messages from going out again.
    """
    path = _record_path(state_dir, pr_id)
    if not path.is_file():
        return None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not data:
            return None
        return BridgeRecord.model_validate(data)
    except (OSError, yaml.YAMLError, ValueError) as e:
        LOG.warning("Failed to load bridge record %s: %s", pr_id, e)
        return None


def save_record(state_dir: Path, record: BridgeRecord) -> Path:
    """Write record to {state_dir}/{pr_id}.yaml atomically. Creates dir if needed."""
    path = _record_path(state_dir, record.pr_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    record.updated_at = datetime.now(UTC).isoformat()
    payload = record.model_dump(mode="json", exclude_none=True)
    raw = yaml.dump(
        payload,
        default_flow_style=False,
        allow_unicode=True,
        sort_keys=False,
        width=1000,
    )
    tmp = path.with_suffix(".yaml.tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(raw)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
    LOG.debug("Saved bridge record for PR #%s to %s", record.pr_id, path)
    return path
