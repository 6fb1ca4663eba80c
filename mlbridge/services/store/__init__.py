"""Bridge record storage (<state_dir>/<pr_id>.yaml) and the state tracker."""

from mlbridge.services.store.record_store import load_record, new_record, save_record
from mlbridge.services.store.schemas import BridgeRecord, MessageRef, WebrevRef
from mlbridge.services.store.tracker import StateTracker

__all__ = [
    "BridgeRecord",
    "MessageRef",
    "StateTracker",
    "WebrevRef",
    "load_record",
    "new_record",
    "save_record",
]
