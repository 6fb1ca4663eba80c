"""Schemas for store YAML files (bridge records)."""

from mlbridge.services.store.schemas.bridge_record import BridgeRecord, MessageRef, WebrevRef

__all__ = ["BridgeRecord", "MessageRef", "WebrevRef"]
