"""Scheduler: per-PR cooldown between mails, and the periodic bridge loop."""

import logging
import time
from datetime import UTC, datetime, timedelta
from typing import Any

from mlbridge.services.store import BridgeRecord

LOG = logging.getLogger("mlbridge.scheduler")


def _parse_iso(s: str | None) -> datetime | None:
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None


class CooldownScheduler:
    """Decides whether a PR may send mail in the current pass.

    The first pass after start always fires. After that, a PR that sent mail
    less than ``cooldown`` ago is held back; its pending activity is picked
    up again by the first pass after the cooldown has passed.
    """

    def __init__(self, cooldown: timedelta) -> None:
        self.cooldown = cooldown
        self._first_pass = True

    def end_pass(self) -> None:
        self._first_pass = False

    def remaining(self, record: BridgeRecord, now: datetime | None = None) -> timedelta:
        """Time left before ``record``'s PR may send again (zero if it may now)."""
        if self._first_pass or self.cooldown <= timedelta(0):
            return timedelta(0)
        last = _parse_iso(record.last_emitted_at)
        if last is None:
            return timedelta(0)
        now = now or datetime.now(UTC)
        return max(timedelta(0), self.cooldown - (now - last))

    def may_emit(self, record: BridgeRecord, now: datetime | None = None) -> bool:
        return self.remaining(record, now) == timedelta(0)


def run_bridge_loop(bridge: Any, interval_seconds: int = 120) -> None:
    """Loop: run a bridge pass, then sleep interval_seconds. Never returns.

    A failed pass is logged and retried on the next tick from the last
    durably recorded state.
    """
    log = logging.getLogger("mlbridge.scheduler")
    while True:
        try:
            bridge.run_pass()
        except Exception as e:
            log.exception("Bridge pass failed: %s", e)
        time.sleep(interval_seconds)
