"""Wait until a published HTML webrev is reachable at its public URI."""

import logging
import time
import uuid

import requests

from mlbridge.errors import PublicationTimeoutError

LOG = logging.getLogger("mlbridge.services.webrev.publication")

REQUEST_TIMEOUT = 30


class PublicationChecker:
    """Polls a URI (bypassing caches) until it answers without an error status."""

    def __init__(
        self,
        timeout_minutes: int = 30,
        interval_seconds: int = 10,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout_minutes * 60
        self.interval = interval_seconds
        self._session = session or requests.Session()

    def _reachable(self, uri: str) -> bool:
        params = {"nocache": str(uuid.uuid4())}
        try:
            resp = self._session.get(uri, params=params, timeout=REQUEST_TIMEOUT, allow_redirects=True)
        except requests.RequestException as e:
            LOG.info("Checking %s failed (%s) - waiting...", uri, e)
            return False
        if resp.status_code < 400:
            LOG.info("%s when checking %s - success!", resp.status_code, uri)
            return True
        LOG.info("%s when checking %s - waiting...", resp.status_code, uri)
        return False

    def await_publication(self, uri: str) -> None:
        """Return once ``uri`` is reachable; raise PublicationTimeoutError otherwise."""
        deadline = time.monotonic() + self.timeout
        while True:
            if self._reachable(uri):
                return
            if time.monotonic() + self.interval > deadline:
                break
            time.sleep(self.interval)
        raise PublicationTimeoutError(f"No success response from {uri} within {self.timeout // 60} minutes")
