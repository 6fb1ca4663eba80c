"""Issue tracker links for pull requests whose titles start with an issue id."""

import logging
import re

import requests

LOG = logging.getLogger("mlbridge.adapters.issue_tracker")

_TITLE_ISSUE = re.compile(r"^\s*(?:([A-Za-z][A-Za-z0-9]*)-)?(\d+):\s")


def issue_id_from_title(title: str) -> tuple[str | None, str] | None:
    """``(project, number)`` for titles like ``1234: Fix`` or ``JDK-1234: Fix``."""
    m = _TITLE_ISSUE.match(title)
    if not m:
        return None
    return m.group(1), m.group(2)


class UrlIssueTracker:
    """Builds ``<base_uri><PROJECT>-<number>`` links.

    With ``verify`` set, a link is only returned when it answers without an
    error status; any failure to reach the tracker means no link.
    """

    def __init__(
        self,
        base_uri: str,
        project: str = "",
        verify: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        self.base_uri = base_uri
        self.project = project
        self.verify = verify
        self._session = session or requests.Session()

    def issue_url(self, title: str) -> str | None:
        if not self.base_uri:
            return None
        parsed = issue_id_from_title(title)
        if parsed is None:
            return None
        project, number = parsed
        key = f"{(project or self.project).upper()}-{number}" if (project or self.project) else number
        url = f"{self.base_uri.rstrip('/')}/{key}"
        if not self.verify:
            return url
        try:
            resp = self._session.get(url, timeout=30, allow_redirects=True)
        except requests.RequestException as e:
            LOG.warning("Issue lookup %s failed: %s", url, e)
            return None
        if resp.status_code >= 400:
            LOG.debug("Issue %s not found (%s)", key, resp.status_code)
            return None
        return url
