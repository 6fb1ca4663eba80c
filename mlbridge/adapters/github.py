"""GitHub API adapter."""

from datetime import datetime
from typing import Any, Dict, List

import requests

from mlbridge.adapters.base import ReviewHostAdapter, ReviewHostError
from mlbridge.models import Comment, PRState, PullRequest, Review, ReviewComment, User, Verdict

INTEGRATED_LABEL = "integrated"

_VERDICTS = {
    "APPROVED": Verdict.APPROVED,
    "CHANGES_REQUESTED": Verdict.DISAPPROVED,
}


def _parse_iso(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _user_from_api(data: Dict[str, Any] | None) -> User:
    data = data or {}
    return User(username=data.get("login", ""), full_name=data.get("name") or "")


def _pr_state(data: Dict[str, Any], labels: List[str]) -> PRState:
    if data.get("state", "open") == "open":
        return PRState.OPEN
    if data.get("merged_at") or INTEGRATED_LABEL in labels:
        return PRState.INTEGRATED
    return PRState.CLOSED


def _pr_from_api(data: Dict[str, Any]) -> PullRequest:
    head = data.get("head") or {}
    base = data.get("base") or {}
    base_repo = base.get("repo") or {}
    head_repo = head.get("repo") or {}
    labels = [lb["name"] for lb in (data.get("labels") or []) if isinstance(lb, dict) and "name" in lb]
    return PullRequest(
        id=str(data["number"]),
        title=data.get("title") or "",
        body=data.get("body") or "",
        author=_user_from_api(data.get("user")),
        source_branch=head.get("ref", ""),
        target_branch=base.get("ref", ""),
        head_hash=head.get("sha", ""),
        labels=labels,
        state=_pr_state(data, labels),
        repository=base_repo.get("full_name", ""),
        repository_url=base_repo.get("clone_url") or base_repo.get("html_url") or "",
        web_url=data.get("html_url") or "",
        fetch_ref=f"pull/{data['number']}/head",
        source_repository=head_repo.get("full_name"),
        source_repository_url=head_repo.get("clone_url"),
        created_at=_parse_iso(data["created_at"]),
        updated_at=_parse_iso(data.get("updated_at") or data["created_at"]),
    )


def _comment_from_api(data: Dict[str, Any]) -> Comment:
    created = _parse_iso(data["created_at"])
    return Comment(
        id=str(data["id"]),
        body=data.get("body") or "",
        author=_user_from_api(data.get("user")),
        created_at=created,
        updated_at=_parse_iso(data["updated_at"]) if data.get("updated_at") else created,
        web_url=data.get("html_url"),
    )


def _review_comment_from_api(data: Dict[str, Any]) -> ReviewComment:
    line = data.get("line") or data.get("original_line")
    if data.get("subject_type") == "file":
        line = None
    parent = data.get("in_reply_to_id")
    return ReviewComment(
        id=str(data["id"]),
        body=data.get("body") or "",
        author=_user_from_api(data.get("user")),
        path=data.get("path", ""),
        line=line,
        hash=data.get("commit_id") or data.get("original_commit_id") or "",
        parent_id=str(parent) if parent else None,
        created_at=_parse_iso(data["created_at"]),
        web_url=data.get("html_url"),
    )


def _review_from_api(data: Dict[str, Any]) -> Review | None:
    submitted = data.get("submitted_at")
    if not submitted or data.get("state") == "PENDING":
        return None
    return Review(
        id=str(data["id"]),
        verdict=_VERDICTS.get(data.get("state", ""), Verdict.NONE),
        body=data.get("body") or "",
        author=_user_from_api(data.get("user")),
        created_at=_parse_iso(submitted),
        hash=data.get("commit_id"),
        web_url=data.get("html_url"),
    )


class GitHubAdapter(ReviewHostAdapter):
    """GitHub API implementation."""

    def __init__(self, token: str | None, api_url: str = "https://api.github.com") -> None:
        self._api_url = api_url.rstrip("/")
        self._session = requests.Session()
        if token:
            self._session.headers["Authorization"] = f"token {token}"
        self._session.headers["Accept"] = "application/vnd.github.v3+json"
        self._users: Dict[str, User] = {}

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> requests.Response:
        url = path if path.startswith("http") else f"{self._api_url}{path}"
        try:
            resp = self._session.request(method, url, params=params, json=json, timeout=30)
        except requests.RequestException as e:
            raise ReviewHostError(f"{method} {url}: {e}") from e
        if resp.status_code >= 400:
            msg = resp.text or resp.reason or str(resp.status_code)
            try:
                msg = resp.json().get("message", msg)
            except ValueError:
                pass
            raise ReviewHostError(f"{resp.status_code}: {msg}")
        return resp

    def _paginate(self, path: str, params: Dict[str, Any] | None = None, max_pages: int = 10) -> List[Dict[str, Any]]:
        """GET every page of a list endpoint (following Link: rel=next)."""
        items: List[Dict[str, Any]] = []
        params = {"per_page": 100, **(params or {})}
        url: str | None = path
        for _ in range(max_pages):
            if url is None:
                break
            resp = self._request("GET", url, params=params)
            items.extend(resp.json() or [])
            nxt = (getattr(resp, "links", None) or {}).get("next")
            url = nxt.get("url") if isinstance(nxt, dict) else None
            params = None
        return items

    def _with_names(self, user: User) -> User:
        if user.full_name or not user.username:
            return user
        return self.get_user(user.username)

    def get_user(self, username: str) -> User:
        if username not in self._users:
            try:
                data = self._request("GET", f"/users/{username}").json()
                self._users[username] = _user_from_api(data)
            except ReviewHostError:
                self._users[username] = User(username=username)
        return self._users[username]

    def list_pull_requests(self, repo: str) -> List[PullRequest]:
        data = self._paginate(
            f"/repos/{repo}/pulls",
            params={"state": "all", "sort": "updated", "direction": "desc"},
            max_pages=1,
        )
        prs = [_pr_from_api(d) for d in data]
        return [pr.model_copy(update={"author": self._with_names(pr.author)}) for pr in prs]

    def get_comments(self, repo: str, pr_id: str) -> List[Comment]:
        comments = [_comment_from_api(d) for d in self._paginate(f"/repos/{repo}/issues/{pr_id}/comments")]
        return [c.model_copy(update={"author": self._with_names(c.author)}) for c in comments]

    def get_review_comments(self, repo: str, pr_id: str) -> List[ReviewComment]:
        comments = [_review_comment_from_api(d) for d in self._paginate(f"/repos/{repo}/pulls/{pr_id}/comments")]
        return [c.model_copy(update={"author": self._with_names(c.author)}) for c in comments]

    def get_reviews(self, repo: str, pr_id: str) -> List[Review]:
        reviews = [_review_from_api(d) for d in self._paginate(f"/repos/{repo}/pulls/{pr_id}/reviews")]
        return [r.model_copy(update={"author": self._with_names(r.author)}) for r in reviews if r is not None]

    def create_comment(self, repo: str, pr_id: str, body: str) -> Comment:
        resp = self._request("POST", f"/repos/{repo}/issues/{pr_id}/comments", json={"body": body})
        return _comment_from_api(resp.json())

    def update_comment(self, repo: str, pr_id: str, comment_id: str, body: str) -> Comment:
        resp = self._request("PATCH", f"/repos/{repo}/issues/comments/{comment_id}", json={"body": body})
        return _comment_from_api(resp.json())
