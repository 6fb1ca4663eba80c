"""Plan the mail a pull request's activity turns into.

A pull request thread starts with an RFR once the pull request is ready
(or with an Integrated notice if it was integrated before anyone saw it
ready). Every later revision, comment, review and lifecycle change becomes
one reply in that thread, in the order it happened:

- new revisions: INCREMENTAL or REBASE, with the subject version advanced
- top-level comments and reviews: reply to the message they quote, else to
  the latest message of the user they mention, else to the root
- inline comments: grouped by the combiner, each review thread with its own
  reply chain
- integration and withdrawal: a single bot-authored notice each

Planning is pure. The record passed in is not modified; planned messages
are applied to a copy so that later items in the same pass can reply to
earlier ones.
"""

import logging
import re
from datetime import UTC, datetime
from typing import Callable, Dict, List, NamedTuple, Sequence

from mlbridge.config import BotConfig, CommentsConfig, MailConfig
from mlbridge.models import (
    Comment,
    LogicalMessage,
    MessageKind,
    PRState,
    PullRequest,
    Review,
    ReviewComment,
    Revision,
    RevisionKind,
    User,
    Verdict,
)
from mlbridge.services.combiner import CommentBatch, combine, thread_root
from mlbridge.services.comment_filter import CommentFilter, FilterOutcome, filter_body
from mlbridge.services.composer import message_id_for
from mlbridge.services.git import GitRunnerError
from mlbridge.services.quoting import inline_context, mentions, quoted_text, reply_body
from mlbridge.services.store.schemas import BridgeRecord
from mlbridge.services.store.tracker import apply_message
from mlbridge.services.webrev import ArtifactKind, WebrevResult, WebrevType

LOG = logging.getLogger("mlbridge.services.conversation")

# First line of the bot comment that lists published webrevs.
WEBREV_COMMENT_MARKER = "<!-- mlbridge webrev comment -->"

INTEGRATION_MARKER = re.compile(r"Pushed as commit ([0-9a-f]{7,40})\.")
_DEPENDENT_BRANCH = re.compile(r"^pr/(\d+)$")

_VERDICT_TEXT = {
    Verdict.APPROVED: "Marked as reviewed by {user}.",
    Verdict.DISAPPROVED: "Changes requested by {user}.",
}


class Plan(NamedTuple):
    """Messages to send, in order, and item ids to mark seen without mail."""

    messages: List[LogicalMessage]
    silent: List[str]


def integration_hash(comments: Sequence[Comment]) -> str | None:
    """Hash from the latest ``Pushed as commit <hash>.`` comment, if any."""
    found = None
    for comment in comments:
        m = INTEGRATION_MARKER.search(comment.body)
        if m:
            found = m.group(1)
    return found


def subject_prefix(pr: PullRequest, mail: MailConfig) -> str:
    if mail.repo_in_subject and mail.branch_in_subject:
        return f"[{pr.repository_name}:{pr.target_branch}] "
    if mail.repo_in_subject:
        return f"[{pr.repository_name}] "
    if mail.branch_in_subject:
        return f"[{pr.target_branch}] "
    return ""


def _commit_list(commits) -> str:
    return "\n".join(f" - {c.summary}" for c in commits)


def _dependency_url(pr: PullRequest) -> str | None:
    m = _DEPENDENT_BRANCH.match(pr.target_branch)
    if not m or not pr.web_url:
        return None
    return f"{pr.web_url.rsplit('/', 1)[0]}/{m.group(1)}"


def _webrev_lines(result: WebrevResult, update: bool) -> List[str]:
    if result.kind is ArtifactKind.MERGE_ARTIFACT_SET or result.note:
        lines = [result.note] if result.note else []
        lines += [f" - {a.description}: {a.uri}" for a in result.artifacts]
        return lines
    if not result.artifacts:
        return []
    if not update:
        return [f" Webrev: {result.artifacts[0].uri}"]
    lines = ["Webrevs:"]
    for artifact in result.artifacts:
        label = "incr" if artifact.type is WebrevType.INCREMENTAL else "full"
        lines.append(f" - {label}: {artifact.uri}")
    return lines


def revision_footer(
    pr: PullRequest,
    message: LogicalMessage,
    result: WebrevResult,
    issue_url: str | None = None,
) -> str:
    """Links section below the separator of a message carrying a revision.

    The thread root lists every commit and links the single webrev; updates
    link both the full and the incremental webrev and the new changes.
    """
    revision = message.revision
    update = message.kind in (MessageKind.INCREMENTAL, MessageKind.REBASE)
    sections: List[str] = []
    links: List[str] = []

    if update:
        changes = ["Changes:", f" - all: {pr.web_url}/files"]
        if revision is not None and revision.previous_hash:
            changes.append(f" - new: {pr.web_url}/files/{revision.previous_hash}..{revision.hash}")
        sections.append("\n".join(changes))
        webrevs = _webrev_lines(result, update=True)
        if webrevs:
            sections.append("\n".join(webrevs))
    else:
        if revision is not None and revision.commits:
            sections.append("Commit messages:\n" + _commit_list(revision.commits))
        links.append(f"Changes: {pr.web_url}/files")
        links.extend(_webrev_lines(result, update=False))

    if issue_url:
        links.append(f"  Issue: {issue_url}")
    if result.stats:
        links.append(f"  Stats: {result.stats}")
    links.append(f"  Patch: {pr.web_url}.diff")
    if pr.fetch_ref:
        links.append(f"  Fetch: git fetch {pr.repository_url} {pr.fetch_ref}:pull/{pr.id}")
    sections.append("\n".join(links))

    tail = [f"PR: {pr.web_url}"]
    dependency = _dependency_url(pr)
    if dependency:
        tail.append(f"Depends on: {dependency}")
    sections.append("\n".join(tail))
    return "\n\n".join(sections)


class Conversation:
    """Turns the activity of one pull request into a Plan."""

    def __init__(
        self,
        bot: BotConfig,
        comments: CommentsConfig,
        mail: MailConfig,
        comment_filter: CommentFilter | None = None,
        file_lines: Callable[[str, str], List[str]] | None = None,
        repository_web_url: str = "",
    ) -> None:
        self.bot = bot
        self.comments = comments
        self.mail = mail
        self.filter = comment_filter or CommentFilter(
            comments.hidden_marker, comments.ignored_users, comments.ignored_patterns, bot.username
        )
        self.file_lines = file_lines
        self.repository_web_url = repository_web_url.rstrip("/")
        self._ready_patterns = {user.lower(): re.compile(p) for user, p in comments.ready_comments.items()}
        self._ignored = {u.lower() for u in comments.ignored_users}

    @property
    def bot_user(self) -> User:
        return User(username=self.bot.username or self.bot.name, full_name=self.bot.name)

    def is_ready(self, record: BridgeRecord, pr: PullRequest, comments: Sequence[Comment]) -> bool:
        """Whether ``pr`` is (or has already been) ready for review."""
        if record.ready:
            return True
        if not self.comments.ready_labels and not self._ready_patterns:
            return True
        if set(pr.labels).intersection(self.comments.ready_labels):
            return True
        for comment in comments:
            login = comment.author.username.lower()
            pattern = self._ready_patterns.get(login)
            if pattern is not None and login not in self._ignored and pattern.search(comment.body):
                return True
        return False

    def may_open(self, record: BridgeRecord, pr: PullRequest, comments: Sequence[Comment]) -> bool:
        """Whether a thread exists for ``pr`` or would be started now."""
        if record.root_message_id:
            return True
        if pr.state is PRState.OPEN:
            return self.is_ready(record, pr, comments)
        if pr.state is PRState.INTEGRATED:
            return integration_hash(comments) is not None
        return False

    def plan(
        self,
        record: BridgeRecord,
        pr: PullRequest,
        comments: Sequence[Comment],
        review_comments: Sequence[ReviewComment],
        reviews: Sequence[Review],
        revision: Revision | None,
        now: datetime | None = None,
    ) -> Plan:
        """Plan everything ``pr`` has to say that ``record`` has not bridged yet."""
        now = now or datetime.now(UTC)
        view = record.model_copy(deep=True)
        messages: List[LogicalMessage] = []
        silent: List[str] = []

        def emit(message: LogicalMessage) -> None:
            messages.append(message)
            apply_message(view, message)

        pushed = integration_hash(comments) if pr.state is PRState.INTEGRATED else None

        if not view.root_message_id:
            if not self.may_open(view, pr, comments) or revision is None:
                return Plan([], [])
            if pr.state is PRState.OPEN:
                emit(self._rfr(pr, revision))
            else:
                emit(self._integrated(view, pr, pushed, revision))
        elif revision is not None and revision.hash != view.last_revision and not view.is_bridged(f"rev:{revision.hash}"):
            emit(self._revision_update(view, pr, revision, now))

        for message_or_id in self._activity(view, pr, comments, review_comments, reviews):
            if isinstance(message_or_id, str):
                silent.append(message_or_id)
                view.bridged.append(message_or_id)
            else:
                emit(message_or_id)

        if pushed and not view.is_bridged("integrated"):
            emit(self._integrated(view, pr, pushed, None, now))
        elif pr.state is PRState.CLOSED and not view.is_bridged("withdrawn"):
            emit(self._withdrawn(view, pr, now))

        return Plan(messages, silent)

    # Thread root and revisions

    def _message_id(self, pr: PullRequest, key: str) -> str:
        return message_id_for(pr.id, key, self.bot.message_domain)

    def _rfr(self, pr: PullRequest, revision: Revision) -> LogicalMessage:
        return LogicalMessage(
            kind=MessageKind.RFR,
            item_ids=["rfr", f"rev:{revision.hash}"],
            author=pr.author,
            subject=f"{subject_prefix(pr, self.mail)}RFR: {pr.title}",
            body=filter_body(pr.body, self.comments.hidden_marker),
            message_id=self._message_id(pr, "rfr"),
            version=1,
            created_at=pr.created_at,
            revision=revision,
        )

    def _reply_subject(self, view: BridgeRecord, version: int | None = None) -> str:
        version = version or view.version
        subject = f"Re: {view.root_subject}"
        if version >= 2:
            subject += f" [v{version}]"
        return subject

    def _root_key(self, view: BridgeRecord) -> str:
        for key, ref in view.messages.items():
            if ref.message_id == view.root_message_id:
                return key
        return "rfr"

    def _references(self, view: BridgeRecord, parent_id: str) -> List[str]:
        refs = [view.root_message_id]
        if parent_id != view.root_message_id:
            refs.append(parent_id)
        return refs

    def _revision_update(self, view: BridgeRecord, pr: PullRequest, revision: Revision, now: datetime) -> LogicalMessage:
        version = view.version + 1
        name = pr.author.display_name
        new = revision.new_commits or revision.commits
        count = f"{len(new)} new commit{'s' if len(new) != 1 else ''}"
        if revision.kind is RevisionKind.REBASED:
            kind = MessageKind.REBASE
            text = (
                f"{name} has updated the pull request with a new target base due to a merge or a rebase. "
                "The webrev excludes the unrelated changes brought in by the merge/rebase. "
                f"The pull request contains {count} since the last revision:"
            )
        elif revision.kind is RevisionKind.INCREMENTAL:
            kind = MessageKind.INCREMENTAL
            added = "one additional commit" if len(new) == 1 else f"{len(new)} additional commits"
            text = f"{name} has updated the pull request incrementally with {added} since the last revision:"
        else:
            kind = MessageKind.INCREMENTAL
            text = (
                f"{name} has refreshed the contents of this pull request, and previous commits have been removed. "
                f"The pull request contains {count} since the last revision:"
            )
        key = f"rev:{revision.hash}"
        return LogicalMessage(
            kind=kind,
            item_ids=[key],
            author=pr.author,
            subject=self._reply_subject(view, version),
            body=f"{text}\n\n{_commit_list(new)}",
            message_id=self._message_id(pr, key),
            in_reply_to=view.root_message_id,
            references=[view.root_message_id],
            version=version,
            created_at=now,
            revision=revision,
        )

    def _integration_text(self, commit_hash: str) -> str:
        lines = ["This pull request has now been integrated.", "", f"Changeset: {commit_hash[:8]}"]
        if self.repository_web_url:
            lines.append(f"URL: {self.repository_web_url}/commit/{commit_hash}")
        return "\n".join(lines)

    def _integrated(
        self,
        view: BridgeRecord,
        pr: PullRequest,
        commit_hash: str,
        revision: Revision | None,
        now: datetime | None = None,
    ) -> LogicalMessage:
        subject = f"{subject_prefix(pr, self.mail)}Integrated: {pr.title}"
        text = self._integration_text(commit_hash)
        if revision is not None:
            # Integrated before it was ever ready: this notice starts the thread.
            body = filter_body(pr.body, self.comments.hidden_marker)
            return LogicalMessage(
                kind=MessageKind.INTEGRATED,
                item_ids=["integrated", f"rev:{revision.hash}"],
                author=self.bot_user,
                subject=subject,
                body=f"{body}\n\n{text}" if body else text,
                message_id=self._message_id(pr, "integrated"),
                version=1,
                created_at=now or pr.updated_at,
                revision=revision,
            )
        return LogicalMessage(
            kind=MessageKind.INTEGRATED,
            item_ids=["integrated"],
            author=self.bot_user,
            subject=subject,
            body=text,
            message_id=self._message_id(pr, "integrated"),
            in_reply_to=view.root_message_id,
            references=[view.root_message_id],
            created_at=now,
        )

    def _withdrawn(self, view: BridgeRecord, pr: PullRequest, now: datetime) -> LogicalMessage:
        return LogicalMessage(
            kind=MessageKind.WITHDRAWN,
            item_ids=["withdrawn"],
            author=self.bot_user,
            subject=f"{subject_prefix(pr, self.mail)}Withdrawn: {pr.title}",
            body="This pull request has been closed without being integrated.",
            message_id=self._message_id(pr, "withdrawn"),
            in_reply_to=view.root_message_id,
            references=[view.root_message_id],
            created_at=now,
        )

    # Comments and reviews

    def _activity(
        self,
        view: BridgeRecord,
        pr: PullRequest,
        comments: Sequence[Comment],
        review_comments: Sequence[ReviewComment],
        reviews: Sequence[Review],
    ):
        """Yield messages and silent item ids for new comments and reviews.

        Items are handled in creation order, and each message is applied to
        ``view`` by the caller before the next one is planned.
        """
        bodies: Dict[str, str] = {}
        pending = []

        new_comments = []
        for comment in comments:
            item_id = f"c:{comment.id}"
            if view.is_bridged(item_id):
                continue
            if comment.id == view.webrev_comment_id or WEBREV_COMMENT_MARKER in comment.body:
                LOG.debug("PR #%s: comment %s is the webrev comment", pr.id, comment.id)
                pending.append((comment.created_at, item_id))
                continue
            result = self.filter.classify(comment.body, comment.author)
            if not result.keep:
                LOG.debug("PR #%s: comment %s not bridged (%s)", pr.id, comment.id, result.outcome.value)
                pending.append((comment.created_at, item_id))
                continue
            bodies[item_id] = result.body
            new_comments.append(comment)

        new_review_comments = []
        for rc in review_comments:
            item_id = f"rc:{rc.id}"
            if view.is_bridged(item_id):
                continue
            result = self.filter.classify(rc.body, rc.author)
            if not result.keep:
                LOG.debug("PR #%s: review comment %s not bridged (%s)", pr.id, rc.id, result.outcome.value)
                pending.append((rc.created_at, item_id))
                continue
            bodies[item_id] = result.body
            new_review_comments.append(rc)

        for batch in combine(new_comments, new_review_comments, review_comments):
            pending.append((batch.created_at, batch))

        for review in reviews:
            if not view.is_bridged(f"rv:{review.id}"):
                pending.append((review.created_at, review))

        by_id = {rc.id: rc for rc in review_comments}
        for _, item in sorted(pending, key=lambda p: p[0]):
            if isinstance(item, str):
                yield item
            elif isinstance(item, CommentBatch):
                if item.kind is MessageKind.COMMENT:
                    yield self._comment(view, pr, item.comments[0], bodies)
                else:
                    yield self._review_comments(view, pr, item, bodies, by_id)
            else:
                yield self._review(view, pr, item)

    def _anchor(self, view: BridgeRecord, body: str) -> str:
        """Key of the message a top-level comment replies to."""
        quoted = [line for line in quoted_text(body).split("\n") if line.strip()]
        if quoted:
            matches = [k for k, ref in view.messages.items() if all(line in ref.quote for line in quoted)]
            if matches:
                return max(matches, key=lambda k: view.messages[k].date)
        for login in mentions(body):
            key = view.latest_message_by(login)
            if key:
                return key
        return self._root_key(view)

    def _reply(
        self,
        view: BridgeRecord,
        pr: PullRequest,
        kind: MessageKind,
        item_ids: List[str],
        author: User,
        parent_key: str,
        text: str,
        created_at: datetime,
        quote_parent: bool = True,
        **extra,
    ) -> LogicalMessage:
        parent = view.messages.get(parent_key) or view.messages[self._root_key(view)]
        if quote_parent:
            body = reply_body(
                datetime.fromisoformat(parent.date), parent.author_name or parent.author_username, parent.quote, text
            )
        else:
            body = text
        return LogicalMessage(
            kind=kind,
            item_ids=item_ids,
            author=author,
            subject=self._reply_subject(view),
            body=body,
            message_id=self._message_id(pr, item_ids[0]),
            in_reply_to=parent.message_id,
            references=self._references(view, parent.message_id),
            created_at=created_at,
            **extra,
        )

    def _comment(self, view: BridgeRecord, pr: PullRequest, comment: Comment, bodies: Dict[str, str]) -> LogicalMessage:
        text = bodies[f"c:{comment.id}"]
        return self._reply(
            view,
            pr,
            MessageKind.COMMENT,
            [f"c:{comment.id}"],
            comment.author,
            self._anchor(view, text),
            text,
            comment.created_at,
        )

    def _context(self, rc: ReviewComment) -> str:
        if self.file_lines is None or not rc.hash or not rc.line:
            return ""
        try:
            return inline_context(self.file_lines(rc.hash, rc.path), rc.line)
        except GitRunnerError as e:
            LOG.warning("No context for %s line %s at %s: %s", rc.path, rc.line, rc.hash, e)
            return ""

    def _review_comments(
        self,
        view: BridgeRecord,
        pr: PullRequest,
        batch: CommentBatch,
        bodies: Dict[str, str],
        by_id: Dict[str, ReviewComment],
    ) -> LogicalMessage:
        first = batch.comments[0]
        threads = list(dict.fromkeys(thread_root(rc, by_id) for rc in batch.comments))
        if first.parent_id:
            # Reply in an existing review thread.
            parent_key = view.thread_heads.get(batch.thread_id or first.id) or self._root_key(view)
            return self._reply(
                view,
                pr,
                MessageKind.REVIEW_COMMENT_GROUP,
                batch.item_ids,
                first.author,
                parent_key,
                bodies[f"rc:{first.id}"],
                first.created_at,
                thread_ids=threads,
            )

        parts = []
        for rc in batch.comments:
            if rc.line:
                part = f"{rc.path} line {rc.line}:\n\n"
                context = self._context(rc)
                if context:
                    part += f"{context}\n\n"
            else:
                part = f"{rc.path}:\n\n"
            if rc.author.username != first.author.username:
                part += f"{rc.author.full_name or rc.author.username} wrote:\n\n"
            parts.append(part + bodies[f"rc:{rc.id}"])
        return self._reply(
            view,
            pr,
            MessageKind.REVIEW_COMMENT_GROUP,
            batch.item_ids,
            first.author,
            self._anchor(view, bodies[f"rc:{first.id}"]),
            "\n\n".join(parts),
            first.created_at,
            quote_parent=False,
            thread_ids=threads,
        )

    def _review(self, view: BridgeRecord, pr: PullRequest, review: Review) -> LogicalMessage | str:
        item_id = f"rv:{review.id}"
        result = self.filter.classify(review.body, review.author)
        if result.outcome in (FilterOutcome.DROP_IGNORED_USER, FilterOutcome.DROP_IGNORED_PATTERN):
            return item_id
        text = result.body
        login = review.author.username
        changed = review.verdict is not Verdict.NONE and view.verdicts.get(login) != review.verdict.value
        if changed:
            marker = _VERDICT_TEXT[review.verdict].format(user=login)
            text = f"{text}\n\n{marker}" if text else marker
            return self._reply(
                view,
                pr,
                MessageKind.REVIEW_VERDICT,
                [item_id],
                review.author,
                self._anchor(view, result.body),
                text,
                review.created_at,
                verdict=review.verdict.value,
            )
        if text:
            return self._reply(
                view, pr, MessageKind.COMMENT, [item_id], review.author, self._anchor(view, text), text, review.created_at
            )
        return item_id
