"""Bridge pass: project pull request activity onto the archive and the lists.

One pass lists the pull requests of the configured repository and, for each
one, delivers mail left undelivered by an earlier pass, works out the
current revision, asks the conversation for a plan and emits it. Every
message goes through the same steps:

1. webrevs are published (revision messages only) and the footer filled in
2. the mail is appended to the archive and pushed
3. the bridge record is updated and saved, listing the mail as undelivered
4. the mail is sent over SMTP and marked delivered

A message already present in the archive is recorded and delivered without
being archived again. Failures local to one pull request are logged and the
pass moves on; configuration, webrev publishing and archive failures abort
the pass.
"""

import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Dict, List

from mlbridge.adapters import GitHubAdapter, ReviewHostAdapter, ReviewHostError, UrlIssueTracker
from mlbridge.config import AppConfig
from mlbridge.errors import ContentError, DeliveryError
from mlbridge.logging import pr_logger
from mlbridge.models import LogicalMessage, PRState, PullRequest, Revision, RevisionKind
from mlbridge.scheduler import CooldownScheduler
from mlbridge.services.archive import MboxArchive
from mlbridge.services.composer import MailComposer, recipients_for
from mlbridge.services.conversation import WEBREV_COMMENT_MARKER, Conversation, revision_footer
from mlbridge.services.git import GitRunnerError, SourceRepository
from mlbridge.services.store import BridgeRecord, StateTracker, WebrevRef
from mlbridge.services.transport import SmtpTransport
from mlbridge.services.webrev import WebrevEngine, WebrevType

LOG = logging.getLogger("mlbridge.bridge")

_WEBREV_LABELS = {
    WebrevType.FULL.value: "Full",
    WebrevType.INCREMENTAL.value: "Incremental",
}


def webrev_comment_body(webrevs: List[WebrevRef]) -> str:
    """Body of the bot comment listing every published webrev."""
    lines = [WEBREV_COMMENT_MARKER, "### Webrevs", ""]
    for w in webrevs:
        label = w.description or _WEBREV_LABELS.get(w.type, w.type)
        lines.append(f" * {w.identifier}: [{label}]({w.uri}) ({w.head[:8]})")
    return "\n".join(lines)


class Bridge:
    """Runs bridge passes for one repository."""

    def __init__(
        self,
        config: AppConfig,
        host: ReviewHostAdapter,
        repo: SourceRepository,
        engine: WebrevEngine,
        archive: MboxArchive,
        transport: SmtpTransport,
        composer: MailComposer,
        tracker: StateTracker,
        conversation: Conversation,
        cooldown: CooldownScheduler,
        issue_tracker: UrlIssueTracker | None = None,
    ) -> None:
        self.config = config
        self.host = host
        self.repo = repo
        self.engine = engine
        self.archive = archive
        self.transport = transport
        self.composer = composer
        self.tracker = tracker
        self.conversation = conversation
        self.cooldown = cooldown
        self.issue_tracker = issue_tracker

    @classmethod
    def from_config(cls, config: AppConfig, host: ReviewHostAdapter | None = None) -> "Bridge":
        """Wire every component from ``config``. Raises ConfigurationError."""
        config.validate_identity()
        repo = SourceRepository(Path(config.repository.local_dir))
        archive = MboxArchive(
            config.archive.url,
            config.archive.ref,
            Path(config.archive.local_dir),
            config.bot.name,
            config.bot.email,
        )
        issue_tracker = None
        if config.issue_tracker.base_uri:
            issue_tracker = UrlIssueTracker(
                config.issue_tracker.base_uri, config.issue_tracker.project, config.issue_tracker.verify
            )
        return cls(
            config=config,
            host=host or GitHubAdapter(config.github_token_resolved, config.github.api_url),
            repo=repo,
            engine=WebrevEngine.from_config(config, repo),
            archive=archive,
            transport=SmtpTransport(
                config.mail.smtp_host,
                config.mail.smtp_port,
                config.mail.smtp_user,
                config.smtp_password_resolved,
                envelope_from=config.bot.email,
            ),
            composer=MailComposer(config.bot, config.mail.headers),
            tracker=StateTracker(Path(config.bridge.state_dir), archive),
            conversation=Conversation(
                config.bot,
                config.comments,
                config.mail,
                file_lines=repo.file_lines,
                repository_web_url=config.repository.web_url,
            ),
            cooldown=CooldownScheduler(timedelta(seconds=config.bridge.cooldown_seconds)),
            issue_tracker=issue_tracker,
        )

    def _now(self) -> datetime:
        return datetime.now(UTC)

    def run_pass(self) -> int:
        """Bridge every pull request once. Returns the number of mails sent."""
        self.repo.ensure()
        self.archive.refresh()
        prs = self.host.list_pull_requests(self.config.repository.name)
        targets: Dict[str, str] = {}
        sent = 0
        failed = 0
        try:
            for pr in prs:
                try:
                    sent += self.bridge_pr(pr, targets)
                except (ContentError, ReviewHostError, DeliveryError, GitRunnerError) as e:
                    failed += 1
                    LOG.exception("PR #%s: bridging failed: %s", pr.id, e)
        finally:
            self.cooldown.end_pass()
        LOG.info("Pass done: %s pull requests, %s mails sent, %s failed", len(prs), sent, failed)
        return sent

    def _target_hash(self, pr: PullRequest, targets: Dict[str, str]) -> str:
        if pr.target_branch not in targets:
            targets[pr.target_branch] = self.repo.fetch(self.config.repository.url, pr.target_branch)
        return targets[pr.target_branch]

    def revision_for(self, record: BridgeRecord, pr: PullRequest, target_hash: str) -> Revision:
        """Fetch the head of ``pr`` and classify it against the last bridged revision."""
        head = self.repo.fetch(pr.repository_url or self.config.repository.url, pr.fetch_ref)
        merge_base = self.repo.merge_base(target_hash, head)
        commits = self.repo.commits(merge_base, head)
        previous = record.last_revision
        revision = Revision(hash=head, merge_base=merge_base, previous_hash=previous, commits=commits)
        if previous is None:
            revision.new_commits = commits
            return revision
        extends = self.repo.has_commit(previous) and self.repo.is_ancestor(previous, head)
        if record.last_base and merge_base != record.last_base:
            revision.kind = RevisionKind.REBASED
            if extends:
                own = {c.hash for c in commits}
                revision.new_commits = [c for c in self.repo.commits(previous, head) if c.hash in own]
            else:
                revision.new_commits = commits
        elif extends:
            revision.kind = RevisionKind.INCREMENTAL
            revision.new_commits = self.repo.commits(previous, head)
        else:
            revision.kind = RevisionKind.FORCE_PUSHED
            revision.new_commits = commits
        return revision

    def bridge_pr(self, pr: PullRequest, targets: Dict[str, str] | None = None) -> int:
        """Bridge the pending activity of one pull request. Returns mails sent."""
        log = pr_logger(LOG, pr.id)
        targets = targets if targets is not None else {}
        record = self.tracker.load(pr.id, pr.repository)
        sent = self._deliver_pending(record, pr)

        if not record.root_message_id and pr.state is PRState.CLOSED:
            return sent
        comments = self.host.get_comments(pr.repository, pr.id)
        if not self.conversation.may_open(record, pr, comments):
            log.debug("not ready for review yet")
            return sent
        recipients = recipients_for(pr, self.config.mail.lists)
        if not recipients:
            log.debug("no mailing list matches labels %s", pr.labels)
            return sent

        review_comments = self.host.get_review_comments(pr.repository, pr.id)
        reviews = self.host.get_reviews(pr.repository, pr.id)
        target_hash = self._target_hash(pr, targets)
        revision = None
        if not record.root_message_id or record.last_revision != pr.head_hash:
            revision = self.revision_for(record, pr, target_hash)

        now = self._now()
        plan = self.conversation.plan(record, pr, comments, review_comments, reviews, revision, now)
        if plan.silent:
            log.debug("marking %s as seen", plan.silent)
            self.tracker.mark_seen(record, plan.silent)

        webrevs_before = len(record.webrevs)
        if plan.messages and not self.cooldown.may_emit(record, now):
            log.info(
                "%s messages held back by cooldown for %s", len(plan.messages), self.cooldown.remaining(record, now)
            )
        else:
            for message in plan.messages:
                self._emit(record, pr, message, recipients, target_hash)
                sent += 1
        if len(record.webrevs) > webrevs_before or (record.webrevs and not record.webrev_comment_id):
            self._update_webrev_comment(record, pr)
        return sent

    def _deliver_pending(self, record: BridgeRecord, pr: PullRequest) -> int:
        """Send archived mail a previous pass did not get to deliver."""
        sent = 0
        for message_id in list(record.undelivered):
            mail = self.archive.load(pr.id, message_id)
            if mail is None:
                LOG.warning("PR #%s: undelivered %s is not in the archive, dropping it", pr.id, message_id)
            else:
                self.transport.send(mail)
                sent += 1
            self.tracker.mark_delivered(record, message_id)
        return sent

    def _emit(
        self,
        record: BridgeRecord,
        pr: PullRequest,
        message: LogicalMessage,
        recipients: List[str],
        target_hash: str,
    ) -> None:
        log = pr_logger(LOG, pr.id)
        if self.tracker.in_archive(message.message_id):
            log.info("%s already archived, delivering without archiving again", message.message_id)
            if message.revision is not None and message.version:
                if not any(w.version == message.version for w in record.webrevs):
                    # Publishing an already published webrev pushes nothing.
                    result = self.engine.for_revision(pr, message.revision, message.version, target_hash)
                    self.tracker.record_webrevs(record, message.version, message.revision.hash, result.artifacts)
            self.tracker.record_bridged(record, message, self._now())
            self._deliver_pending(record, pr)
            return

        if message.revision is not None and message.version:
            result = self.engine.for_revision(pr, message.revision, message.version, target_hash)
            self.tracker.record_webrevs(record, message.version, message.revision.hash, result.artifacts)
            issue_url = self.issue_tracker.issue_url(pr.title) if self.issue_tracker else None
            message = message.model_copy(update={"footer": revision_footer(pr, message, result, issue_url)})

        mail = self.composer.compose(message, recipients)
        self.archive.append(pr.id, mail)
        self.tracker.record_bridged(record, message, self._now())
        self.transport.send(mail)
        self.tracker.mark_delivered(record, message.message_id)
        log.info("sent %s (%s)", message.subject, message.kind.value)

    def _update_webrev_comment(self, record: BridgeRecord, pr: PullRequest) -> None:
        body = webrev_comment_body(record.webrevs)
        if record.webrev_comment_id:
            self.host.update_comment(pr.repository, pr.id, record.webrev_comment_id, body)
            return
        comment = self.host.create_comment(pr.repository, pr.id, body)
        record.webrev_comment_id = comment.id
        self.tracker.save(record)
