"""Tests for mlbridge.services.conversation (planning a PR thread)."""

from typing import List

import pytest

from mlbridge.config import BotConfig, CommentsConfig, MailConfig, MailingListConfig
from mlbridge.models import Commit, MessageKind, PRState, Revision, RevisionKind, Verdict
from mlbridge.services.conversation import (
    WEBREV_COMMENT_MARKER,
    Conversation,
    Plan,
    integration_hash,
    revision_footer,
    subject_prefix,
)
from mlbridge.services.store import BridgeRecord, new_record
from mlbridge.services.store.tracker import apply_message
from mlbridge.services.webrev import ArtifactKind, WebrevArtifact, WebrevResult, WebrevType
from tests.helpers import at, make_comment, make_pr, make_review, make_review_comment

BASE = "a" * 40
HEAD1 = "b" * 40
HEAD2 = "c" * 40
HEAD3 = "d" * 40

TITLE = "1234: Fix the frobnicator"


def _revision(
    head: str = HEAD1,
    base: str = BASE,
    kind: RevisionKind = RevisionKind.FIRST,
    previous: str | None = None,
    summaries: List[str] | None = None,
) -> Revision:
    commits = [Commit(hash=head, parents=[base], message=s) for s in (summaries or ["Fix the frobnicator"])]
    return Revision(hash=head, merge_base=base, kind=kind, previous_hash=previous, commits=commits, new_commits=commits)


def _apply(record: BridgeRecord, plan: Plan) -> BridgeRecord:
    for message in plan.messages:
        apply_message(record, message)
    for item_id in plan.silent:
        if item_id not in record.bridged:
            record.bridged.append(item_id)
    return record


@pytest.fixture
def conversation(bot, comments_config, mail_config) -> Conversation:
    return Conversation(bot, comments_config, mail_config)


@pytest.fixture
def opened(conversation) -> BridgeRecord:
    """Record of PR 1 after its RFR has been sent."""
    record = new_record("1", "openjdk/playground")
    return _apply(record, conversation.plan(record, make_pr(), [], [], [], _revision(), at(1)))


class TestThreadStart:
    def test_ready_pr_gets_rfr(self, conversation) -> None:
        """A ready PR opens its thread with a v1 RFR carrying the PR body."""
        record = new_record("1", "openjdk/playground")
        plan = conversation.plan(record, make_pr(), [], [], [], _revision(), at(1))
        assert len(plan.messages) == 1
        rfr = plan.messages[0]
        assert rfr.kind is MessageKind.RFR
        assert rfr.subject == f"RFR: {TITLE}"
        assert rfr.message_id == "<pr1.rfr@example.org>"
        assert rfr.in_reply_to is None
        assert rfr.version == 1
        assert rfr.body == "This fixes the frobnicator."
        assert rfr.item_ids == ["rfr", f"rev:{HEAD1}"]
        assert record.root_message_id is None

    def test_not_ready_pr_is_silent(self, conversation) -> None:
        record = new_record("1", "openjdk/playground")
        plan = conversation.plan(record, make_pr(labels=[]), [], [], [], _revision(), at(1))
        assert plan.messages == [] and plan.silent == []

    def test_ready_comment_only_counts_for_its_user(self, bot, mail_config) -> None:
        """ready_comments maps a login to the pattern only that login may use."""
        comments = CommentsConfig(ready_comments={"duke": "ready for review"})
        conv = Conversation(bot, comments, mail_config)
        record = new_record("1", "openjdk/playground")
        pr = make_pr(labels=[])
        assert not conv.is_ready(record, pr, [make_comment("1", "ready for review", user="other")])
        assert conv.is_ready(record, pr, [make_comment("2", "This is ready for review", user="duke")])

    def test_without_ready_rules_every_open_pr_is_ready(self, bot, mail_config) -> None:
        conv = Conversation(bot, CommentsConfig(), mail_config)
        assert conv.is_ready(new_record("1", "o/r"), make_pr(labels=[]), [])

    def test_subject_prefix(self) -> None:
        pr = make_pr()
        both = MailConfig(lists=[MailingListConfig(address="x@y")], repo_in_subject=True, branch_in_subject=True)
        assert subject_prefix(pr, both) == "[playground:master] "
        assert subject_prefix(pr, MailConfig(repo_in_subject=True)) == "[playground] "
        assert subject_prefix(pr, MailConfig(branch_in_subject=True)) == "[master] "
        assert subject_prefix(pr, MailConfig()) == ""


class TestRevisions:
    def test_incremental_update(self, conversation, opened) -> None:
        """A same-base extension is an incremental v2 reply to the RFR."""
        revision = _revision(HEAD2, kind=RevisionKind.INCREMENTAL, previous=HEAD1, summaries=["Second"])
        plan = conversation.plan(opened, make_pr(head_hash=HEAD2), [], [], [], revision, at(5))
        assert len(plan.messages) == 1
        update = plan.messages[0]
        assert update.kind is MessageKind.INCREMENTAL
        assert update.subject == f"Re: RFR: {TITLE} [v2]"
        assert update.in_reply_to == "<pr1.rfr@example.org>"
        assert "incrementally with one additional commit" in update.body
        assert " - Second" in update.body
        assert "new target base" not in update.body

    def test_rebase_update(self, conversation, opened) -> None:
        """A changed merge base is announced as a new target base, not as incremental."""
        revision = _revision(HEAD2, base="e" * 40, kind=RevisionKind.REBASED, previous=HEAD1)
        plan = conversation.plan(opened, make_pr(head_hash=HEAD2), [], [], [], revision, at(5))
        update = plan.messages[0]
        assert update.kind is MessageKind.REBASE
        assert update.subject == f"Re: RFR: {TITLE} [v2]"
        assert "new target base" in update.body
        assert "incremental" not in update.body

    def test_force_push_update(self, conversation, opened) -> None:
        revision = _revision(HEAD2, kind=RevisionKind.FORCE_PUSHED, previous=HEAD1)
        update = conversation.plan(opened, make_pr(head_hash=HEAD2), [], [], [], revision, at(5)).messages[0]
        assert "previous commits have been removed" in update.body

    def test_versions_increase_and_are_not_reused(self, conversation, opened) -> None:
        """Each new revision advances the version; replaying one adds nothing."""
        second = _revision(HEAD2, kind=RevisionKind.INCREMENTAL, previous=HEAD1)
        _apply(opened, conversation.plan(opened, make_pr(head_hash=HEAD2), [], [], [], second, at(5)))
        assert conversation.plan(opened, make_pr(head_hash=HEAD2), [], [], [], second, at(6)).messages == []

        third = _revision(HEAD3, kind=RevisionKind.INCREMENTAL, previous=HEAD2)
        plan = conversation.plan(opened, make_pr(head_hash=HEAD3), [], [], [], third, at(7))
        assert plan.messages[0].subject == f"Re: RFR: {TITLE} [v3]"
        assert plan.messages[0].version == 3


class TestLifecycle:
    def test_withdrawn_exactly_once(self, conversation, opened) -> None:
        """A closed PR gets one Withdrawn notice, later comments only their own replies."""
        closed = make_pr(state=PRState.CLOSED)
        plan = conversation.plan(opened, closed, [], [], [], None, at(5))
        assert [m.kind for m in plan.messages] == [MessageKind.WITHDRAWN]
        assert plan.messages[0].subject == f"Withdrawn: {TITLE}"
        assert plan.messages[0].author.username == "mlbridge"
        _apply(opened, plan)

        later = [make_comment("9", "Why was this closed?", minutes=30)]
        plan = conversation.plan(opened, closed, later, [], [], None, at(31))
        assert [m.kind for m in plan.messages] == [MessageKind.COMMENT]

    def test_integrated_waits_for_marker(self, conversation, opened) -> None:
        """The Integrated notice is deferred until the push comment exists."""
        integrated = make_pr(state=PRState.INTEGRATED)
        assert conversation.plan(opened, integrated, [], [], [], None, at(5)).messages == []

        marker = make_comment("99", f"Pushed as commit {HEAD1}.", user="mlbridge", minutes=6)
        plan = conversation.plan(opened, integrated, [marker], [], [], None, at(7))
        assert [m.kind for m in plan.messages] == [MessageKind.INTEGRATED]
        assert plan.messages[0].subject == f"Integrated: {TITLE}"
        assert plan.messages[0].in_reply_to == "<pr1.rfr@example.org>"
        assert f"Changeset: {HEAD1[:8]}" in plan.messages[0].body
        assert plan.silent == ["c:99"]

    def test_direct_to_integrated_starts_thread(self, conversation) -> None:
        """A PR never seen ready gets a single Integrated root and no RFR."""
        record = new_record("1", "openjdk/playground")
        pr = make_pr(labels=[], state=PRState.INTEGRATED)
        marker = make_comment("99", f"Pushed as commit {HEAD1}.", user="mlbridge", minutes=6)
        plan = conversation.plan(record, pr, [marker], [], [], _revision(), at(7))
        assert [m.kind for m in plan.messages] == [MessageKind.INTEGRATED]
        assert plan.messages[0].in_reply_to is None
        assert plan.messages[0].subject == f"Integrated: {TITLE}"
        _apply(record, plan)

        push = _revision(HEAD2, kind=RevisionKind.INCREMENTAL, previous=HEAD1)
        plan = conversation.plan(record, pr.model_copy(update={"head_hash": HEAD2}), [marker], [], [], push, at(9))
        assert [m.subject for m in plan.messages] == [f"Re: Integrated: {TITLE} [v2]"]

    def test_integration_hash_uses_latest_marker(self) -> None:
        comments = [
            make_comment("1", "Pushed as commit 1234567."),
            make_comment("2", "Pushed as commit abcdef0."),
        ]
        assert integration_hash(comments) == "abcdef0"
        assert integration_hash([make_comment("3", "no marker")]) is None


class TestComments:
    def test_filtered_body_is_bridged(self, conversation, opened) -> None:
        """Hidden sections and HTML comments never reach the mail."""
        body = (
            "This should now be ready\n<!-- hidden -->\nAnd this is not\n"
            "<!-- Anything below this marker will be hidden -->\nStatus stuff"
        )
        plan = conversation.plan(opened, make_pr(), [make_comment("5", body)], [], [], None, at(11))
        text = plan.messages[0].text
        assert "This should now be ready" in text
        assert "And this is not" in text
        for hidden in ("hidden", "Status stuff", "<!--", "-->"):
            assert hidden not in text

    def test_comment_replies_to_root_with_quote(self, conversation, opened) -> None:
        plan = conversation.plan(opened, make_pr(), [make_comment("5", "Looks good")], [], [], None, at(11))
        reply = plan.messages[0]
        assert reply.kind is MessageKind.COMMENT
        assert reply.subject == f"Re: RFR: {TITLE}"
        assert reply.in_reply_to == "<pr1.rfr@example.org>"
        assert "Duke Duck wrote:" in reply.body
        assert "> This fixes the frobnicator." in reply.body
        assert reply.body.endswith("Looks good")

    def test_command_only_comment_is_marked_seen(self, conversation, opened) -> None:
        """A comment that is empty after filtering sends nothing but is not re-checked."""
        plan = conversation.plan(opened, make_pr(), [make_comment("5", "/integrate")], [], [], None, at(11))
        assert plan.messages == []
        assert plan.silent == ["c:5"]

    def test_ignored_users_and_patterns(self, conversation, opened) -> None:
        comments = [
            make_comment("5", "bot noise", user="ignoreme"),
            make_comment("6", "IGNORE this", minutes=11),
            make_comment("7", "own comment", user="mlbridge", minutes=12),
        ]
        plan = conversation.plan(opened, make_pr(), comments, [], [], None, at(13))
        assert plan.messages == []
        assert sorted(plan.silent) == ["c:5", "c:6", "c:7"]

    def test_webrev_comment_is_never_bridged(self, comments_config, mail_config, opened) -> None:
        """The bot's webrev comment is skipped by marker or by id, whatever its author login."""
        conversation = Conversation(BotConfig(name="mlbridge", email="bridge@example.org"), comments_config, mail_config)
        opened.webrev_comment_id = "9"
        comments = [
            make_comment("8", f"{WEBREV_COMMENT_MARKER}\n### Webrevs\n\n * 00: [Full](x)", user="bridge-app"),
            make_comment("9", "### Webrevs\n\n * 00: [Full](x)", user="bridge-app", minutes=11),
        ]
        plan = conversation.plan(opened, make_pr(), comments, [], [], None, at(12))
        assert plan.messages == []
        assert sorted(plan.silent) == ["c:8", "c:9"]

    def test_quoting_comment_replies_to_quoted_message(self, conversation, opened) -> None:
        """A comment quoting an earlier message threads under that message."""
        comments = [
            make_comment("5", "Is the loop bound right?", user="alice", minutes=10),
            make_comment("6", "> Is the loop bound right?\n\nYes, it is.", user="duke", minutes=12),
        ]
        plan = conversation.plan(opened, make_pr(), comments, [], [], None, at(13))
        first, second = plan.messages
        assert first.in_reply_to == "<pr1.rfr@example.org>"
        assert second.in_reply_to == "<pr1.c-5@example.org>"
        assert second.references == ["<pr1.rfr@example.org>", "<pr1.c-5@example.org>"]
        assert "Alice wrote:" in second.body

    def test_mention_replies_to_latest_message_of_user(self, conversation, opened) -> None:
        comments = [
            make_comment("5", "Please add a test.", user="alice", minutes=10),
            make_comment("6", "@alice done", user="duke", minutes=12),
        ]
        plan = conversation.plan(opened, make_pr(), comments, [], [], None, at(13))
        assert plan.messages[1].in_reply_to == "<pr1.c-5@example.org>"


class TestReviews:
    def test_verdict_changes_are_bridged_once_each(self, conversation, opened) -> None:
        """Approve, approve again, then request changes: two verdict mails."""
        first = make_review("r1", Verdict.APPROVED, minutes=20)
        plan = conversation.plan(opened, make_pr(), [], [], [first], None, at(21))
        assert [m.kind for m in plan.messages] == [MessageKind.REVIEW_VERDICT]
        assert "Marked as reviewed by reviewer." in plan.messages[0].body
        _apply(opened, plan)

        again = make_review("r2", Verdict.APPROVED, minutes=22)
        plan = conversation.plan(opened, make_pr(), [], [], [first, again], None, at(23))
        assert plan.messages == [] and plan.silent == ["rv:r2"]
        _apply(opened, plan)

        changed = make_review("r3", Verdict.DISAPPROVED, body="Please rename it.", minutes=24)
        plan = conversation.plan(opened, make_pr(), [], [], [first, again, changed], None, at(25))
        body = plan.messages[0].body
        assert "Please rename it." in body
        assert "Changes requested by reviewer." in body

    def test_review_without_verdict_is_a_comment(self, conversation, opened) -> None:
        review = make_review("r1", Verdict.NONE, body="Some general remarks", minutes=20)
        plan = conversation.plan(opened, make_pr(), [], [], [review], None, at(21))
        assert [m.kind for m in plan.messages] == [MessageKind.COMMENT]
        assert plan.messages[0].item_ids == ["rv:r1"]


class TestReviewComments:
    def test_same_line_comments_are_one_message_with_context(self, bot, comments_config, mail_config, opened) -> None:
        conv = Conversation(bot, comments_config, mail_config, file_lines=lambda ref, path: ["l1", "l2", "l3", "l4"])
        rcs = [make_review_comment(str(i), f"Remark {i}", minutes=10 + i) for i in range(1, 5)]
        plan = conv.plan(opened, make_pr(), [], rcs, [], None, at(20))
        assert len(plan.messages) == 1
        group = plan.messages[0]
        assert group.kind is MessageKind.REVIEW_COMMENT_GROUP
        assert group.item_ids == ["rc:1", "rc:2", "rc:3", "rc:4"]
        assert "src/Frob.java line 3:" in group.body
        assert "> 2: l2\n> 3: l3" in group.body
        assert "> 1: l1" not in group.body
        assert all(f"Remark {i}" in group.body for i in range(1, 5))

    def test_group_names_other_authors(self, conversation, opened) -> None:
        """A combined message is sent as its first author and names everyone else."""
        rcs = [
            make_review_comment("1", "Remark one", minutes=11),
            make_review_comment("2", "Remark two", user="duke", minutes=12),
        ]
        (group,) = conversation.plan(opened, make_pr(), [], rcs, [], None, at(20)).messages
        assert group.author.username == "reviewer"
        assert "Duke wrote:\n\nRemark two" in group.body
        assert "Reviewer wrote:" not in group.body

    def test_file_level_comment_has_no_context(self, conversation, opened) -> None:
        rc = make_review_comment("1", "Missing header", line=None)
        body = conversation.plan(opened, make_pr(), [], [rc], [], None, at(20)).messages[0].body
        assert body.startswith("src/Frob.java:\n\nMissing header")

    def test_replies_continue_their_review_thread(self, conversation, opened) -> None:
        """A reply to an already bridged inline comment threads under that comment's message."""
        root = make_review_comment("1", "Off by one?", minutes=10)
        _apply(opened, conversation.plan(opened, make_pr(), [], [root], [], None, at(11)))

        reply = make_review_comment("2", "Fixed.", user="duke", minutes=12, parent_id="1")
        plan = conversation.plan(opened, make_pr(), [], [root, reply], [], None, at(13))
        assert len(plan.messages) == 1
        assert plan.messages[0].in_reply_to == "<pr1.rc-1@example.org>"
        assert "> src/Frob.java line 3:" in plan.messages[0].body
        _apply(opened, plan)
        assert opened.thread_heads["1"] == "rc:2"


class TestRevisionFooter:
    def _result(self, *artifacts: WebrevArtifact) -> WebrevResult:
        return WebrevResult(
            kind=ArtifactKind.HTML_ARTIFACT,
            artifacts=list(artifacts),
            stats="3 lines in 1 file changed: 1 ins; 1 del; 1 mod",
        )

    def test_rfr_footer(self, conversation) -> None:
        record = new_record("1", "openjdk/playground")
        pr = make_pr(target_branch="pr/7")
        rfr = conversation.plan(record, pr, [], [], [], _revision(), at(1)).messages[0]
        full = WebrevArtifact(identifier="00", uri="https://webrevs/1/00", type=WebrevType.FULL)
        footer = revision_footer(pr, rfr, self._result(full), "https://bugs.example.org/browse/JDK-1234")
        assert "Commit messages:\n - Fix the frobnicator" in footer
        assert " Webrev: https://webrevs/1/00" in footer
        assert "  Issue: https://bugs.example.org/browse/JDK-1234" in footer
        assert "  Stats: 3 lines in 1 file changed: 1 ins; 1 del; 1 mod" in footer
        assert f"  Fetch: git fetch {pr.repository_url} pull/1/head:pull/1" in footer
        assert f"PR: {pr.web_url}" in footer
        assert "Depends on: https://github.com/openjdk/playground/pull/7" in footer

    def test_update_footer_lists_full_and_incremental(self, conversation, opened) -> None:
        revision = _revision(HEAD2, kind=RevisionKind.INCREMENTAL, previous=HEAD1)
        pr = make_pr(head_hash=HEAD2)
        update = conversation.plan(opened, pr, [], [], [], revision, at(5)).messages[0]
        result = self._result(
            WebrevArtifact(identifier="01", uri="https://webrevs/1/01", type=WebrevType.FULL),
            WebrevArtifact(identifier="00-01", uri="https://webrevs/1/00-01", type=WebrevType.INCREMENTAL),
        )
        footer = revision_footer(pr, update, result)
        assert f" - new: {pr.web_url}/files/{HEAD1}..{HEAD2}" in footer
        assert "Webrevs:\n - full: https://webrevs/1/01\n - incr: https://webrevs/1/00-01" in footer
        assert "Issue:" not in footer

    def test_trivial_merge_footer_has_only_the_note(self, conversation) -> None:
        record = new_record("1", "openjdk/playground")
        rfr = conversation.plan(record, make_pr(), [], [], [], _revision(), at(1)).messages[0]
        note = "The merge commit only contains trivial merges, so no merge-specific webrevs have been generated."
        result = WebrevResult(kind=ArtifactKind.NO_ARTIFACT_NEEDED, note=note)
        footer = revision_footer(make_pr(), rfr, result)
        assert note in footer
        assert "Webrev:" not in footer
