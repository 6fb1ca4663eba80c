"""Group new inline review comments into outgoing messages.

Inline comments on the same file and line that nobody has replied to yet
go out as one message, whoever wrote them. A comment that has a reply is
pulled out of its group and sent on its own, so that the reply can be
threaded under it. Replies are always sent on their own, continuing the
thread of their root comment. Top-level comments are never combined.
"""

from typing import Dict, Iterable, List, NamedTuple, Sequence

from mlbridge.models import Comment, MessageKind, ReviewComment


class CommentBatch(NamedTuple):
    """Comments that become one outgoing message.

    ``thread_id`` is the id of the root review comment of the thread the
    batch belongs to; None for top-level comments.
    """

    kind: MessageKind
    comments: List[Comment | ReviewComment]
    thread_id: str | None = None

    @property
    def item_ids(self) -> List[str]:
        prefix = "rc:" if self.kind is MessageKind.REVIEW_COMMENT_GROUP else "c:"
        return [prefix + c.id for c in self.comments]

    @property
    def created_at(self):
        return self.comments[0].created_at


def thread_root(comment: ReviewComment, by_id: Dict[str, ReviewComment]) -> str:
    """Id of the comment at the top of ``comment``'s reply chain."""
    seen = set()
    current = comment
    while current.parent_id and current.parent_id in by_id and current.id not in seen:
        seen.add(current.id)
        current = by_id[current.parent_id]
    return current.id


def combine(
    new_comments: Iterable[Comment],
    new_review_comments: Iterable[ReviewComment],
    all_review_comments: Sequence[ReviewComment],
) -> List[CommentBatch]:
    """Turn the comments discovered in one pass into message batches.

    ``all_review_comments`` is every review comment on the pull request,
    bridged or not, and is used to detect replies. Batches come back in
    discovery order (by the creation time of their first comment).
    """
    by_id = {rc.id: rc for rc in all_review_comments}
    replied = {rc.parent_id for rc in all_review_comments if rc.parent_id}

    batches: List[CommentBatch] = [CommentBatch(MessageKind.COMMENT, [c]) for c in new_comments]

    groups: Dict[tuple, CommentBatch] = {}
    for rc in sorted(new_review_comments, key=lambda c: c.created_at):
        root = thread_root(rc, by_id)
        if rc.parent_id or rc.id in replied:
            batches.append(CommentBatch(MessageKind.REVIEW_COMMENT_GROUP, [rc], root))
            continue
        key = (rc.path, rc.line)
        if key in groups:
            groups[key].comments.append(rc)
        else:
            groups[key] = CommentBatch(MessageKind.REVIEW_COMMENT_GROUP, [rc], root)
            batches.append(groups[key])

    return sorted(batches, key=lambda b: b.created_at)
