"""Repository for memos stored as tracker issues.

Each memo is one issue. The issue title is the first content line, the
body is the metadata block plus content, tags and the pinned flag are
labels, and the open/closed state is the memo state. The tracker cannot
delete issues, so deletion closes the issue and replaces all of its
labels with the reserved ``deleted`` label.
"""
import logging
import re
import threading
import weakref
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from issuememo_mcp.config import TrackerConfig
from issuememo_mcp.exceptions import (
    ErrorCode,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from issuememo_mcp.models.schema import (
    REACTION_TYPES,
    Attachment,
    ListMemosResponse,
    Location,
    Memo,
    MemoComment,
    MemoPatch,
    MemoProperty,
    MemoRelation,
    MemoState,
    Reaction,
    Visibility,
    parse_timestamp,
)
from issuememo_mcp.observability import timed_operation, traced
from issuememo_mcp.storage import frontmatter
from issuememo_mcp.storage.attachment_repository import attachment_from_name
from issuememo_mcp.storage.filter_parser import parse_filter
from issuememo_mcp.storage.github_client import GitHubClient
from issuememo_mcp.storage.label_sync import (
    DELETED_LABEL,
    PINNED_LABEL,
    LabelSynchronizer,
    build_labels,
    has_label,
    tags_from_labels,
)
from issuememo_mcp.storage.resource_names import (
    comment_name,
    memo_name,
    parse_memo_name,
    parse_reaction_name,
    reaction_name,
    user_name,
)

logger = logging.getLogger(__name__)

UNTITLED_MEMO = "Untitled memo"
UNTITLED_COMMENT = "Comment"
TITLE_MAX_LENGTH = 100
SNIPPET_MAX_LENGTH = 200

# Fields an update mask may name
UPDATABLE_FIELDS = (
    "content",
    "visibility",
    "location",
    "relations",
    "attachments",
    "pinned",
    "tags",
    "state",
)

_TAG_PATTERN = re.compile(r"(?:^|\s)#([a-zA-Z0-9_\-/]+)")
_FENCED_CODE_PATTERN = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_PATTERN = re.compile(r"`[^`\n]+`")
_LINK_PATTERN = re.compile(r"(https?://|www\.)", re.IGNORECASE)
_TASK_LIST_PATTERN = re.compile(r"(^|\n)\s*-\s\[[xX ]\]\s+")
_CODE_PATTERN = re.compile(r"```[\s\S]*?```|`[^`]+`")


class IssueLifecycle(str, Enum):
    """Where an issue sits in the memo lifecycle.

    OPEN and CLOSED map to NORMAL and ARCHIVED. DELETED is terminal: a
    closed issue carrying the reserved deleted label. Its previous labels
    are gone, so nothing leads back out of it.
    """

    OPEN = "OPEN"
    CLOSED = "CLOSED"
    DELETED = "DELETED"

    @classmethod
    def of(cls, issue: Dict[str, Any]) -> "IssueLifecycle":
        if issue.get("state") == "open":
            return cls.OPEN
        if has_label(issue.get("labels") or [], DELETED_LABEL):
            return cls.DELETED
        return cls.CLOSED

    @property
    def memo_state(self) -> MemoState:
        return MemoState.NORMAL if self is IssueLifecycle.OPEN else MemoState.ARCHIVED


def to_tracker_state(state: MemoState) -> str:
    return "open" if state == MemoState.NORMAL else "closed"


def to_memo_state(tracker_state: str) -> MemoState:
    return MemoState.NORMAL if tracker_state == "open" else MemoState.ARCHIVED


# ============================================================================
# Content helpers
# ============================================================================


def extract_tags_from_content(content: str) -> List[str]:
    """Find ``#tag`` tokens in content, each tag once, in order of appearance.

    Fenced blocks and inline code spans are blanked out first. This is a
    heuristic: unbalanced or indented code is still scanned.
    """
    text = _FENCED_CODE_PATTERN.sub(" ", content or "")
    text = _INLINE_CODE_PATTERN.sub(" ", text)
    tags: List[str] = []
    for match in _TAG_PATTERN.finditer(text):
        tag = match.group(1)
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def merge_tags(*groups: Iterable[str]) -> List[str]:
    """Union of tag lists, keeping first-seen order."""
    merged: List[str] = []
    for group in groups:
        for tag in group or []:
            tag = tag.strip()
            if tag and tag not in merged:
                merged.append(tag)
    return merged


def derive_property(content: str) -> MemoProperty:
    return MemoProperty(
        has_link=bool(_LINK_PATTERN.search(content)),
        has_task_list=bool(_TASK_LIST_PATTERN.search(content)),
        has_code=bool(_CODE_PATTERN.search(content)),
    )


def build_title(content: str, fallback: str = UNTITLED_MEMO) -> str:
    """First content line, truncated; the fallback when that line is blank."""
    first_line = (content or "").split("\n", 1)[0].rstrip("\r")
    if not first_line.strip():
        return fallback
    return first_line[:TITLE_MAX_LENGTH]


def _login(item: Dict[str, Any]) -> str:
    return ((item.get("user") or {}).get("login")) or ""


# ============================================================================
# Tracker records -> domain models
# ============================================================================


def issue_to_memo(issue: Dict[str, Any], config: TrackerConfig) -> Memo:
    """Map a tracker issue to a Memo (reactions are fetched separately)."""
    meta, content = frontmatter.decode(issue.get("body") or "")
    labels = issue.get("labels") or []
    lifecycle = IssueLifecycle.of(issue)
    name = memo_name(issue["number"])
    created = parse_timestamp(issue.get("created_at"))

    return Memo(
        name=name,
        uid=issue["number"],
        title=issue.get("title") or "",
        content=content,
        snippet=content[:SNIPPET_MAX_LENGTH],
        tags=merge_tags(tags_from_labels(labels), extract_tags_from_content(content)),
        state=lifecycle.memo_state,
        pinned=has_label(labels, PINNED_LABEL),
        deleted=lifecycle is IssueLifecycle.DELETED,
        creator=user_name(_login(issue)),
        create_time=created,
        update_time=parse_timestamp(issue.get("updated_at")),
        display_time=created,
        visibility=meta.visibility,
        attachments=[attachment_from_name(a, config, memo=name) for a in meta.attachments],
        relations=meta.relations,
        location=meta.location,
        property=derive_property(content),
    )


def comment_to_memo(comment: Dict[str, Any], number: int) -> MemoComment:
    """Map an issue comment to a MemoComment; comments carry no metadata."""
    content = comment.get("body") or ""
    created = parse_timestamp(comment.get("created_at"))
    return MemoComment(
        name=comment_name(number, comment["id"]),
        id=comment["id"],
        uid=comment["id"],
        title=build_title(content, UNTITLED_COMMENT),
        content=content,
        snippet=content[:SNIPPET_MAX_LENGTH],
        creator=user_name(_login(comment)),
        create_time=created,
        update_time=parse_timestamp(comment.get("updated_at")),
        display_time=created,
        property=derive_property(content),
        parent=memo_name(number),
    )


def reaction_to_model(reaction: Dict[str, Any], number: int) -> Reaction:
    return Reaction(
        name=reaction_name(number, reaction["id"]),
        creator=user_name(_login(reaction)),
        reaction_type=reaction.get("content") or "",
        content_id=memo_name(number),
    )


def parse_page_token(token: Optional[str]) -> int:
    """1-based page number from a page token; empty or unreadable means page 1."""
    if not token:
        return 1
    try:
        page = int(str(token).strip())
    except ValueError:
        logger.warning(f"Ignoring unreadable page token '{token}'")
        return 1
    return page if page > 0 else 1


class MemoRepository:
    """Memo store over the issues of one repository."""

    def __init__(
        self,
        client: GitHubClient,
        config: Optional[TrackerConfig] = None,
        labels: Optional[LabelSynchronizer] = None,
    ):
        """Initialize the memo repository.

        Args:
            client: GitHub client bound to the backing repository.
            config: Behaviour settings; defaults to the client's config.
            labels: Label synchronizer; one over the same client by default.
        """
        self.client = client
        self.config = config or client.config
        self.labels = labels or LabelSynchronizer(client)

        # Per-memo locks serialize read-modify-write cycles in this process
        self._memo_locks: "weakref.WeakValueDictionary[int, threading.RLock]" = (
            weakref.WeakValueDictionary()
        )
        self._memo_locks_lock = threading.Lock()

    def _get_memo_lock(self, number: Union[int, str]) -> threading.RLock:
        """Get or create the lock for one memo.

        Locks live in a WeakValueDictionary and vanish once nobody holds
        them.
        """
        with self._memo_locks_lock:
            lock = self._memo_locks.get(number)
            if lock is None:
                lock = threading.RLock()
                self._memo_locks[number] = lock
            return lock

    def _number(self, name: Union[str, int]) -> Union[int, str]:
        return parse_memo_name(name, strict=self.config.strict_names)

    def _fetch_issue(self, number: Union[int, str]) -> Dict[str, Any]:
        issue = self.client.get_issue(number)
        if issue.get("pull_request"):
            # Pull requests share the issue number space but are not memos
            raise NotFoundError("memo", memo_name(number), code=ErrorCode.MEMO_NOT_FOUND)
        return issue

    def _to_memo(self, issue: Dict[str, Any]) -> Memo:
        return issue_to_memo(issue, self.config)

    def _sync_labels(self, labels: List[str]) -> None:
        if labels:
            self.labels.ensure(labels)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(
        self,
        filter: Optional[str] = None,
        state: MemoState = MemoState.NORMAL,
        page_size: Optional[int] = None,
        page_token: Optional[str] = None,
        include_deleted: bool = False,
    ) -> ListMemosResponse:
        """List one page of memos, most recently updated first.

        A single-tag predicate is sent to the tracker as a label filter;
        every other predicate is applied to the fetched page, so a page may
        hold fewer memos than ``page_size`` while more matches exist later.
        ``next_page_token`` is set whenever the fetched page was full,
        which can point at an empty page.

        Args:
            filter: Filter expression (see filter_parser).
            state: NORMAL lists open memos, ARCHIVED closed ones.
            page_size: Items per page; defaults to the configured page size.
            page_token: Token from a previous response.
            include_deleted: Keep soft-deleted memos in an ARCHIVED listing.
        """
        size = max(1, min(page_size or self.config.page_size, 100))
        page = parse_page_token(page_token)
        parsed = parse_filter(filter, strict=self.config.strict_filters)

        with timed_operation("memo_list", state=state.value, page=page, filter=filter or "") as op:
            issues = self.client.list_issues(
                state=to_tracker_state(state),
                labels=parsed.label_pushdown(),
                per_page=size,
                page=page,
                sort="updated",
                direction="desc",
            )
            memos = [self._to_memo(i) for i in issues if not i.get("pull_request")]
            if not include_deleted:
                memos = [m for m in memos if not m.deleted]
            memos = parsed.apply(memos)

            next_token = str(page + 1) if len(issues) == size else ""
            op["result_count"] = len(memos)
            return ListMemosResponse(memos=memos, next_page_token=next_token)

    @traced("memo_get")
    def get(self, name: Union[str, int]) -> Memo:
        """Fetch one memo with its reactions.

        Raises:
            NotFoundError: When no such issue exists (or it is a pull request).
        """
        number = self._number(name)
        memo = self._to_memo(self._fetch_issue(number))
        memo.reactions = [
            reaction_to_model(r, number) for r in self.client.list_reactions(number)
        ]
        return memo

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @traced("memo_create")
    def create(
        self,
        content: str,
        visibility: Optional[Visibility] = None,
        attachments: Optional[Sequence[Union[Attachment, str]]] = None,
        relations: Optional[Sequence[MemoRelation]] = None,
        location: Optional[Location] = None,
        tags: Optional[Sequence[str]] = None,
        pinned: bool = False,
    ) -> Memo:
        """Create a memo.

        Tags are the explicit tags plus every ``#tag`` found in content.
        Labels for them (and ``pinned``) are created first when missing.
        """
        content = content or ""
        all_tags = merge_tags(tags or [], extract_tags_from_content(content))
        labels = build_labels(all_tags, pinned)
        self._sync_labels(labels)

        meta = frontmatter.MemoMetadata(
            visibility=visibility or Visibility.PRIVATE,
            location=location,
            relations=list(relations or []),
            attachments=_attachment_names(attachments),
        )
        issue = self.client.create_issue(
            title=build_title(content),
            body=frontmatter.build_body(content, meta),
            labels=labels,
        )
        memo = self._to_memo(issue)
        logger.info(f"Created {memo.name} with tags {all_tags}")
        return memo

    @traced("memo_update")
    def update(
        self,
        name: Union[str, int],
        patch: Union[MemoPatch, Dict[str, Any]],
        update_mask: Optional[Sequence[str]] = None,
    ) -> Memo:
        """Apply the masked fields of ``patch`` to a memo.

        Fields outside ``update_mask`` keep their stored value whatever the
        patch holds; without a mask, the fields set on the patch are used.
        Title, body, tags and labels are recomputed from the merged result.
        The cycle is read-modify-write and last-write-wins against other
        processes; within this process writes to one memo are serialized.

        Raises:
            NotFoundError: When the memo does not exist.
            InvalidStateError: When the memo is soft-deleted.
        """
        if not isinstance(patch, MemoPatch):
            patch = MemoPatch.model_validate(patch)
        mask = _normalize_mask(update_mask, patch)
        number = self._number(name)

        with self._get_memo_lock(number):
            issue = self._fetch_issue(number)
            lifecycle = IssueLifecycle.of(issue)
            if lifecycle is IssueLifecycle.DELETED:
                raise InvalidStateError(
                    f"Memo {memo_name(number)} is deleted and cannot be updated",
                    memo_name=memo_name(number),
                    current_state=lifecycle.value,
                    code=ErrorCode.MEMO_DELETED,
                )
            current = self._to_memo(issue)

            def pick(field: str, fallback: Any) -> Any:
                if field not in mask:
                    return fallback
                value = getattr(patch, field)
                return fallback if value is None else value

            content = pick("content", current.content)
            visibility = pick("visibility", current.visibility)
            location = patch.location if "location" in mask else current.location
            relations = pick("relations", current.relations)
            attachments = pick("attachments", current.attachments)
            pinned = pick("pinned", current.pinned)

            if "tags" in mask:
                explicit_tags = list(patch.tags or [])
            else:
                # Label-only tags survive; content tags are rescanned below
                old_content_tags = extract_tags_from_content(current.content)
                explicit_tags = [
                    t for t in tags_from_labels(issue.get("labels") or [])
                    if t not in old_content_tags
                ]
            all_tags = merge_tags(explicit_tags, extract_tags_from_content(content))
            labels = build_labels(all_tags, pinned)
            self._sync_labels(labels)

            meta = frontmatter.MemoMetadata(
                visibility=visibility,
                location=location,
                relations=list(relations),
                attachments=_attachment_names(attachments),
            )
            state = None
            if "state" in mask and patch.state is not None:
                state = to_tracker_state(patch.state)

            updated = self.client.update_issue(
                number,
                title=build_title(content),
                body=frontmatter.build_body(content, meta),
                labels=labels,
                state=state,
            )
            logger.debug(f"Updated memo {memo_name(number)} fields {sorted(mask)}")
            return self._to_memo(updated)

    @traced("memo_delete")
    def delete(self, name: Union[str, int]) -> None:
        """Soft-delete a memo: close it and replace its labels with ``deleted``.

        The previous labels are discarded, so the memo cannot be restored.
        """
        number = self._number(name)
        with self._get_memo_lock(number):
            self._fetch_issue(number)
            self.labels.ensure([DELETED_LABEL])
            self.client.update_issue(number, state="closed", labels=[DELETED_LABEL])
        logger.info(f"Soft-deleted {memo_name(number)}")

    @traced("memo_archive")
    def archive(self, name: Union[str, int]) -> Memo:
        number = self._number(name)
        with self._get_memo_lock(number):
            self._fetch_issue(number)
            return self._to_memo(self.client.update_issue(number, state="closed"))

    @traced("memo_restore")
    def restore(self, name: Union[str, int]) -> Memo:
        """Reopen an archived memo.

        Raises:
            InvalidStateError: When the memo is soft-deleted.
        """
        number = self._number(name)
        with self._get_memo_lock(number):
            lifecycle = IssueLifecycle.of(self._fetch_issue(number))
            if lifecycle is IssueLifecycle.DELETED:
                raise InvalidStateError(
                    f"Memo {memo_name(number)} is deleted and cannot be restored",
                    memo_name=memo_name(number),
                    current_state=lifecycle.value,
                    code=ErrorCode.MEMO_DELETED,
                )
            return self._to_memo(self.client.update_issue(number, state="open"))

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    @traced("memo_list_comments")
    def list_comments(self, name: Union[str, int]) -> List[MemoComment]:
        """All comments on a memo, oldest first."""
        number = self._number(name)
        comments: List[MemoComment] = []
        page = 1
        per_page = 100
        while True:
            batch = self.client.list_comments(number, per_page=per_page, page=page)
            comments.extend(comment_to_memo(c, number) for c in batch)
            if len(batch) < per_page:
                return comments
            page += 1

    @traced("memo_create_comment")
    def create_comment(self, name: Union[str, int], content: str) -> MemoComment:
        if not content or not content.strip():
            raise ValidationError("Comment content cannot be empty", field="content")
        number = self._number(name)
        return comment_to_memo(self.client.create_comment(number, content), number)

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    @traced("memo_list_reactions")
    def list_reactions(self, name: Union[str, int]) -> List[Reaction]:
        number = self._number(name)
        return [reaction_to_model(r, number) for r in self.client.list_reactions(number)]

    @traced("memo_upsert_reaction")
    def upsert_reaction(self, name: Union[str, int], reaction_type: str) -> Reaction:
        """Add a reaction; adding one the user already made returns the existing one."""
        if reaction_type not in REACTION_TYPES:
            raise ValidationError(
                f"Unsupported reaction '{reaction_type}'",
                field="reaction_type",
                value=reaction_type,
                code=ErrorCode.INVALID_REACTION,
            )
        number = self._number(name)
        return reaction_to_model(self.client.create_reaction(number, reaction_type), number)

    @traced("memo_delete_reaction")
    def delete_reaction(self, name: str) -> None:
        """Delete a reaction by its composite ``memos/{n}/reactions/{id}`` name."""
        number, reaction_id = parse_reaction_name(name)
        self.client.delete_reaction(number, reaction_id)


def _attachment_names(attachments: Optional[Sequence[Union[Attachment, str]]]) -> List[str]:
    names = []
    for a in attachments or []:
        names.append(a if isinstance(a, str) else a.name)
    return names


def _normalize_mask(update_mask: Optional[Sequence[str]], patch: MemoPatch) -> set:
    """Mask entries as snake_case field names; unknown entries are dropped."""
    if update_mask is None:
        return set(patch.model_fields_set)
    mask = set()
    for entry in update_mask:
        field = re.sub(r"(?<!^)(?=[A-Z])", "_", entry.strip()).lower()
        if field in UPDATABLE_FIELDS:
            mask.add(field)
        else:
            logger.debug(f"Ignoring update mask entry '{entry}'")
    return mask
