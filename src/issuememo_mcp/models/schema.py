"""Data models for the Issue Memo MCP server.

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``), matching the JSON files kept in the
repository and the relation objects embedded in memo frontmatter.
"""

import datetime
from datetime import timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Reaction contents the tracker accepts
REACTION_TYPES = ("+1", "-1", "laugh", "confused", "heart", "hooray", "rocket", "eyes")


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> datetime.datetime:
    """Parse an ISO 8601 timestamp from the tracker, treating naive values as UTC.

    Args:
        value: Timestamp string such as ``2024-05-01T10:00:00Z``, or None.

    Returns:
        A timezone-aware datetime; the current time when value is empty.
    """
    if not value:
        return utc_now()
    parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


class WireModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class MemoState(str, Enum):
    """Domain state of a memo (mapped from the issue's open/closed state)."""

    NORMAL = "NORMAL"
    ARCHIVED = "ARCHIVED"


class Visibility(str, Enum):
    """Who may see a memo."""

    PRIVATE = "PRIVATE"
    PROTECTED = "PROTECTED"
    PUBLIC = "PUBLIC"


class MemoRelationType(str, Enum):
    """Kinds of typed links between memos."""

    REFERENCE = "REFERENCE"
    COMMENT = "COMMENT"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class UserState(str, Enum):
    NORMAL = "NORMAL"
    ARCHIVED = "ARCHIVED"


class Location(WireModel):
    """A geolocation attached to a memo."""

    latitude: float = Field(allow_inf_nan=False)
    longitude: float = Field(allow_inf_nan=False)
    placeholder: Optional[str] = None


class MemoProperty(WireModel):
    """Flags derived from memo content."""

    has_link: bool = False
    has_task_list: bool = False
    has_code: bool = False


class MemoRelationMemo(WireModel):
    name: str
    snippet: str = ""


class MemoRelation(WireModel):
    """A typed link from one memo to another."""

    memo: Optional[MemoRelationMemo] = None
    related_memo: Optional[MemoRelationMemo] = None
    type: MemoRelationType = MemoRelationType.REFERENCE


class Reaction(WireModel):
    """An emoji reaction on a memo, named ``memos/{n}/reactions/{id}``."""

    name: str
    creator: str
    reaction_type: str
    content_id: str


class Attachment(WireModel):
    """A binary file stored under the repository's attachments directory."""

    name: str
    filename: str
    external_link: str = ""
    type: str = ""
    size: int = 0
    sha: str = ""
    memo: Optional[str] = None
    create_time: Optional[datetime.datetime] = None


class Memo(WireModel):
    """A memo backed by one tracker issue."""

    name: str
    uid: int
    title: str = ""
    content: str = ""
    snippet: str = ""
    tags: List[str] = Field(default_factory=list)
    state: MemoState = MemoState.NORMAL
    pinned: bool = False
    # Soft-deleted issues stay closed for good; see IssueLifecycle
    deleted: bool = False
    creator: str = ""
    create_time: datetime.datetime = Field(default_factory=utc_now)
    update_time: datetime.datetime = Field(default_factory=utc_now)
    display_time: datetime.datetime = Field(default_factory=utc_now)
    visibility: Visibility = Visibility.PRIVATE
    attachments: List[Attachment] = Field(default_factory=list)
    relations: List[MemoRelation] = Field(default_factory=list)
    reactions: List[Reaction] = Field(default_factory=list)
    location: Optional[Location] = None
    property: MemoProperty = Field(default_factory=MemoProperty)
    parent: Optional[str] = None


class MemoComment(Memo):
    """A comment on a memo, backed by an issue comment."""

    id: Optional[int] = None


class MemoPatch(WireModel):
    """Replacement values for :meth:`MemoRepository.update`.

    Only fields named in the update mask are applied; everything else
    keeps the stored value, whatever the patch says.
    """

    content: Optional[str] = None
    visibility: Optional[Visibility] = None
    location: Optional[Location] = None
    relations: Optional[List[MemoRelation]] = None
    attachments: Optional[List[Attachment]] = None
    pinned: Optional[bool] = None
    tags: Optional[List[str]] = None
    state: Optional[MemoState] = None


class ListMemosResponse(WireModel):
    memos: List[Memo] = Field(default_factory=list)
    next_page_token: str = ""


class Shortcut(WireModel):
    """A saved filter, named ``shortcuts/{id}``."""

    name: str
    id: str
    title: str
    filter: str = ""

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Shortcut title cannot be empty")
        return v


class UserSettings(WireModel):
    """Per-user preferences; ``appearance`` and ``theme`` are aliases."""

    locale: str = "en"
    memo_visibility: str = Visibility.PRIVATE.value
    appearance: Optional[str] = None
    theme: Optional[str] = None


class User(WireModel):
    name: str
    username: str
    display_name: str = ""
    email: str = ""
    avatar_url: str = ""
    description: str = ""
    role: UserRole = UserRole.USER
    state: UserState = UserState.NORMAL


class MemoTypeStats(WireModel):
    link_count: int = 0
    code_count: int = 0
    todo_count: int = 0


class UserStats(WireModel):
    memo_count: int = 0
    archived_memo_count: int = 0
    tag_count: dict = Field(default_factory=dict)
    memo_type_stats: MemoTypeStats = Field(default_factory=MemoTypeStats)
    memo_display_timestamps: List[datetime.datetime] = Field(default_factory=list)
