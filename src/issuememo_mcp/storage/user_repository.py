"""Repository for the authenticated user and their memo statistics."""
import logging
from typing import Optional

from issuememo_mcp.models.schema import (
    MemoTypeStats,
    User,
    UserRole,
    UserState,
    UserStats,
    parse_timestamp,
)
from issuememo_mcp.observability import traced
from issuememo_mcp.storage.github_client import GitHubClient
from issuememo_mcp.storage.label_sync import DELETED_LABEL, TAG_LABEL_PREFIX
from issuememo_mcp.storage.memo_repository import IssueLifecycle, issue_to_memo
from issuememo_mcp.storage.resource_names import parse_user_name, user_name

logger = logging.getLogger(__name__)

# How many recent issues feed the timestamp and memo-type statistics
RECENT_ISSUE_LIMIT = 100


class UserRepository:
    """The token owner, who is the single (admin) user of a memo repository."""

    def __init__(self, client: GitHubClient):
        self.client = client
        self.config = client.config

    @traced("user_get_current")
    def get_current_user(self) -> User:
        data = self.client.get_authenticated_user()
        login = data.get("login") or ""
        return User(
            name=user_name(login),
            username=login,
            display_name=data.get("name") or login,
            email=data.get("email") or "",
            avatar_url=data.get("avatar_url") or "",
            description=data.get("bio") or "",
            role=UserRole.ADMIN,
            state=UserState.NORMAL,
        )

    def _count(self, query: str) -> int:
        result = self.client.search_issues(f"repo:{self.client.repo_slug} {query}")
        return int(result.get("total_count") or 0)

    @traced("user_get_stats")
    def get_user_stats(self, username: Optional[str] = None) -> UserStats:
        """Memo statistics for the repository.

        Counts of open and archived memos come from issue search. Tag counts
        are one per tag label, a rough figure that avoids a search per tag.
        Display timestamps and memo-type counts cover the most recent
        issues only, optionally restricted to one creator.

        Args:
            username: ``users/{login}`` or a bare login to restrict to.
        """
        login = parse_user_name(username, strict=self.config.strict_names) if username else None

        tag_count = {}
        for label in self.client.list_labels(per_page=100):
            label_name = label.get("name") or ""
            if label_name.startswith(TAG_LABEL_PREFIX) and label_name[len(TAG_LABEL_PREFIX):]:
                tag_count[label_name[len(TAG_LABEL_PREFIX):]] = 1

        memo_count = self._count("is:issue is:open")
        archived_count = self._count(f"is:issue is:closed -label:{DELETED_LABEL}")

        recent = self.client.list_issues(
            state="all", per_page=RECENT_ISSUE_LIMIT, page=1, creator=login
        )
        type_stats = MemoTypeStats()
        timestamps = []
        for issue in recent:
            if issue.get("pull_request") or IssueLifecycle.of(issue) is IssueLifecycle.DELETED:
                continue
            timestamps.append(parse_timestamp(issue.get("created_at")))
            prop = issue_to_memo(issue, self.config).property
            type_stats.link_count += int(prop.has_link)
            type_stats.code_count += int(prop.has_code)
            type_stats.todo_count += int(prop.has_task_list)

        logger.debug(
            f"Stats for {self.client.repo_slug}: {memo_count} open, "
            f"{archived_count} archived, {len(tag_count)} tags"
        )
        return UserStats(
            memo_count=memo_count,
            archived_memo_count=archived_count,
            tag_count=tag_count,
            memo_type_stats=type_stats,
            memo_display_timestamps=timestamps,
        )
