"""Service layer tying the memo repositories to one backing repository."""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx

from issuememo_mcp.config import TrackerConfig
from issuememo_mcp.models.schema import (
    Attachment,
    ListMemosResponse,
    Location,
    Memo,
    MemoComment,
    MemoPatch,
    MemoRelation,
    MemoState,
    Reaction,
    Shortcut,
    User,
    UserSettings,
    UserStats,
    Visibility,
)
from issuememo_mcp.storage.attachment_repository import AttachmentRepository
from issuememo_mcp.storage.github_client import GitHubClient
from issuememo_mcp.storage.memo_repository import MemoRepository
from issuememo_mcp.storage.settings_repository import (
    JsonFileStore,
    SettingsRepository,
    ShortcutRepository,
)
from issuememo_mcp.storage.user_repository import UserRepository

logger = logging.getLogger(__name__)


class MemoService:
    """Entry point for every memo operation against one repository.

    Owns the GitHub client and the repositories built on it. A service is
    bound to one config value; to switch repository or token build a new
    service with :meth:`with_credentials`.
    """

    def __init__(self, config: TrackerConfig, http: Optional[httpx.Client] = None):
        """Initialize the service.

        Args:
            config: Tracker configuration (must be fully configured).
            http: Optional httpx client, passed through to GitHubClient.

        Raises:
            ConfigurationError: When token, owner or repo is missing.
        """
        self.config = config
        self.client = GitHubClient(config, http=http)
        self.memos = MemoRepository(self.client, config)
        self.attachments = AttachmentRepository(self.client, config)
        store = JsonFileStore(self.client, config)
        self.settings = SettingsRepository(store)
        self.shortcuts = ShortcutRepository(store)
        self.users = UserRepository(self.client)
        logger.info(f"Memo service bound to {self.client.repo_slug}")

    def with_credentials(self, token: str, owner: str, repo: str) -> "MemoService":
        """A new service for other credentials; this one is closed."""
        self.close()
        return MemoService(self.config.with_credentials(token, owner, repo))

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "MemoService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # Memos
    # =========================================================================

    def list_memos(
        self,
        filter: Optional[str] = None,
        state: MemoState = MemoState.NORMAL,
        page_size: Optional[int] = None,
        page_token: Optional[str] = None,
    ) -> ListMemosResponse:
        return self.memos.list(
            filter=filter, state=state, page_size=page_size, page_token=page_token
        )

    def get_memo(self, name: Union[str, int]) -> Memo:
        return self.memos.get(name)

    def create_memo(
        self,
        content: str,
        visibility: Optional[Visibility] = None,
        attachments: Optional[Sequence[Union[Attachment, str]]] = None,
        relations: Optional[Sequence[MemoRelation]] = None,
        location: Optional[Location] = None,
        tags: Optional[Sequence[str]] = None,
        pinned: bool = False,
    ) -> Memo:
        return self.memos.create(
            content,
            visibility=visibility,
            attachments=attachments,
            relations=relations,
            location=location,
            tags=tags,
            pinned=pinned,
        )

    def update_memo(
        self,
        name: Union[str, int],
        patch: Union[MemoPatch, Dict[str, Any]],
        update_mask: Optional[Sequence[str]] = None,
    ) -> Memo:
        return self.memos.update(name, patch, update_mask)

    def archive_memo(self, name: Union[str, int]) -> Memo:
        return self.memos.archive(name)

    def restore_memo(self, name: Union[str, int]) -> Memo:
        return self.memos.restore(name)

    def delete_memo(self, name: Union[str, int]) -> None:
        self.memos.delete(name)

    def list_comments(self, name: Union[str, int]) -> List[MemoComment]:
        return self.memos.list_comments(name)

    def create_comment(self, name: Union[str, int], content: str) -> MemoComment:
        return self.memos.create_comment(name, content)

    def list_reactions(self, name: Union[str, int]) -> List[Reaction]:
        return self.memos.list_reactions(name)

    def upsert_reaction(self, name: Union[str, int], reaction_type: str) -> Reaction:
        return self.memos.upsert_reaction(name, reaction_type)

    def delete_reaction(self, reaction_name: str) -> None:
        self.memos.delete_reaction(reaction_name)

    # =========================================================================
    # Attachments
    # =========================================================================

    def list_attachments(self) -> List[Attachment]:
        return self.attachments.list()

    def create_attachment(
        self, filename: str, data: bytes, mime_type: Optional[str] = None
    ) -> Attachment:
        return self.attachments.create(filename, data, mime_type=mime_type)

    def delete_attachment(self, name: str, sha: str = "") -> None:
        self.attachments.delete(name, sha)

    def get_attachment_url(self, name: str) -> str:
        return self.attachments.get_attachment_url(name)

    # =========================================================================
    # Settings and shortcuts
    # =========================================================================

    def get_settings(self) -> UserSettings:
        return self.settings.get_settings()

    def update_settings(self, settings: Union[UserSettings, Dict[str, Any]]) -> UserSettings:
        return self.settings.update_settings(settings)

    def get_shortcuts(self) -> List[Shortcut]:
        return self.shortcuts.get_shortcuts()

    def create_shortcut(self, title: str, filter: str = "") -> Shortcut:
        return self.shortcuts.create_shortcut(title, filter)

    def update_shortcut(self, shortcut: Union[Shortcut, Dict[str, Any]]) -> Shortcut:
        return self.shortcuts.update_shortcut(shortcut)

    def delete_shortcut(self, name: str) -> None:
        self.shortcuts.delete_shortcut(name)

    # =========================================================================
    # Users
    # =========================================================================

    def get_current_user(self) -> User:
        return self.users.get_current_user()

    def get_user_stats(self, username: Optional[str] = None) -> UserStats:
        return self.users.get_user_stats(username)
