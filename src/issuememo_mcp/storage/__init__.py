"""Storage layer for the Issue Memo MCP server."""

from issuememo_mcp.storage.attachment_repository import AttachmentRepository
from issuememo_mcp.storage.github_client import GitHubClient
from issuememo_mcp.storage.label_sync import LabelSynchronizer
from issuememo_mcp.storage.memo_repository import MemoRepository
from issuememo_mcp.storage.settings_repository import (
    JsonFileStore,
    SettingsRepository,
    ShortcutRepository,
)
from issuememo_mcp.storage.user_repository import UserRepository

__all__ = [
    "GitHubClient",
    "LabelSynchronizer",
    "MemoRepository",
    "AttachmentRepository",
    "JsonFileStore",
    "SettingsRepository",
    "ShortcutRepository",
    "UserRepository",
]
