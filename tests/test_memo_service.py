"""Tests for the memo service facade."""
import pytest

from issuememo_mcp.exceptions import ConfigurationError, InvalidStateError
from issuememo_mcp.models.schema import MemoPatch
from issuememo_mcp.services.memo_service import MemoService
from tests.fakes import make_config


class TestMemoService:
    def test_requires_configuration(self):
        with pytest.raises(ConfigurationError):
            MemoService(make_config(repo=""))

    def test_memo_workflow(self, memo_service):
        memo = memo_service.create_memo("Plan trip #travel")
        memo_service.create_comment(memo.name, "book hotel")
        memo_service.upsert_reaction(memo.name, "eyes")

        memo = memo_service.update_memo(memo.name, MemoPatch(pinned=True), ["pinned"])
        assert memo.pinned is True
        assert memo_service.get_memo(memo.name).reactions[0].reaction_type == "eyes"
        assert [c.content for c in memo_service.list_comments(memo.name)] == ["book hotel"]

        listed = memo_service.list_memos(filter='tag in ["travel"]')
        assert [m.name for m in listed.memos] == [memo.name]

        memo_service.archive_memo(memo.name)
        assert memo_service.list_memos().memos == []
        memo_service.delete_memo(memo.name)
        with pytest.raises(InvalidStateError):
            memo_service.restore_memo(memo.name)

    def test_settings_and_shortcuts(self, memo_service):
        memo_service.update_settings({"theme": "dark"})
        assert memo_service.get_settings().appearance == "dark"

        shortcut = memo_service.create_shortcut("Pinned", "pinned == true")
        memo_service.update_shortcut({"name": shortcut.name, "title": "Starred", "filter": "pinned == true"})
        assert [s.title for s in memo_service.get_shortcuts()] == ["Starred"]
        memo_service.delete_shortcut(shortcut.name)
        assert memo_service.get_shortcuts() == []

    def test_attachments(self, memo_service):
        attachment = memo_service.create_attachment("a.txt", b"abc")
        assert [a.name for a in memo_service.list_attachments()] == [attachment.name]
        assert memo_service.get_attachment_url(attachment.name).endswith(attachment.filename)
        memo_service.delete_attachment(attachment.name, attachment.sha)
        assert memo_service.list_attachments() == []

    def test_users(self, memo_service):
        assert memo_service.get_current_user().username == "octocat"
        memo_service.create_memo("one")
        assert memo_service.get_user_stats().memo_count == 1

    def test_with_credentials_builds_new_service(self, memo_service):
        other = memo_service.with_credentials("t2", "acme", "notes")
        try:
            assert other is not memo_service
            assert other.client.repo_slug == "acme/notes"
            assert memo_service.config.repo == "memos"
        finally:
            other.close()
