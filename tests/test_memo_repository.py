"""Tests for the issue-backed memo repository."""
import threading

import pytest

from issuememo_mcp.exceptions import (
    ErrorCode,
    InvalidStateError,
    MalformedInputError,
    NotFoundError,
    ValidationError,
)
from issuememo_mcp.models.schema import (
    Location,
    MemoPatch,
    MemoState,
    Visibility,
)
from issuememo_mcp.storage.memo_repository import (
    UNTITLED_MEMO,
    IssueLifecycle,
    MemoRepository,
    build_title,
    derive_property,
    extract_tags_from_content,
    merge_tags,
    parse_page_token,
    to_memo_state,
    to_tracker_state,
)
from tests.fakes import make_config


class TestContentHelpers:
    def test_extract_tags_in_order_without_duplicates(self):
        content = "#b first #a then #b again\n#c/d on a new line"
        assert extract_tags_from_content(content) == ["b", "a", "c/d"]

    def test_tags_in_code_are_ignored(self):
        content = "real #tag\n```\n#include <stdio.h>\n```\nand `#not-a-tag` inline"
        assert extract_tags_from_content(content) == ["tag"]

    def test_hash_inside_word_is_not_a_tag(self):
        assert extract_tags_from_content("issue#12 and C#") == []

    def test_merge_tags(self):
        assert merge_tags(["a", " b "], ["b", "c"], None) == ["a", "b", "c"]

    def test_build_title(self):
        assert build_title("First line\nsecond") == "First line"
        assert build_title("x" * 150) == "x" * 100
        assert build_title("   \nbody") == UNTITLED_MEMO
        assert build_title("") == UNTITLED_MEMO

    def test_derive_property(self):
        prop = derive_property("see https://example.com\n- [ ] todo\n`code`")
        assert prop.has_link and prop.has_task_list and prop.has_code
        assert derive_property("plain") == derive_property("")

    def test_state_mapping_is_a_bijection(self):
        for state in MemoState:
            assert to_memo_state(to_tracker_state(state)) == state
        for tracker_state in ("open", "closed"):
            assert to_tracker_state(to_memo_state(tracker_state)) == tracker_state

    @pytest.mark.parametrize("token,expected", [
        (None, 1), ("", 1), ("3", 3), ("garbage", 1), ("0", 1), ("-2", 1),
    ])
    def test_parse_page_token(self, token, expected):
        assert parse_page_token(token) == expected


class TestIssueLifecycle:
    def test_of(self):
        assert IssueLifecycle.of({"state": "open", "labels": []}) is IssueLifecycle.OPEN
        assert IssueLifecycle.of({"state": "closed", "labels": []}) is IssueLifecycle.CLOSED
        deleted = {"state": "closed", "labels": [{"name": "deleted"}]}
        assert IssueLifecycle.of(deleted) is IssueLifecycle.DELETED
        assert IssueLifecycle.DELETED.memo_state == MemoState.ARCHIVED


class TestCreateAndGet:
    def test_create_then_get(self, memo_repository, fake_github):
        created = memo_repository.create("Buy milk #errand")

        fetched = memo_repository.get(created.name)
        assert fetched.name == "memos/1"
        assert fetched.uid == 1
        assert fetched.title == "Buy milk #errand"
        assert fetched.content == "Buy milk #errand"
        assert fetched.tags == ["errand"]
        assert fetched.visibility == Visibility.PRIVATE
        assert fetched.state == MemoState.NORMAL
        assert fetched.pinned is False
        assert fetched.deleted is False
        assert fetched.creator == "users/octocat"
        # Plain content with default metadata is stored verbatim
        assert fake_github.issues[1]["body"] == "Buy milk #errand"
        assert fake_github.label_names(1) == ["tag:errand"]

    def test_create_with_metadata(self, memo_repository, fake_github):
        memo = memo_repository.create(
            "Trip notes",
            visibility=Visibility.PUBLIC,
            location=Location(latitude=52.37, longitude=4.89),
            attachments=["attachments/1700000000000_map.png"],
            tags=["travel"],
            pinned=True,
        )
        assert memo.visibility == Visibility.PUBLIC
        assert memo.location == Location(latitude=52.37, longitude=4.89)
        assert memo.tags == ["travel"]
        assert memo.pinned is True
        assert memo.attachments[0].name == "attachments/1700000000000_map.png"
        assert memo.attachments[0].memo == "memos/1"
        assert memo.attachments[0].type == ""
        assert fake_github.issues[1]["body"].startswith("---\nvisibility: PUBLIC\n")
        assert set(fake_github.label_names(1)) == {"tag:travel", "pinned"}

    def test_create_makes_missing_labels_first(self, memo_repository, fake_github):
        memo_repository.create("#new-tag")
        assert "tag:new-tag" in fake_github.labels

    def test_get_includes_reactions(self, memo_repository, fake_github):
        memo = memo_repository.create("hello")
        memo_repository.upsert_reaction(memo.name, "heart")

        fetched = memo_repository.get(memo.name)
        assert [r.reaction_type for r in fetched.reactions] == ["heart"]
        assert fetched.reactions[0].content_id == "memos/1"

    def test_get_missing_memo(self, memo_repository):
        with pytest.raises(NotFoundError) as exc:
            memo_repository.get("memos/404")
        assert exc.value.code == ErrorCode.MEMO_NOT_FOUND

    def test_get_pull_request_is_not_found(self, memo_repository, fake_github):
        fake_github.add_issue(title="A PR", pull_request=True)
        with pytest.raises(NotFoundError):
            memo_repository.get("memos/1")

    def test_get_malformed_name_in_strict_mode(self, memo_repository):
        with pytest.raises(MalformedInputError):
            memo_repository.get("memos/abc")

    def test_issue_labels_and_content_tags_are_merged(self, memo_repository, fake_github):
        fake_github.add_issue(title="x", body="about #b", labels=["tag:a"])
        assert memo_repository.get("memos/1").tags == ["a", "b"]


class TestList:
    def test_excludes_pull_requests(self, memo_repository, fake_github):
        fake_github.add_issue(title="memo", body="memo")
        fake_github.add_issue(title="pr", pull_request=True)

        response = memo_repository.list()
        assert [m.uid for m in response.memos] == [1]

    def test_pagination_sets_next_token_when_page_full(self, memo_repository, fake_github):
        for i in range(3):
            fake_github.add_issue(title=f"memo {i}", body=f"memo {i}")

        first = memo_repository.list(page_size=2)
        assert len(first.memos) == 2
        assert first.next_page_token == "2"

        second = memo_repository.list(page_size=2, page_token=first.next_page_token)
        assert len(second.memos) == 1
        assert second.next_page_token == ""
        seen = {m.uid for m in first.memos} | {m.uid for m in second.memos}
        assert seen == {1, 2, 3}

    def test_exactly_full_last_page_points_at_empty_page(self, memo_repository, fake_github):
        for i in range(2):
            fake_github.add_issue(body=f"memo {i}")

        first = memo_repository.list(page_size=2)
        assert first.next_page_token == "2"
        last = memo_repository.list(page_size=2, page_token="2")
        assert last.memos == []
        assert last.next_page_token == ""

    def test_most_recently_updated_first(self, memo_repository, fake_github):
        fake_github.add_issue(body="old")
        fake_github.add_issue(body="new")
        assert [m.uid for m in memo_repository.list().memos] == [2, 1]

    def test_archived_state_lists_closed(self, memo_repository, fake_github):
        fake_github.add_issue(body="open")
        fake_github.add_issue(body="closed", state="closed")

        archived = memo_repository.list(state=MemoState.ARCHIVED)
        assert [m.uid for m in archived.memos] == [2]
        assert archived.memos[0].state == MemoState.ARCHIVED

    def test_deleted_memos_hidden_unless_requested(self, memo_repository, fake_github):
        fake_github.add_issue(body="archived", state="closed")
        fake_github.add_issue(body="gone", state="closed", labels=["deleted"])

        default = memo_repository.list(state=MemoState.ARCHIVED)
        assert [m.uid for m in default.memos] == [1]
        everything = memo_repository.list(state=MemoState.ARCHIVED, include_deleted=True)
        assert {m.uid for m in everything.memos} == {1, 2}

    def test_single_tag_filter_is_pushed_down(self, memo_repository, fake_github):
        fake_github.add_issue(body="a", labels=["tag:work"])
        fake_github.add_issue(body="b", labels=["tag:home"])

        response = memo_repository.list(filter='tag in ["work"]')
        assert [m.uid for m in response.memos] == [1]
        assert fake_github.requests[-1].url.params["labels"] == "tag:work"

    def test_multi_tag_filter_means_any(self, memo_repository, fake_github):
        fake_github.add_issue(body="a", labels=["tag:work"])
        fake_github.add_issue(body="b", labels=["tag:home"])
        fake_github.add_issue(body="c", labels=["tag:misc"])

        response = memo_repository.list(filter='tag in ["work", "home"]')
        assert {m.uid for m in response.memos} == {1, 2}
        assert "labels" not in fake_github.requests[-1].url.params

    def test_client_side_filters(self, memo_repository, fake_github):
        fake_github.add_issue(body="buy MILK", labels=["pinned"])
        fake_github.add_issue(body="buy bread")
        fake_github.add_issue(body="milk again", login="someone")

        response = memo_repository.list(
            filter='content.contains("milk") && creator == "users/octocat"'
        )
        assert [m.uid for m in response.memos] == [1]
        pinned = memo_repository.list(filter="pinned == true")
        assert [m.uid for m in pinned.memos] == [1]

    def test_page_size_is_clamped(self, memo_repository, fake_github):
        memo_repository.list(page_size=1000)
        assert fake_github.requests[-1].url.params["per_page"] == "100"

    def test_strict_filters_raise(self, github_client):
        repo = MemoRepository(github_client, config=make_config(strict_filters=True))
        with pytest.raises(MalformedInputError):
            repo.list(filter="visibility == PUBLIC")


class TestUpdate:
    def test_mask_limits_changed_fields(self, memo_repository):
        memo = memo_repository.create("original #keep", visibility=Visibility.PUBLIC)

        updated = memo_repository.update(
            memo.name,
            MemoPatch(content="changed", visibility=Visibility.PRIVATE, pinned=True),
            update_mask=["content"],
        )
        assert updated.content == "changed"
        assert updated.title == "changed"
        assert updated.visibility == Visibility.PUBLIC
        assert updated.pinned is False
        # Content tag disappears with its content
        assert updated.tags == []

    def test_camel_case_mask_entries(self, memo_repository):
        memo = memo_repository.create("x")
        updated = memo_repository.update(
            memo.name, {"pinned": True, "visibility": "PROTECTED"}, update_mask=["pinned", "Visibility"]
        )
        assert updated.pinned is True
        assert updated.visibility == Visibility.PROTECTED

    def test_without_mask_set_fields_apply(self, memo_repository):
        memo = memo_repository.create("x", visibility=Visibility.PUBLIC)
        updated = memo_repository.update(memo.name, MemoPatch(pinned=True))
        assert updated.pinned is True
        assert updated.visibility == Visibility.PUBLIC
        assert updated.content == "x"

    def test_explicit_label_tags_survive_content_edits(self, memo_repository, fake_github):
        memo = memo_repository.create("note #inline", tags=["explicit"])
        assert memo.tags == ["explicit", "inline"]

        updated = memo_repository.update(memo.name, MemoPatch(content="rewritten #fresh"), ["content"])
        assert updated.tags == ["explicit", "fresh"]
        assert set(fake_github.label_names(1)) == {"tag:explicit", "tag:fresh"}

    def test_tags_in_mask_replace_explicit_tags(self, memo_repository):
        memo = memo_repository.create("note #inline", tags=["explicit"])
        updated = memo_repository.update(memo.name, MemoPatch(tags=["other"]), ["tags"])
        assert updated.tags == ["other", "inline"]

    def test_clearing_location(self, memo_repository):
        memo = memo_repository.create("x", location=Location(latitude=1.0, longitude=2.0))
        updated = memo_repository.update(memo.name, MemoPatch(), ["location"])
        assert updated.location is None

    def test_state_change(self, memo_repository, fake_github):
        memo = memo_repository.create("x")
        updated = memo_repository.update(memo.name, MemoPatch(state=MemoState.ARCHIVED), ["state"])
        assert updated.state == MemoState.ARCHIVED
        assert fake_github.issues[1]["state"] == "closed"

    def test_state_not_sent_outside_mask(self, memo_repository, fake_github):
        memo = memo_repository.create("x")
        memo_repository.archive(memo.name)
        memo_repository.update(memo.name, MemoPatch(content="y", state=MemoState.NORMAL), ["content"])
        assert fake_github.issues[1]["state"] == "closed"

    def test_update_missing_memo(self, memo_repository):
        with pytest.raises(NotFoundError):
            memo_repository.update("memos/9", MemoPatch(content="x"), ["content"])

    def test_concurrent_updates_are_serialized(self, memo_repository, fake_github):
        memo = memo_repository.create("start")
        errors = []

        def worker(i):
            try:
                memo_repository.update(memo.name, MemoPatch(content=f"v{i}"), ["content"])
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert fake_github.issues[1]["body"] in {f"v{i}" for i in range(5)}


class TestLifecycle:
    def test_archive_and_restore(self, memo_repository):
        memo = memo_repository.create("x")
        assert memo_repository.archive(memo.name).state == MemoState.ARCHIVED
        assert memo_repository.restore(memo.name).state == MemoState.NORMAL

    def test_soft_delete_is_terminal(self, memo_repository, fake_github):
        memo = memo_repository.create("x #tag", pinned=True)
        memo_repository.delete(memo.name)

        assert fake_github.issues[1]["state"] == "closed"
        assert fake_github.label_names(1) == ["deleted"]

        fetched = memo_repository.get(memo.name)
        assert fetched.state == MemoState.ARCHIVED
        assert fetched.deleted is True
        assert fetched.pinned is False

        with pytest.raises(InvalidStateError) as exc:
            memo_repository.restore(memo.name)
        assert exc.value.code == ErrorCode.MEMO_DELETED

        with pytest.raises(InvalidStateError):
            memo_repository.update(memo.name, MemoPatch(content="back"), ["content"])
        assert fake_github.issues[1]["state"] == "closed"

    def test_delete_missing_memo(self, memo_repository):
        with pytest.raises(NotFoundError):
            memo_repository.delete("memos/5")

    @pytest.mark.parametrize("operation", ["archive", "delete"])
    def test_pull_request_is_left_untouched(self, memo_repository, fake_github, operation):
        fake_github.add_issue(title="A PR", labels=["bug"], pull_request=True)

        with pytest.raises(NotFoundError) as exc:
            getattr(memo_repository, operation)("memos/1")

        assert exc.value.code == ErrorCode.MEMO_NOT_FOUND
        assert fake_github.issues[1]["state"] == "open"
        assert fake_github.label_names(1) == ["bug"]
        assert fake_github.count("PATCH", "/issues/1") == 0


class TestCommentsAndReactions:
    def test_comments_oldest_first(self, memo_repository):
        memo = memo_repository.create("parent")
        memo_repository.create_comment(memo.name, "first")
        memo_repository.create_comment(memo.name, "second\nline")

        comments = memo_repository.list_comments(memo.name)
        assert [c.content for c in comments] == ["first", "second\nline"]
        assert comments[1].title == "second"
        assert comments[0].parent == "memos/1"
        assert comments[0].name == f"memos/1/comments/{comments[0].id}"

    def test_comments_paginate(self, memo_repository, fake_github):
        fake_github.add_issue(body="busy")
        fake_github.comments[1] = [
            {"id": i, "body": f"c{i}", "user": {"login": "a"}, "created_at": "2024-01-01T00:00:00Z"}
            for i in range(150)
        ]
        assert len(memo_repository.list_comments("memos/1")) == 150

    def test_empty_comment_rejected(self, memo_repository):
        memo = memo_repository.create("parent")
        with pytest.raises(ValidationError):
            memo_repository.create_comment(memo.name, "   ")

    def test_reaction_upsert_is_idempotent(self, memo_repository):
        memo = memo_repository.create("x")
        first = memo_repository.upsert_reaction(memo.name, "+1")
        second = memo_repository.upsert_reaction(memo.name, "+1")
        assert first.name == second.name
        assert len(memo_repository.list_reactions(memo.name)) == 1

    def test_delete_reaction(self, memo_repository):
        memo = memo_repository.create("x")
        reaction = memo_repository.upsert_reaction(memo.name, "rocket")
        memo_repository.delete_reaction(reaction.name)
        assert memo_repository.list_reactions(memo.name) == []

    def test_unknown_reaction_type(self, memo_repository):
        memo = memo_repository.create("x")
        with pytest.raises(ValidationError) as exc:
            memo_repository.upsert_reaction(memo.name, "thumbs")
        assert exc.value.code == ErrorCode.INVALID_REACTION
