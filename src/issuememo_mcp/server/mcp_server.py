"""MCP server implementation for issue-backed memos."""

import atexit
import base64
import binascii
import json
import logging
import uuid
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from issuememo_mcp.config import TrackerConfig
from issuememo_mcp.exceptions import MemosError
from issuememo_mcp.models.schema import (
    Location,
    Memo,
    MemoComment,
    MemoPatch,
    MemoState,
    Visibility,
)
from issuememo_mcp.observability import metrics, timed_operation
from issuememo_mcp.services.memo_service import MemoService

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 65_536  # GitHub's issue body limit
MAX_ATTACHMENT_BYTES = 50 * 1024 * 1024
# Tool-level timers; the store records its own operations under bare names
TOOL_METRIC_PREFIX = "tool_"


def _validate_content_length(content: Optional[str]) -> None:
    """Validate input string lengths at the MCP boundary."""
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
        )


def _split_list(value: Optional[str]) -> List[str]:
    """Comma-separated tool argument to a list of non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _format_memo(memo: Memo) -> str:
    result = f"# {memo.title}\n"
    result += f"Name: {memo.name}\n"
    result += f"State: {memo.state.value}{' (deleted)' if memo.deleted else ''}\n"
    result += f"Visibility: {memo.visibility.value}\n"
    if memo.pinned:
        result += "Pinned: yes\n"
    result += f"Creator: {memo.creator}\n"
    result += f"Created: {memo.create_time.isoformat()}\n"
    result += f"Updated: {memo.update_time.isoformat()}\n"
    if memo.tags:
        result += f"Tags: {', '.join(memo.tags)}\n"
    if memo.location:
        result += f"Location: {memo.location.latitude}, {memo.location.longitude}\n"
    if memo.attachments:
        result += f"Attachments: {', '.join(a.name for a in memo.attachments)}\n"
    if memo.relations:
        targets = [r.related_memo.name for r in memo.relations if r.related_memo]
        result += f"Relations: {', '.join(targets)}\n"
    if memo.reactions:
        counts = {}
        for r in memo.reactions:
            counts[r.reaction_type] = counts.get(r.reaction_type, 0) + 1
        result += "Reactions: " + ", ".join(f"{k} x{v}" for k, v in counts.items()) + "\n"
    result += f"\n{memo.content}\n"
    return result


def _format_memo_line(memo: Memo) -> str:
    pin = "📌 " if memo.pinned else ""
    tags = f" [{', '.join(memo.tags)}]" if memo.tags else ""
    return f"- {pin}**{memo.title}** ({memo.name}){tags}\n"


def _format_comment(comment: MemoComment) -> str:
    return (
        f"### {comment.creator} at {comment.create_time.isoformat()}\n"
        f"Name: {comment.name}\n\n{comment.content}\n"
    )


class IssueMemoMcpServer:
    """MCP server exposing memos stored in a GitHub repository."""

    def __init__(self, config: TrackerConfig, service: Optional[MemoService] = None):
        """Initialize the MCP server.

        Args:
            config: Tracker configuration shared by every tool.
            service: Pre-built memo service (tests pass one backed by a fake
                tracker). Built from ``config`` when None.
        """
        self.config = config
        self.mcp = FastMCP(config.server_name)
        self.memo_service = service or MemoService(config)
        self.initialize()
        # Register shutdown hook for resource cleanup
        atexit.register(self._shutdown)
        self._register_tools()

    def initialize(self) -> None:
        """Initialize services."""
        logger.info(f"Issue memo MCP server initialized for {self.config.owner}/{self.config.repo}")

    def _shutdown(self) -> None:
        """Clean up resources on server exit."""
        self.memo_service.close()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        # Generate a unique error ID for traceability in logs
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, MemosError):
            # Structured domain errors - use the error code and message
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            # Log full detail but return generic ref to avoid leaking internals
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            # Unexpected errors - log with full stack trace but return generic message
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""
        self._register_memo_tools()
        self._register_attachment_tools()
        self._register_settings_tools()
        self._register_user_tools()

    # =========================================================================
    # Memo tools
    # =========================================================================

    def _register_memo_tools(self) -> None:
        service = self.memo_service

        @self.mcp.tool(name="memo_list")
        def memo_list(
            filter: Optional[str] = None,
            state: str = "NORMAL",
            page_size: Optional[int] = None,
            page_token: Optional[str] = None,
        ) -> str:
            """List memos, most recently updated first.
            Args:
                filter: Filter expression, e.g. 'tag in ["work"] && pinned == true'.
                    Supported: tag in [...], creator == "users/x",
                    content.contains("text"), pinned == true/false
                state: NORMAL for active memos, ARCHIVED for archived ones
                page_size: Memos per page (1-100)
                page_token: next_page_token from a previous call
            """
            with timed_operation("tool_memo_list", filter=filter or "") as op:
                try:
                    try:
                        state_enum = MemoState(state.upper())
                    except ValueError:
                        return f"Invalid state: {state}. Valid states are: {', '.join(s.value for s in MemoState)}"

                    response = service.list_memos(
                        filter=filter,
                        state=state_enum,
                        page_size=page_size,
                        page_token=page_token,
                    )
                    op["result_count"] = len(response.memos)
                    if not response.memos:
                        output = "No memos found.\n"
                    else:
                        output = f"# Memos ({state_enum.value})\n\n"
                        output += "".join(_format_memo_line(m) for m in response.memos)
                    if response.next_page_token:
                        output += f"\nNext page token: {response.next_page_token}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_get")
        def memo_get(name: str) -> str:
            """Retrieve a memo with its reactions.
            Args:
                name: Memo name (memos/42) or issue number
            """
            with timed_operation("tool_memo_get", name=name) as op:
                try:
                    memo = service.get_memo(name)
                    op["found"] = True
                    return _format_memo(memo)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_create")
        def memo_create(
            content: str,
            visibility: str = "PRIVATE",
            tags: Optional[str] = None,
            pinned: bool = False,
            attachments: Optional[str] = None,
            latitude: Optional[float] = None,
            longitude: Optional[float] = None,
        ) -> str:
            """Create a memo. #tags in the content become tags automatically.
            Args:
                content: Memo text (markdown). The first line becomes the title.
                visibility: PRIVATE, PROTECTED or PUBLIC
                tags: Comma-separated extra tags (optional)
                pinned: Pin the memo
                attachments: Comma-separated attachment names (attachments/...)
                latitude: Optional location latitude (requires longitude)
                longitude: Optional location longitude (requires latitude)
            """
            with timed_operation("tool_memo_create") as op:
                try:
                    _validate_content_length(content)
                    try:
                        visibility_enum = Visibility(visibility.upper())
                    except ValueError:
                        return f"Invalid visibility: {visibility}. Valid values are: {', '.join(v.value for v in Visibility)}"

                    location = None
                    if latitude is not None and longitude is not None:
                        location = Location(latitude=latitude, longitude=longitude)

                    memo = service.create_memo(
                        content,
                        visibility=visibility_enum,
                        tags=_split_list(tags),
                        pinned=pinned,
                        attachments=_split_list(attachments),
                        location=location,
                    )
                    op["name"] = memo.name
                    tag_info = f" with tags: {', '.join(memo.tags)}" if memo.tags else ""
                    return f"Memo created successfully: {memo.name}{tag_info}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_update")
        def memo_update(name: str, patch: str, update_mask: Optional[str] = None) -> str:
            """Update selected fields of a memo.
            Args:
                name: Memo name (memos/42)
                patch: JSON object with new values, e.g. {"content": "...", "pinned": true}.
                    Fields: content, visibility, location, relations, attachments,
                    pinned, tags, state
                update_mask: Comma-separated fields to apply (default: every field in patch).
                    Fields not in the mask keep their stored value.
            """
            with timed_operation("tool_memo_update", name=name) as op:
                try:
                    patch_data = json.loads(patch)
                    if not isinstance(patch_data, dict):
                        return "Error: patch must be a JSON object"
                    memo_patch = MemoPatch.model_validate(patch_data)
                    _validate_content_length(memo_patch.content)
                    mask = _split_list(update_mask) if update_mask else None
                    memo = service.update_memo(name, memo_patch, mask)
                    op["name"] = memo.name
                    return f"Memo updated successfully: {memo.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_archive")
        def memo_archive(name: str) -> str:
            """Archive a memo (closes its issue).
            Args:
                name: Memo name (memos/42)
            """
            with timed_operation("tool_memo_archive", name=name):
                try:
                    memo = service.archive_memo(name)
                    return f"Memo archived: {memo.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_restore")
        def memo_restore(name: str) -> str:
            """Restore an archived memo. Deleted memos cannot be restored.
            Args:
                name: Memo name (memos/42)
            """
            with timed_operation("tool_memo_restore", name=name):
                try:
                    memo = service.restore_memo(name)
                    return f"Memo restored: {memo.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_delete")
        def memo_delete(name: str) -> str:
            """Delete a memo. This is permanent: its tags are dropped and it
            cannot be restored.
            Args:
                name: Memo name (memos/42)
            """
            with timed_operation("tool_memo_delete", name=name):
                try:
                    service.delete_memo(name)
                    return f"Memo deleted: {name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_comments")
        def memo_comments(name: str) -> str:
            """List the comments on a memo.
            Args:
                name: Memo name (memos/42)
            """
            with timed_operation("tool_memo_comments", name=name) as op:
                try:
                    comments = service.list_comments(name)
                    op["result_count"] = len(comments)
                    if not comments:
                        return f"No comments on {name}."
                    output = f"# Comments on {name} ({len(comments)})\n\n"
                    output += "\n".join(_format_comment(c) for c in comments)
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_comment")
        def memo_comment(name: str, content: str) -> str:
            """Add a comment to a memo.
            Args:
                name: Memo name (memos/42)
                content: Comment text
            """
            with timed_operation("tool_memo_comment", name=name):
                try:
                    _validate_content_length(content)
                    comment = service.create_comment(name, content)
                    return f"Comment created: {comment.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_react")
        def memo_react(name: str, reaction_type: str) -> str:
            """Add a reaction to a memo.
            Args:
                name: Memo name (memos/42)
                reaction_type: One of +1, -1, laugh, confused, heart, hooray, rocket, eyes
            """
            with timed_operation("tool_memo_react", name=name):
                try:
                    reaction = service.upsert_reaction(name, reaction_type)
                    return f"Reaction added: {reaction.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="memo_unreact")
        def memo_unreact(reaction_name: str) -> str:
            """Remove a reaction.
            Args:
                reaction_name: Reaction name (memos/42/reactions/7)
            """
            with timed_operation("tool_memo_unreact", name=reaction_name):
                try:
                    service.delete_reaction(reaction_name)
                    return f"Reaction removed: {reaction_name}"
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # Attachment tools
    # =========================================================================

    def _register_attachment_tools(self) -> None:
        service = self.memo_service

        @self.mcp.tool(name="attachment_list")
        def attachment_list() -> str:
            """List uploaded attachments."""
            with timed_operation("tool_attachment_list") as op:
                try:
                    attachments = service.list_attachments()
                    op["result_count"] = len(attachments)
                    if not attachments:
                        return "No attachments found."
                    output = f"# Attachments ({len(attachments)})\n\n"
                    for a in attachments:
                        output += f"- {a.name} ({a.size} bytes, sha {a.sha[:7]}) {a.external_link}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="attachment_upload")
        def attachment_upload(
            filename: str, content_base64: str, mime_type: Optional[str] = None
        ) -> str:
            """Upload a file as an attachment.
            Args:
                filename: Original file name, e.g. photo.png
                content_base64: File content, base64 encoded
                mime_type: MIME type (guessed from the file name if omitted)
            """
            with timed_operation("tool_attachment_upload", filename=filename[:30]) as op:
                try:
                    try:
                        data = base64.b64decode(content_base64, validate=True)
                    except binascii.Error:
                        return "Error: content_base64 is not valid base64"
                    if len(data) > MAX_ATTACHMENT_BYTES:
                        return f"Error: attachment exceeds {MAX_ATTACHMENT_BYTES} bytes"
                    attachment = service.create_attachment(filename, data, mime_type=mime_type)
                    op["name"] = attachment.name
                    return (
                        f"Attachment uploaded: {attachment.name}\n"
                        f"URL: {attachment.external_link}"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="attachment_delete")
        def attachment_delete(name: str, sha: str = "") -> str:
            """Delete an attachment.
            Args:
                name: Attachment name (attachments/...)
                sha: Content sha from attachment_list (saves a lookup)
            """
            with timed_operation("tool_attachment_delete", name=name):
                try:
                    service.delete_attachment(name, sha)
                    return f"Attachment deleted: {name}"
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # Settings and shortcut tools
    # =========================================================================

    def _register_settings_tools(self) -> None:
        service = self.memo_service

        @self.mcp.tool(name="settings_get")
        def settings_get() -> str:
            """Show the user settings."""
            with timed_operation("tool_settings_get"):
                try:
                    settings = service.get_settings()
                    return json.dumps(settings.model_dump(by_alias=True), indent=2)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="settings_update")
        def settings_update(
            locale: Optional[str] = None,
            theme: Optional[str] = None,
            memo_visibility: Optional[str] = None,
        ) -> str:
            """Update user settings; omitted values are kept.
            Args:
                locale: UI locale, e.g. en
                theme: system, light or dark (also sets appearance)
                memo_visibility: Default visibility for new memos
            """
            with timed_operation("tool_settings_update"):
                try:
                    changes = {}
                    if locale is not None:
                        changes["locale"] = locale
                    if theme is not None:
                        changes["theme"] = theme
                    if memo_visibility is not None:
                        changes["memo_visibility"] = Visibility(memo_visibility.upper()).value
                    if not changes:
                        return "No settings given; nothing changed."
                    settings = service.update_settings(changes)
                    return "Settings updated:\n" + json.dumps(
                        settings.model_dump(by_alias=True), indent=2
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shortcut_list")
        def shortcut_list() -> str:
            """List saved filter shortcuts."""
            with timed_operation("tool_shortcut_list") as op:
                try:
                    shortcuts = service.get_shortcuts()
                    op["result_count"] = len(shortcuts)
                    if not shortcuts:
                        return "No shortcuts found."
                    output = f"# Shortcuts ({len(shortcuts)})\n\n"
                    for s in shortcuts:
                        output += f"- **{s.title}** ({s.name}): `{s.filter}`\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shortcut_create")
        def shortcut_create(title: str, filter: str = "") -> str:
            """Save a filter as a shortcut.
            Args:
                title: Shortcut title
                filter: Filter expression (same syntax as memo_list)
            """
            with timed_operation("tool_shortcut_create"):
                try:
                    shortcut = service.create_shortcut(title, filter)
                    return f"Shortcut created: {shortcut.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shortcut_update")
        def shortcut_update(name: str, title: str, filter: str = "") -> str:
            """Replace a shortcut's title and filter.
            Args:
                name: Shortcut name (shortcuts/<id>)
                title: New title
                filter: New filter expression
            """
            with timed_operation("tool_shortcut_update", name=name):
                try:
                    shortcut = service.update_shortcut(
                        {"name": name, "title": title, "filter": filter}
                    )
                    return f"Shortcut updated: {shortcut.name}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="shortcut_delete")
        def shortcut_delete(name: str) -> str:
            """Delete a shortcut.
            Args:
                name: Shortcut name (shortcuts/<id>)
            """
            with timed_operation("tool_shortcut_delete", name=name):
                try:
                    service.delete_shortcut(name)
                    return f"Shortcut deleted: {name}"
                except Exception as e:
                    return self.format_error_response(e)

    # =========================================================================
    # User tools
    # =========================================================================

    def _register_user_tools(self) -> None:
        service = self.memo_service

        @self.mcp.tool(name="user_me")
        def user_me() -> str:
            """Show the authenticated user."""
            with timed_operation("tool_user_me"):
                try:
                    user = service.get_current_user()
                    output = f"# {user.display_name}\n"
                    output += f"Name: {user.name}\n"
                    if user.email:
                        output += f"Email: {user.email}\n"
                    if user.description:
                        output += f"\n{user.description}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="user_stats")
        def user_stats(username: Optional[str] = None, include_metrics: bool = False) -> str:
            """Memo statistics for the repository.
            Args:
                username: Restrict recent-activity figures to this user (users/<login>)
                include_metrics: Append server performance metrics
            """
            with timed_operation("tool_user_stats"):
                try:
                    stats = service.get_user_stats(username)
                    output = "# Memo Statistics\n\n"
                    output += f"**Memos:** {stats.memo_count}\n"
                    output += f"**Archived:** {stats.archived_memo_count}\n"
                    output += f"**Tags:** {', '.join(sorted(stats.tag_count)) or 'none'}\n"
                    output += (
                        f"**Recent memos with links/code/tasks:** "
                        f"{stats.memo_type_stats.link_count}/"
                        f"{stats.memo_type_stats.code_count}/"
                        f"{stats.memo_type_stats.todo_count}\n"
                    )
                    if include_metrics:
                        summary = metrics.get_summary(exclude_prefix=TOOL_METRIC_PREFIX)
                        output += "\n## Server Metrics\n"
                        output += f"**Uptime:** {summary['uptime_seconds']:.0f} seconds\n"
                        output += f"**Operations:** {summary['total_operations']}\n"
                        output += f"**Success Rate:** {summary['overall_success_rate']:.1%}\n"
                        output += f"**Errors:** {summary['total_errors']}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
