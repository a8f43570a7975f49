"""Repository for attachment files kept in the backing repository."""
import base64
import datetime
import logging
import mimetypes
import time
from datetime import timezone
from typing import List, Optional, Union

from issuememo_mcp.config import TrackerConfig
from issuememo_mcp.exceptions import ErrorCode, NotFoundError, ValidationError
from issuememo_mcp.models.schema import Attachment, utc_now
from issuememo_mcp.observability import traced
from issuememo_mcp.storage.github_client import GitHubClient
from issuememo_mcp.storage.resource_names import (
    attachment_name,
    parse_attachment_name,
)

logger = logging.getLogger(__name__)

ATTACHMENTS_DIR = "attachments"
DEFAULT_MIME_TYPE = "application/octet-stream"


def attachment_path(filename: str) -> str:
    return f"{ATTACHMENTS_DIR}/{filename}"


def stored_filename(original: str, epoch_ms: int) -> str:
    """Collision-resistant stored name: ``{epoch_ms}_{original}``."""
    return f"{epoch_ms}_{original}"


def attachment_create_time(filename: str) -> datetime.datetime:
    """Creation time encoded in a stored filename's epoch-millisecond prefix.

    Falls back to the current time when the prefix is missing or not a
    positive integer.
    """
    prefix = filename.split("_", 1)[0]
    if prefix.isdigit() and int(prefix) > 0:
        try:
            return datetime.datetime.fromtimestamp(int(prefix) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            pass
    return utc_now()


def guess_mime_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or DEFAULT_MIME_TYPE


def attachment_from_name(
    name: str, config: TrackerConfig, memo: Optional[str] = None
) -> Attachment:
    """Attachment record for a reference stored in a memo's metadata block.

    The MIME type is only known when a file is uploaded, so ``type`` is empty.
    """
    filename = name[len(f"{ATTACHMENTS_DIR}/"):] if name.startswith(f"{ATTACHMENTS_DIR}/") else name
    return Attachment(
        name=attachment_name(filename),
        filename=filename,
        external_link=config.raw_file_url(attachment_path(filename)),
        memo=memo,
        create_time=attachment_create_time(filename),
    )


class AttachmentRepository:
    """Binary attachments stored as files under ``attachments/``.

    Files are written once and never replaced; each upload gets a fresh
    name prefixed with the upload time in epoch milliseconds.
    """

    def __init__(self, client: GitHubClient, config: Optional[TrackerConfig] = None):
        self.client = client
        self.config = config or client.config

    def _to_attachment(self, item: dict) -> Attachment:
        filename = item.get("name") or ""
        return Attachment(
            name=attachment_name(filename),
            filename=filename,
            external_link=item.get("download_url")
            or self.config.raw_file_url(item.get("path") or attachment_path(filename)),
            size=item.get("size") or 0,
            sha=item.get("sha") or "",
            create_time=attachment_create_time(filename),
        )

    @traced("attachment_list")
    def list(self) -> List[Attachment]:
        """All stored attachments; an absent directory means none."""
        try:
            listing = self.client.get_content(ATTACHMENTS_DIR)
        except NotFoundError:
            logger.debug("Attachments directory does not exist yet")
            return []
        if not isinstance(listing, list):
            return []
        return [
            self._to_attachment(item)
            for item in listing
            if item.get("type", "file") == "file"
        ]

    @traced("attachment_create")
    def create(
        self,
        filename: str,
        data: Union[bytes, bytearray],
        mime_type: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> Attachment:
        """Upload a new attachment.

        Args:
            filename: Original file name (no directory part).
            data: Raw file bytes.
            mime_type: MIME type; guessed from the name when omitted.
            memo: Optional owning memo name to record on the result.

        Returns:
            The stored attachment, with ``create_time`` matching the epoch
            prefix of its stored name.
        """
        original = (filename or "").strip()
        if not original or "/" in original or "\\" in original or original in (".", ".."):
            raise ValidationError(
                "Attachment filename must be a plain file name",
                field="filename",
                value=filename,
            )

        epoch_ms = int(time.time() * 1000)
        stored = stored_filename(original, epoch_ms)
        path = attachment_path(stored)
        content = base64.b64encode(bytes(data)).decode("ascii")

        result = self.client.put_content(
            path, content, message=f"Upload attachment: {original}"
        ) or {}
        sha = (result.get("content") or {}).get("sha", "")
        logger.info(f"Uploaded attachment {path} ({len(data)} bytes)")

        return Attachment(
            name=attachment_name(stored),
            filename=stored,
            external_link=self.config.raw_file_url(path),
            type=mime_type or guess_mime_type(original),
            size=len(data),
            sha=sha,
            memo=memo,
            create_time=attachment_create_time(stored),
        )

    @traced("attachment_delete")
    def delete(self, name: str, sha: str = "") -> None:
        """Delete an attachment.

        Without a sha the file is fetched first to learn it, which costs an
        extra request; pass the sha from a previous listing when known.
        """
        filename = parse_attachment_name(name, strict=self.config.strict_names)
        path = attachment_path(filename)
        if not sha:
            current = self.client.get_content(path)
            if isinstance(current, dict):
                sha = current.get("sha", "")
            if not sha:
                raise NotFoundError(
                    "attachment", name, code=ErrorCode.ATTACHMENT_NOT_FOUND
                )
        self.client.delete_content(path, f"Delete attachment: {filename}", sha)
        logger.info(f"Deleted attachment {path}")

    def get_attachment_url(self, name: str) -> str:
        """Raw download URL for an attachment name."""
        filename = parse_attachment_name(name, strict=self.config.strict_names)
        return self.config.raw_file_url(attachment_path(filename))
