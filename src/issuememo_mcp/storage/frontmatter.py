"""Metadata block codec for memo bodies.

A memo's issue body is an optional metadata block followed by the raw
memo content::

    ---
    visibility: PUBLIC
    location_lat: 52.37
    location_lng: 4.89
    location_placeholder: "Amsterdam"
    relations: [{"relatedMemo":{"name":"memos/3","snippet":""},"type":"REFERENCE"}]
    attachments: ["attachments/1717000000000_photo.png"]
    ---
    The memo text starts here.

The grammar is line oriented: an opening ``---`` line at the very start of
the body, ``key: value`` lines, and a closing ``---`` line. ``relations``,
``attachments`` and ``location_placeholder`` carry single-line JSON. Only a
newline character ends a line; other Unicode line separators inside JSON
strings stay part of their value. Fields at their default value are not
written, and a body without any metadata has no block at all, so plain
notes stay byte-identical.
"""
import json
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from issuememo_mcp.models.schema import Location, MemoRelation, Visibility

logger = logging.getLogger(__name__)

DELIMITER = "---"

KEY_VISIBILITY = "visibility"
KEY_LOCATION_LAT = "location_lat"
KEY_LOCATION_LNG = "location_lng"
KEY_LOCATION_PLACEHOLDER = "location_placeholder"
KEY_RELATIONS = "relations"
KEY_ATTACHMENTS = "attachments"


class MemoMetadata(BaseModel):
    """Everything about a memo that lives in the metadata block."""

    visibility: Visibility = Visibility.PRIVATE
    location: Optional[Location] = None
    relations: List[MemoRelation] = Field(default_factory=list)
    attachments: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        """True when every field holds its default, i.e. nothing to encode."""
        return (
            self.visibility == Visibility.PRIVATE
            and self.location is None
            and not self.relations
            and not self.attachments
        )


@dataclass(frozen=True)
class ParsedBlock:
    """A well-formed block was found and stripped from the content."""

    meta: MemoMetadata
    content: str


@dataclass(frozen=True)
class NoBlock:
    """The text does not start with a complete block."""

    content: str


@dataclass(frozen=True)
class MalformedBlock:
    """A delimited block exists but one of its lines could not be read."""

    content: str
    reason: str


ParseResult = Union[ParsedBlock, NoBlock, MalformedBlock]


class _BlockSyntaxError(ValueError):
    pass


def _dump_json(value) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _format_number(value: float) -> str:
    return repr(float(value))


def encode(meta: MemoMetadata) -> str:
    """Render the metadata block, or an empty string when there is nothing to say.

    The returned block has no trailing newline; use :func:`build_body` to
    join it with content.
    """
    if meta.is_empty():
        return ""

    lines = [DELIMITER]
    if meta.visibility != Visibility.PRIVATE:
        lines.append(f"{KEY_VISIBILITY}: {meta.visibility.value}")
    if meta.location is not None:
        lines.append(f"{KEY_LOCATION_LAT}: {_format_number(meta.location.latitude)}")
        lines.append(f"{KEY_LOCATION_LNG}: {_format_number(meta.location.longitude)}")
        if meta.location.placeholder is not None:
            lines.append(f"{KEY_LOCATION_PLACEHOLDER}: {_dump_json(meta.location.placeholder)}")
    if meta.relations:
        relations = [
            r.model_dump(mode="json", by_alias=True, exclude_none=True)
            for r in meta.relations
        ]
        lines.append(f"{KEY_RELATIONS}: {_dump_json(relations)}")
    if meta.attachments:
        lines.append(f"{KEY_ATTACHMENTS}: {_dump_json(list(meta.attachments))}")
    lines.append(DELIMITER)
    return "\n".join(lines)


def build_body(content: str, meta: MemoMetadata) -> str:
    """Prefix content with its metadata block (content alone if the block is empty)."""
    block = encode(meta)
    if not block:
        if not isinstance(parse(content), NoBlock):
            # Content that itself looks like a block needs an explicit one in front
            block = "\n".join(
                [DELIMITER, f"{KEY_VISIBILITY}: {meta.visibility.value}", DELIMITER]
            )
        else:
            return content
    return f"{block}\n{content}"


def _is_delimiter(line: str) -> bool:
    return line.rstrip("\r\n") == DELIMITER


def _parse_block_lines(block_lines: List[str]) -> MemoMetadata:
    """Turn ``key: value`` lines into metadata; raise _BlockSyntaxError on bad input."""
    values = {}
    lat: Optional[float] = None
    lng: Optional[float] = None
    placeholder: Optional[str] = None

    for raw in block_lines:
        line = raw.rstrip("\r\n")
        if not line.strip():
            continue
        key, sep, value = line.partition(":")
        if not sep:
            raise _BlockSyntaxError(f"expected 'key: value', got {line[:40]!r}")
        key = key.strip()
        value = value.strip()

        if key == KEY_VISIBILITY:
            try:
                values["visibility"] = Visibility(value)
            except ValueError:
                raise _BlockSyntaxError(f"unknown visibility {value!r}") from None
        elif key in (KEY_LOCATION_LAT, KEY_LOCATION_LNG):
            try:
                number = float(value)
            except ValueError:
                raise _BlockSyntaxError(f"{key} is not a number: {value!r}") from None
            if not math.isfinite(number):
                raise _BlockSyntaxError(f"{key} is not finite: {value!r}")
            if key == KEY_LOCATION_LAT:
                lat = number
            else:
                lng = number
        elif key == KEY_LOCATION_PLACEHOLDER:
            try:
                placeholder = json.loads(value)
            except json.JSONDecodeError as e:
                raise _BlockSyntaxError(f"invalid location placeholder: {e}") from e
            if not isinstance(placeholder, str):
                raise _BlockSyntaxError("location placeholder must be a JSON string")
        elif key == KEY_RELATIONS:
            try:
                items = json.loads(value)
                if not isinstance(items, list):
                    raise _BlockSyntaxError("relations must be a JSON array")
                values["relations"] = [MemoRelation.model_validate(i) for i in items]
            except (json.JSONDecodeError, PydanticValidationError) as e:
                raise _BlockSyntaxError(f"invalid relations: {e}") from e
        elif key == KEY_ATTACHMENTS:
            try:
                items = json.loads(value)
            except json.JSONDecodeError as e:
                raise _BlockSyntaxError(f"invalid attachments: {e}") from e
            if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
                raise _BlockSyntaxError("attachments must be a JSON array of names")
            values["attachments"] = items
        else:
            # Keys written by newer versions are skipped, not rejected
            logger.debug(f"Ignoring unknown metadata key '{key}'")

    if lat is not None or lng is not None:
        values["location"] = Location(
            latitude=lat or 0.0, longitude=lng or 0.0, placeholder=placeholder
        )
    return MemoMetadata(**values)


def _split_lines(text: str) -> List[str]:
    """Split on newline only, keeping the terminators (unlike ``str.splitlines``)."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def parse(text: str) -> ParseResult:
    """Split a body into metadata and content, reporting what was found.

    Returns:
        ParsedBlock when a complete, readable block starts the text;
        NoBlock when there is no block (or it is never closed);
        MalformedBlock when the block is delimited but unreadable. In the
        last two cases ``content`` is the whole input.
    """
    lines = _split_lines(text)
    if not lines or not _is_delimiter(lines[0]) or not lines[0].endswith("\n"):
        return NoBlock(content=text)

    closing = None
    for index in range(1, len(lines)):
        if _is_delimiter(lines[index]):
            closing = index
            break
    if closing is None or closing == 1:
        # Unclosed, or "---" immediately followed by "---": not a block
        return NoBlock(content=text)

    try:
        meta = _parse_block_lines(lines[1:closing])
    except _BlockSyntaxError as e:
        return MalformedBlock(content=text, reason=str(e))

    return ParsedBlock(meta=meta, content="".join(lines[closing + 1:]))


def decode(text: str) -> Tuple[MemoMetadata, str]:
    """Best-effort decode: a missing or malformed block means empty metadata.

    Returns:
        Tuple of (metadata, content). When no valid block is present the
        content is the entire input.
    """
    result = parse(text)
    if isinstance(result, ParsedBlock):
        return result.meta, result.content
    if isinstance(result, MalformedBlock):
        logger.warning(f"Ignoring malformed metadata block: {result.reason}")
    return MemoMetadata(), result.content
