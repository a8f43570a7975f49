"""Tests for the memo metadata block codec."""
import pytest
from pydantic import ValidationError as PydanticValidationError

from issuememo_mcp.models.schema import (
    Location,
    MemoRelation,
    MemoRelationMemo,
    MemoRelationType,
    Visibility,
)
from issuememo_mcp.storage.frontmatter import (
    MalformedBlock,
    MemoMetadata,
    NoBlock,
    ParsedBlock,
    build_body,
    decode,
    encode,
    parse,
)


@pytest.fixture
def full_meta():
    return MemoMetadata(
        visibility=Visibility.PUBLIC,
        location=Location(latitude=52.37, longitude=4.89),
        relations=[
            MemoRelation(
                memo=MemoRelationMemo(name="memos/1"),
                related_memo=MemoRelationMemo(name="memos/3", snippet="see also"),
                type=MemoRelationType.REFERENCE,
            )
        ],
        attachments=["attachments/1717000000000_photo.png"],
    )


class TestEncode:
    def test_empty_metadata_encodes_to_nothing(self):
        assert encode(MemoMetadata()) == ""
        assert build_body("Buy milk", MemoMetadata()) == "Buy milk"

    def test_private_visibility_is_default_and_omitted(self):
        meta = MemoMetadata(attachments=["attachments/a.png"])
        block = encode(meta)
        assert "visibility" not in block
        assert block == '---\nattachments: ["attachments/a.png"]\n---'

    def test_full_block_layout(self, full_meta):
        lines = encode(full_meta).split("\n")
        assert lines[0] == "---"
        assert lines[-1] == "---"
        assert lines[1] == "visibility: PUBLIC"
        assert lines[2] == "location_lat: 52.37"
        assert lines[3] == "location_lng: 4.89"
        assert lines[4].startswith('relations: [{"memo":{"name":"memos/1"')
        assert '"relatedMemo":{"name":"memos/3","snippet":"see also"}' in lines[4]
        assert lines[5] == 'attachments: ["attachments/1717000000000_photo.png"]'


class TestRoundTrip:
    @pytest.mark.parametrize("content", [
        "Buy milk #errand",
        "",
        "line one\nline two\n",
        "unicode ✓ 日本語",
        "text with --- inside\n---\nnot at start",
    ])
    def test_decode_inverts_build_body(self, full_meta, content):
        meta, decoded = decode(build_body(content, full_meta))
        assert meta == full_meta
        assert decoded == content

    def test_plain_content_round_trips_byte_identical(self):
        body = build_body("Just a note\nwith two lines", MemoMetadata())
        assert body == "Just a note\nwith two lines"
        assert decode(body) == (MemoMetadata(), "Just a note\nwith two lines")

    def test_content_that_looks_like_a_block_is_protected(self):
        content = "---\nfoo: bar\n---\nbody"
        body = build_body(content, MemoMetadata())
        assert body != content
        assert decode(body) == (MemoMetadata(), content)

    def test_location_only(self):
        meta = MemoMetadata(location=Location(latitude=-33.5, longitude=0.0))
        assert decode(build_body("x", meta)) == (meta, "x")

    @pytest.mark.parametrize("meta", [
        MemoMetadata(location=Location(latitude=1.5, longitude=2.5, placeholder="Amsterdam")),
        MemoMetadata(location=Location(latitude=0.0, longitude=0.0, placeholder="")),
        MemoMetadata(location=Location(latitude=1.0, longitude=1.0, placeholder='a "quoted"\nplace')),
        MemoMetadata(
            visibility=Visibility.PUBLIC,
            relations=[MemoRelation(related_memo=MemoRelationMemo(name="memos/2", snippet="a\u2028b"))],
        ),
        MemoMetadata(attachments=["attachments/1_x\u2029y.png", "attachments/2_z\x85.txt"]),
        MemoMetadata(
            visibility=Visibility.PROTECTED,
            relations=[
                MemoRelation(
                    related_memo=MemoRelationMemo(name="memos/9"),
                    type=MemoRelationType.COMMENT,
                )
            ],
        ),
        MemoMetadata(location=Location(latitude=1e-300, longitude=-179.999999999)),
    ], ids=[
        "placeholder", "empty-placeholder", "placeholder-with-newline",
        "unicode-line-separator-in-snippet", "unicode-line-separators-in-attachments",
        "related-memo-only", "extreme-coordinates",
    ])
    def test_metadata_shapes_round_trip(self, meta):
        assert decode(build_body("hi\nthere", meta)) == (meta, "hi\nthere")

    def test_content_with_unicode_line_separators(self, full_meta):
        content = "first\u2028second\u2029third\rfourth\x85"
        assert decode(build_body(content, full_meta)) == (full_meta, content)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_coordinates_are_rejected(self, value):
        with pytest.raises(PydanticValidationError):
            Location(latitude=value, longitude=0.0)


class TestParse:
    def test_no_block(self):
        assert parse("hello") == NoBlock(content="hello")

    def test_block_must_start_at_beginning(self):
        text = "intro\n---\nvisibility: PUBLIC\n---\nrest"
        assert isinstance(parse(text), NoBlock)

    def test_unclosed_block_is_not_a_block(self):
        text = "---\nvisibility: PUBLIC\nno closing"
        assert parse(text) == NoBlock(content=text)

    def test_parsed_block(self):
        result = parse("---\nvisibility: PROTECTED\n---\nhello")
        assert isinstance(result, ParsedBlock)
        assert result.meta.visibility == Visibility.PROTECTED
        assert result.content == "hello"

    def test_crlf_delimiters(self):
        result = parse("---\r\nvisibility: PUBLIC\r\n---\r\nhello")
        assert isinstance(result, ParsedBlock)
        assert result.meta.visibility == Visibility.PUBLIC
        assert result.content == "hello"

    def test_unknown_keys_are_ignored(self):
        result = parse("---\nmood: happy\nvisibility: PUBLIC\n---\nhi")
        assert isinstance(result, ParsedBlock)
        assert result.meta.visibility == Visibility.PUBLIC

    def test_single_coordinate_fills_the_other_with_zero(self):
        result = parse("---\nlocation_lat: 10.5\n---\nhi")
        assert result.meta.location == Location(latitude=10.5, longitude=0.0)

    @pytest.mark.parametrize("line", [
        "visibility: SECRET",
        "location_lat: north",
        "relations: [not json",
        'relations: {"a": 1}',
        "attachments: [1, 2]",
        "location_lat: nan",
        "location_lng: inf",
        "location_placeholder: Amsterdam",
        "location_placeholder: 12",
        "just some words",
    ])
    def test_malformed_lines(self, line):
        text = f"---\n{line}\n---\ncontent"
        result = parse(text)
        assert isinstance(result, MalformedBlock)
        assert result.content == text
        assert result.reason

    def test_decode_falls_back_to_whole_text_on_malformed(self):
        text = "---\nvisibility: SECRET\n---\ncontent"
        assert decode(text) == (MemoMetadata(), text)
