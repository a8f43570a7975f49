"""Filter expressions for memo listing.

Supported predicates, joined with ``&&`` and optionally parenthesized::

    tag in ["work", "ideas"]
    creator == "users/octocat"
    content.contains("milk")
    pinned == true

Anything else is kept as an ``UnknownFragment`` which matches every memo.
By default unknown fragments are logged and ignored; with ``strict=True``
the parser raises MalformedInputError instead.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from issuememo_mcp.exceptions import ErrorCode, MalformedInputError
from issuememo_mcp.models.schema import Memo
from issuememo_mcp.storage.label_sync import tag_label

logger = logging.getLogger(__name__)


# ============================================================================
# Tokenizer
# ============================================================================

# Token kinds
STRING = "STRING"
IDENT = "IDENT"
NUMBER = "NUMBER"
OP = "OP"
END = "END"

_TWO_CHAR_OPS = ("&&", "||", "==", "!=", ">=", "<=")
_ONE_CHAR_OPS = "()[],.!<>"


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    pos: int


def tokenize(text: str) -> List[Token]:
    """Split a filter expression into tokens.

    Unterminated strings and stray characters become single-character OP
    tokens so the parser can fold them into an unknown fragment.
    """
    tokens: List[Token] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        if ch in ('"', "'"):
            quote = ch
            j = i + 1
            chars = []
            while j < n and text[j] != quote:
                if text[j] == "\\" and j + 1 < n:
                    j += 1
                chars.append(text[j])
                j += 1
            if j < n:
                tokens.append(Token(STRING, "".join(chars), i))
                i = j + 1
                continue
            tokens.append(Token(OP, ch, i))
            i += 1
            continue
        if text.startswith(_TWO_CHAR_OPS, i):
            tokens.append(Token(OP, text[i:i + 2], i))
            i += 2
            continue
        if ch in _ONE_CHAR_OPS:
            tokens.append(Token(OP, ch, i))
            i += 1
            continue
        if ch.isdigit() or (ch == "-" and i + 1 < n and text[i + 1].isdigit()):
            j = i + 1
            while j < n and (text[j].isdigit() or text[j] == "."):
                j += 1
            tokens.append(Token(NUMBER, text[i:j], i))
            i = j
            continue
        if ch.isalnum() or ch == "_":
            j = i + 1
            while j < n and (text[j].isalnum() or text[j] in "_-/"):
                j += 1
            tokens.append(Token(IDENT, text[i:j], i))
            i = j
            continue
        tokens.append(Token(OP, ch, i))
        i += 1
    tokens.append(Token(END, "", n))
    return tokens


# ============================================================================
# Predicate tree
# ============================================================================


@dataclass(frozen=True)
class TagIn:
    """Memo carries at least one of the tags."""

    tags: tuple

    def matches(self, memo: Memo) -> bool:
        return any(tag in memo.tags for tag in self.tags)


@dataclass(frozen=True)
class CreatorEquals:
    creator: str

    def matches(self, memo: Memo) -> bool:
        return memo.creator == self.creator


@dataclass(frozen=True)
class ContentContains:
    """Case-insensitive substring match on memo content."""

    text: str

    def matches(self, memo: Memo) -> bool:
        return self.text.lower() in memo.content.lower()


@dataclass(frozen=True)
class PinnedEquals:
    pinned: bool

    def matches(self, memo: Memo) -> bool:
        return memo.pinned == self.pinned


@dataclass(frozen=True)
class UnknownFragment:
    """Syntax the parser did not recognize; places no constraint."""

    text: str

    def matches(self, memo: Memo) -> bool:
        return True


@dataclass(frozen=True)
class And:
    children: tuple = ()

    def matches(self, memo: Memo) -> bool:
        return all(child.matches(memo) for child in self.children)


Predicate = Union[TagIn, CreatorEquals, ContentContains, PinnedEquals, UnknownFragment, And]


@dataclass
class MemoFilter:
    """A parsed filter: the predicate tree plus convenient accessors."""

    root: And = field(default_factory=And)
    source: str = ""

    def predicates(self) -> List[Predicate]:
        """All leaf predicates, flattened out of nested groups."""
        out: List[Predicate] = []
        stack = list(reversed(self.root.children))
        while stack:
            node = stack.pop()
            if isinstance(node, And):
                stack.extend(reversed(node.children))
            else:
                out.append(node)
        return out

    def _first(self, kind):
        for p in self.predicates():
            if isinstance(p, kind):
                return p
        return None

    @property
    def tags(self) -> Optional[List[str]]:
        p = self._first(TagIn)
        return list(p.tags) if p else None

    @property
    def creator(self) -> Optional[str]:
        p = self._first(CreatorEquals)
        return p.creator if p else None

    @property
    def content_search(self) -> Optional[str]:
        p = self._first(ContentContains)
        return p.text if p else None

    @property
    def pinned(self) -> Optional[bool]:
        p = self._first(PinnedEquals)
        return p.pinned if p else None

    @property
    def unknown(self) -> List[str]:
        return [p.text for p in self.predicates() if isinstance(p, UnknownFragment)]

    def is_empty(self) -> bool:
        return not any(
            not isinstance(p, UnknownFragment) for p in self.predicates()
        )

    def label_pushdown(self) -> Optional[str]:
        """Label to pass to the tracker's list query, if one can be pushed down.

        The tracker's label filter requires *all* listed labels, while
        ``tag in [...]`` means *any*, so only a single-tag predicate is
        pushed down. Multi-tag predicates are checked client-side.
        """
        for p in self.predicates():
            if isinstance(p, TagIn) and len(p.tags) == 1:
                return tag_label(p.tags[0])
        return None

    def matches(self, memo: Memo) -> bool:
        return self.root.matches(memo)

    def apply(self, memos: Sequence[Memo]) -> List[Memo]:
        return [m for m in memos if self.matches(m)]


# ============================================================================
# Recursive-descent parser
# ============================================================================


class _Parser:
    def __init__(self, text: str, tokens: List[Token]):
        self.text = text
        self.tokens = tokens
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        tok = self.peek()
        if tok.kind != END:
            self.pos += 1
        return tok

    def at(self, kind: str, value: Optional[str] = None, offset: int = 0) -> bool:
        tok = self.peek(offset)
        return tok.kind == kind and (value is None or tok.value == value)

    def parse_expression(self, depth: int = 0) -> And:
        children = []
        while True:
            children.append(self.parse_term(depth))
            if self.at(OP, "&&"):
                self.advance()
                continue
            if self.at(END) or (depth > 0 and self.at(OP, ")")):
                break
            # Junk after a complete term (e.g. "|| ..."): fold it into an unknown
            children.append(self.skip_unknown(depth, self.peek().pos))
            if self.at(OP, "&&"):
                self.advance()
                continue
            break
        return And(tuple(children))

    def parse_term(self, depth: int) -> Predicate:
        start = self.pos
        if self.at(OP, "("):
            self.advance()
            inner = self.parse_expression(depth + 1)
            if self.at(OP, ")"):
                self.advance()
                return inner
            self.pos = start
            return self.skip_unknown(depth, self.peek().pos)

        predicate = self.try_predicate()
        if predicate is not None:
            return predicate
        self.pos = start
        return self.skip_unknown(depth, self.peek().pos)

    def try_predicate(self) -> Optional[Predicate]:
        if self.at(IDENT, "tag") and self.at(IDENT, "in", 1) and self.at(OP, "[", 2):
            self.pos += 3
            tags = []
            while True:
                tok = self.peek()
                if tok.kind in (STRING, IDENT, NUMBER):
                    value = tok.value.strip()
                    if value and value not in tags:
                        tags.append(value)
                    self.advance()
                else:
                    return None
                if self.at(OP, ","):
                    self.advance()
                    continue
                if self.at(OP, "]"):
                    self.advance()
                    break
                return None
            return TagIn(tuple(tags)) if tags else None

        if self.at(IDENT, "creator") and self.at(OP, "==", 1) and self.at(STRING, offset=2):
            self.pos += 2
            return CreatorEquals(self.advance().value)

        if (
            self.at(IDENT, "content")
            and self.at(OP, ".", 1)
            and self.at(IDENT, "contains", 2)
            and self.at(OP, "(", 3)
            and self.at(STRING, offset=4)
            and self.at(OP, ")", 5)
        ):
            self.pos += 4
            text = self.advance().value
            self.advance()
            return ContentContains(text) if text else None

        if (
            self.at(IDENT, "pinned")
            and self.at(OP, "==", 1)
            and self.peek(2).kind == IDENT
            and self.peek(2).value in ("true", "false")
        ):
            self.pos += 2
            return PinnedEquals(self.advance().value == "true")

        return None

    def skip_unknown(self, depth: int, start_pos: int) -> UnknownFragment:
        """Consume tokens up to the next top-level ``&&`` (or closing paren).

        Stops without consuming anything when already at such a boundary;
        the caller then handles the boundary token itself.
        """
        nesting = 0
        end_pos = start_pos
        while not self.at(END):
            tok = self.peek()
            if tok.kind == OP and tok.value in ("(", "["):
                nesting += 1
            elif tok.kind == OP and tok.value in (")", "]"):
                if nesting == 0 and depth > 0 and tok.value == ")":
                    break
                nesting = max(0, nesting - 1)
            elif tok.kind == OP and tok.value == "&&" and nesting == 0:
                break
            self.advance()
            end_pos = self.peek().pos
        return UnknownFragment(self.text[start_pos:end_pos].strip())


def parse_filter(text: Optional[str], strict: bool = False) -> MemoFilter:
    """Parse a filter expression.

    Args:
        text: The expression; empty or None means "no constraint".
        strict: Raise on unrecognized fragments instead of ignoring them.

    Returns:
        A MemoFilter whose predicates combine with implicit AND.

    Raises:
        MalformedInputError: In strict mode, when any fragment is unknown.
    """
    if not text or not text.strip():
        return MemoFilter(source=text or "")

    parser = _Parser(text, tokenize(text))
    root = parser.parse_expression()
    parsed = MemoFilter(root=root, source=text)

    unknown = [u for u in parsed.unknown if u]
    if unknown:
        if strict:
            raise MalformedInputError(
                f"Unrecognized filter fragment: '{unknown[0]}'",
                value=text,
                code=ErrorCode.MALFORMED_FILTER,
            )
        logger.warning(f"Ignoring unrecognized filter fragments: {unknown}")
    return parsed
