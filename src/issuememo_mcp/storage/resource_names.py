"""Canonical resource names and their parsing.

Names look like ``memos/42``, ``memos/42/reactions/7``, ``attachments/<file>``,
``shortcuts/<uuid>`` and ``users/<login>``. Every parser takes a ``strict``
flag: strict parsing raises MalformedInputError on anything it cannot read,
tolerant parsing strips the known prefix and hands back whatever remains
(callers must then validate the result themselves).
"""
import re
import uuid
from typing import Tuple, Union

from issuememo_mcp.exceptions import ErrorCode, MalformedInputError

MEMO_PREFIX = "memos/"
ATTACHMENT_PREFIX = "attachments/"
SHORTCUT_PREFIX = "shortcuts/"
USER_PREFIX = "users/"

_LOGIN_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$")
_REACTION_PATTERN = re.compile(r"^memos/(\d+)/reactions/(\d+)$")


def _malformed(kind: str, name: str) -> MalformedInputError:
    return MalformedInputError(
        f"Malformed {kind} name: '{name}'", value=name, code=ErrorCode.MALFORMED_NAME
    )


def _strip_prefix(name: str, prefix: str) -> str:
    """Return the text after the last occurrence of prefix (or name unchanged)."""
    return name.split(prefix)[-1]


# ----------------------------------------------------------------------------
# Memos
# ----------------------------------------------------------------------------


def memo_name(uid: int) -> str:
    return f"{MEMO_PREFIX}{uid}"


def parse_memo_name(name: Union[str, int], strict: bool = True) -> Union[int, str]:
    """Parse ``memos/{n}`` (or a bare number) into the issue number.

    Args:
        name: Memo name, bare numeric string or int.
        strict: Raise on malformed input instead of degrading.

    Returns:
        The issue number. In tolerant mode a malformed name yields the
        unparsed remainder string instead.

    Raises:
        MalformedInputError: In strict mode when the name is not ``memos/<n>``
            with a positive integer n.
    """
    if isinstance(name, int) and not isinstance(name, bool):
        if name > 0:
            return name
        if strict:
            raise _malformed("memo", str(name))
        return str(name)

    text = str(name).strip()
    remainder = text[len(MEMO_PREFIX):] if text.startswith(MEMO_PREFIX) else text
    if remainder.isdigit() and int(remainder) > 0:
        return int(remainder)
    if strict:
        raise _malformed("memo", text)
    return _strip_prefix(text, MEMO_PREFIX)


def reaction_name(uid: int, reaction_id: int) -> str:
    return f"{MEMO_PREFIX}{uid}/reactions/{reaction_id}"


def parse_reaction_name(name: str) -> Tuple[int, int]:
    """Split ``memos/{n}/reactions/{id}`` into (issue number, reaction id).

    Composite names are always parsed strictly: a reaction delete with a
    guessed id would remove somebody else's reaction.
    """
    match = _REACTION_PATTERN.match(name.strip())
    if not match:
        raise _malformed("reaction", name)
    return int(match.group(1)), int(match.group(2))


def comment_name(uid: int, comment_id: int) -> str:
    return f"{MEMO_PREFIX}{uid}/comments/{comment_id}"


# ----------------------------------------------------------------------------
# Attachments
# ----------------------------------------------------------------------------


def attachment_name(filename: str) -> str:
    return f"{ATTACHMENT_PREFIX}{filename}"


def parse_attachment_name(name: str, strict: bool = True) -> str:
    """Return the bare filename of ``attachments/{filename}``.

    Strict parsing rejects empty names, nested paths and ``..`` so a name
    can never address a file outside the attachments directory.
    """
    text = name.strip()
    filename = text[len(ATTACHMENT_PREFIX):] if text.startswith(ATTACHMENT_PREFIX) else text
    if not strict:
        return _strip_prefix(text, ATTACHMENT_PREFIX)
    if not filename or "/" in filename or "\\" in filename or filename in (".", ".."):
        raise _malformed("attachment", name)
    return filename


# ----------------------------------------------------------------------------
# Shortcuts
# ----------------------------------------------------------------------------


def shortcut_name(shortcut_id: str) -> str:
    return f"{SHORTCUT_PREFIX}{shortcut_id}"


def parse_shortcut_name(name: str, strict: bool = True) -> str:
    """Return the UUID string of ``shortcuts/{id}`` (a bare id is accepted)."""
    text = name.strip()
    shortcut_id = text[len(SHORTCUT_PREFIX):] if text.startswith(SHORTCUT_PREFIX) else text
    if not strict:
        return _strip_prefix(text, SHORTCUT_PREFIX)
    try:
        return str(uuid.UUID(shortcut_id))
    except ValueError:
        raise _malformed("shortcut", name) from None


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------


def user_name(login: str) -> str:
    return f"{USER_PREFIX}{login}"


def parse_user_name(name: str, strict: bool = True) -> str:
    """Return the login of ``users/{login}`` (a bare login is accepted)."""
    text = name.strip()
    login = text[len(USER_PREFIX):] if text.startswith(USER_PREFIX) else text
    if not strict:
        return _strip_prefix(text, USER_PREFIX)
    if not _LOGIN_PATTERN.match(login):
        raise _malformed("user", name)
    return login
