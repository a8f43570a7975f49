"""Repositories for the JSON files kept under ``.memos/``.

User settings live in ``.memos/settings.json`` (one object) and shortcuts
in ``.memos/shortcuts.json`` (one array). Every change reads the whole
file, edits it in memory and writes it back with the content sha it was
read at, so a concurrent writer makes the tracker reject the stale write.
Rejected writes are retried from a fresh read up to
``TrackerConfig.conflict_retries`` times.
"""
import base64
import copy
import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from issuememo_mcp.config import TrackerConfig
from issuememo_mcp.exceptions import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from issuememo_mcp.models.schema import Shortcut, UserSettings, Visibility
from issuememo_mcp.observability import traced
from issuememo_mcp.storage.github_client import GitHubClient
from issuememo_mcp.storage.resource_names import parse_shortcut_name, shortcut_name

logger = logging.getLogger(__name__)

SETTINGS_PATH = ".memos/settings.json"
SHORTCUTS_PATH = ".memos/shortcuts.json"

DEFAULT_THEME = "system"
DEFAULT_SETTINGS: Dict[str, Any] = {
    "locale": "en",
    "appearance": DEFAULT_THEME,
    "theme": DEFAULT_THEME,
    "memoVisibility": Visibility.PRIVATE.value,
}

# A mutation returns (new value, commit message), or None to skip the write
Mutation = Callable[[Any], Optional[Tuple[Any, str]]]


def _first_set(*values: Optional[str]) -> str:
    for value in values:
        if value is not None:
            return value
    return DEFAULT_THEME


def _with_aliases(stored: Dict[str, Any], changes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Merge changes over stored settings and defaults, aliases resolved to one value.

    The pair is taken from ``changes`` first, then from ``stored``, with
    ``theme`` ahead of ``appearance`` on each side. The default theme only
    applies when neither side names either key.
    """
    changes = changes or {}
    theme = _first_set(
        changes.get("theme"), changes.get("appearance"),
        stored.get("theme"), stored.get("appearance"),
    )
    merged = {**DEFAULT_SETTINGS, **stored, **changes}
    merged.update(theme=theme, appearance=theme)
    return merged


class JsonFileStore:
    """Read and write JSON documents stored as repository files."""

    def __init__(self, client: GitHubClient, config: Optional[TrackerConfig] = None):
        self.client = client
        self.config = config or client.config

    def read(self, path: str, default: Any) -> Tuple[Any, str]:
        """Fetch and decode a JSON file.

        Returns:
            Tuple of (value, sha). A missing file gives a copy of ``default``
            and an empty sha; so does a file with no content, but then with
            its real sha so a later write replaces it.

        Raises:
            UpstreamError: When the file holds something other than JSON.
        """
        try:
            data = self.client.get_content(path)
        except NotFoundError:
            return copy.deepcopy(default), ""

        if not isinstance(data, dict) or data.get("type", "file") != "file":
            logger.warning(f"{path} is not a regular file; using defaults")
            return copy.deepcopy(default), ""
        sha = data.get("sha") or ""
        if not data.get("content"):
            return copy.deepcopy(default), sha

        try:
            raw = base64.b64decode(data["content"]).decode("utf-8")
            return json.loads(raw), sha
        except (ValueError, UnicodeDecodeError) as e:
            raise UpstreamError(
                f"{path} does not contain valid JSON",
                operation=f"read {path}",
                code=ErrorCode.UPSTREAM_BAD_RESPONSE,
                original_error=e,
            ) from e

    def write(self, path: str, value: Any, sha: str, message: str) -> str:
        """Write a JSON file and return its new sha.

        An empty ``sha`` creates the file; otherwise it must be the sha of
        the version being replaced.

        Raises:
            ConflictError: When the sha is stale or the file appeared meanwhile.
        """
        encoded = json.dumps(value, indent=2, ensure_ascii=False).encode("utf-8")
        result = self.client.put_content(
            path, base64.b64encode(encoded).decode("ascii"), message, sha=sha or None
        ) or {}
        return (result.get("content") or {}).get("sha", "")

    def modify(self, path: str, default: Any, mutate: Mutation) -> Any:
        """Read-mutate-write with refetch-and-retry on conflicts.

        Args:
            path: Repository file path.
            default: Value used when the file does not exist.
            mutate: Called with the current value; returns (new value,
                commit message), or None when nothing needs writing.

        Returns:
            The value now stored (the unchanged current value on a skip).

        Raises:
            ConflictError: When every attempt was rejected as stale.
        """
        attempts = self.config.conflict_retries + 1
        for attempt in range(1, attempts + 1):
            current, sha = self.read(path, default)
            change = mutate(current)
            if change is None:
                return current
            value, message = change
            try:
                self.write(path, value, sha, message)
                return value
            except ConflictError as e:
                if attempt >= attempts:
                    raise ConflictError(
                        f"Gave up writing {path} after {attempts} conflicting attempts",
                        path=path,
                        token=sha,
                        code=ErrorCode.CONFLICT_RETRIES_EXHAUSTED,
                    ) from e
                logger.warning(
                    f"Write to {path} conflicted (attempt {attempt}/{attempts}); retrying"
                )
        return None

    def delete(self, path: str, message: str) -> bool:
        """Delete a file. Returns False when it did not exist."""
        try:
            data = self.client.get_content(path)
        except NotFoundError:
            return False
        sha = data.get("sha", "") if isinstance(data, dict) else ""
        if not sha:
            return False
        self.client.delete_content(path, message, sha)
        return True


class SettingsRepository:
    """User settings with the ``theme``/``appearance`` alias pair kept in step."""

    def __init__(self, store: JsonFileStore):
        self.store = store

    @staticmethod
    def _resolve(stored: Dict[str, Any]) -> UserSettings:
        return UserSettings.model_validate(_with_aliases(stored))

    @traced("settings_get")
    def get_settings(self) -> UserSettings:
        stored, _ = self.store.read(SETTINGS_PATH, {})
        return self._resolve(stored if isinstance(stored, dict) else {})

    @traced("settings_update")
    def update_settings(self, settings: Union[UserSettings, Dict[str, Any]]) -> UserSettings:
        """Merge the given fields into the stored settings.

        Only fields present in ``settings`` change. Setting either ``theme``
        or ``appearance`` sets both.
        """
        if not isinstance(settings, UserSettings):
            try:
                settings = UserSettings.model_validate(settings)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid settings: {e}", field="settings") from e
        changes = settings.model_dump(by_alias=True, exclude_unset=True)

        def mutate(current: Any) -> Tuple[Dict[str, Any], str]:
            current = current if isinstance(current, dict) else {}
            updated = _with_aliases(current, changes)
            return updated, "Update user settings"

        return UserSettings.model_validate(self.store.modify(SETTINGS_PATH, {}, mutate))

    @traced("settings_clear")
    def clear_settings(self) -> bool:
        """Remove the settings file; later reads return the defaults."""
        return self.store.delete(SETTINGS_PATH, "Clear user settings")


class ShortcutRepository:
    """Saved filters stored as one JSON array."""

    def __init__(self, store: JsonFileStore):
        self.store = store

    @property
    def _strict(self) -> bool:
        return self.store.config.strict_names

    @staticmethod
    def _entries(data: Any) -> List[Dict[str, Any]]:
        return [e for e in data if isinstance(e, dict)] if isinstance(data, list) else []

    @traced("shortcut_list")
    def get_shortcuts(self) -> List[Shortcut]:
        data, _ = self.store.read(SHORTCUTS_PATH, [])
        shortcuts = []
        for entry in self._entries(data):
            try:
                shortcuts.append(Shortcut.model_validate(entry))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable shortcut entry {entry.get('id')}: {e}")
        return shortcuts

    @traced("shortcut_create")
    def create_shortcut(self, title: str, filter: str = "") -> Shortcut:
        shortcut_id = str(uuid.uuid4())
        try:
            shortcut = Shortcut(
                name=shortcut_name(shortcut_id), id=shortcut_id, title=title, filter=filter
            )
        except PydanticValidationError as e:
            raise ValidationError("Shortcut title cannot be empty", field="title", value=title) from e

        def mutate(current: Any) -> Tuple[List[Dict[str, Any]], str]:
            entries = self._entries(current)
            entries.append(shortcut.model_dump(by_alias=True))
            return entries, f"Create shortcut: {shortcut.title}"

        self.store.modify(SHORTCUTS_PATH, [], mutate)
        logger.info(f"Created shortcut {shortcut.name}")
        return shortcut

    @traced("shortcut_update")
    def update_shortcut(self, shortcut: Union[Shortcut, Dict[str, Any]]) -> Shortcut:
        """Replace the stored shortcut with the same id.

        Raises:
            NotFoundError: When no stored shortcut has that id.
        """
        if not isinstance(shortcut, Shortcut):
            data = dict(shortcut)
            if not data.get("id") and data.get("name"):
                data["id"] = parse_shortcut_name(data["name"], strict=self._strict)
            data.setdefault("name", shortcut_name(data.get("id", "")))
            try:
                shortcut = Shortcut.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid shortcut: {e}", field="shortcut") from e
        shortcut_id = parse_shortcut_name(shortcut.id, strict=self._strict)
        shortcut = shortcut.model_copy(update={"id": shortcut_id, "name": shortcut_name(shortcut_id)})

        def mutate(current: Any) -> Tuple[List[Dict[str, Any]], str]:
            entries = self._entries(current)
            for index, entry in enumerate(entries):
                if entry.get("id") == shortcut_id:
                    entries[index] = shortcut.model_dump(by_alias=True)
                    return entries, f"Update shortcut: {shortcut.title}"
            raise NotFoundError(
                "shortcut", shortcut_name(shortcut_id), code=ErrorCode.SHORTCUT_NOT_FOUND
            )

        self.store.modify(SHORTCUTS_PATH, [], mutate)
        return shortcut

    @traced("shortcut_delete")
    def delete_shortcut(self, name: str) -> None:
        """Remove a shortcut; removing an unknown id changes nothing."""
        shortcut_id = parse_shortcut_name(name, strict=self._strict)

        def mutate(current: Any) -> Optional[Tuple[List[Dict[str, Any]], str]]:
            entries = self._entries(current)
            remaining = [e for e in entries if e.get("id") != shortcut_id]
            if len(remaining) == len(entries):
                logger.debug(f"Shortcut {shortcut_id} not present; nothing to delete")
                return None
            return remaining, f"Delete shortcut: {shortcut_id}"

        self.store.modify(SHORTCUTS_PATH, [], mutate)

    @traced("shortcut_clear")
    def clear_shortcuts(self) -> bool:
        """Remove the shortcuts file entirely."""
        return self.store.delete(SHORTCUTS_PATH, "Clear shortcuts")
