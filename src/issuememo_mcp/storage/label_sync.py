"""Label reconciliation for memo tags and reserved flags."""
import logging
from typing import Iterable, List

from issuememo_mcp.exceptions import NotFoundError, UpstreamError
from issuememo_mcp.storage.github_client import GitHubClient

logger = logging.getLogger(__name__)

TAG_LABEL_PREFIX = "tag:"
PINNED_LABEL = "pinned"
DELETED_LABEL = "deleted"

# Label colors per label class
TAG_COLOR = "0075ca"
PINNED_COLOR = "e4e669"
DELETED_COLOR = "d73a4a"


def tag_label(tag: str) -> str:
    return f"{TAG_LABEL_PREFIX}{tag}"


def label_color(label: str) -> str:
    """Color for a label, by class."""
    if label == PINNED_LABEL:
        return PINNED_COLOR
    if label == DELETED_LABEL:
        return DELETED_COLOR
    return TAG_COLOR


def build_labels(tags: Iterable[str], pinned: bool) -> List[str]:
    """Labels an issue must carry for the given tags and pinned flag."""
    labels = [tag_label(t) for t in tags]
    if pinned:
        labels.append(PINNED_LABEL)
    return labels


def tags_from_labels(labels: Iterable[dict]) -> List[str]:
    """Tag names from an issue's label objects, in label order."""
    tags = []
    for label in labels:
        name = label.get("name") or ""
        if name.startswith(TAG_LABEL_PREFIX) and name[len(TAG_LABEL_PREFIX):]:
            tags.append(name[len(TAG_LABEL_PREFIX):])
    return tags


def has_label(labels: Iterable[dict], name: str) -> bool:
    return any(label.get("name") == name for label in labels)


class LabelSynchronizer:
    """Makes sure every label a write refers to exists in the repository.

    Runs before each create/update that sets labels. Existing labels are
    left alone; a label created concurrently by someone else counts as
    success. Labels created before a later failing write are not removed.
    """

    def __init__(self, client: GitHubClient):
        self.client = client

    def ensure(self, labels: Iterable[str]) -> List[str]:
        """Create any missing labels.

        Args:
            labels: Label names the next write will reference.

        Returns:
            The names of labels that had to be created.
        """
        created = []
        for label in dict.fromkeys(labels):
            try:
                self.client.get_label(label)
                continue
            except NotFoundError:
                pass

            try:
                self.client.create_label(label, label_color(label))
                created.append(label)
                logger.info(f"Created label '{label}'")
            except UpstreamError as e:
                # 422 "already_exists": another writer won the race
                if e.status_code != 422:
                    raise
                logger.debug(f"Label '{label}' already exists")
        return created
