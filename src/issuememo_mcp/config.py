"""Configuration module for the Issue Memo MCP server."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from issuememo_mcp import __version__
from issuememo_mcp.exceptions import ConfigurationError

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: survives reinstalls
_USER_ENV = Path.home() / ".issuememo" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

_TRUTHY = ("true", "1", "yes")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in _TRUTHY


class TrackerConfig(BaseModel):
    """Connection and behaviour settings for the backing GitHub repository.

    A config value is immutable once built. Every client and repository
    receives it through its constructor; use :meth:`with_credentials` to
    derive a new value after a login instead of mutating a shared one.
    """

    # Credentials and target repository
    token: str = Field(default_factory=lambda: os.getenv("ISSUEMEMO_GITHUB_TOKEN", ""))
    owner: str = Field(default_factory=lambda: os.getenv("ISSUEMEMO_GITHUB_OWNER", ""))
    repo: str = Field(default_factory=lambda: os.getenv("ISSUEMEMO_GITHUB_REPO", ""))
    # Endpoints
    api_url: str = Field(
        default_factory=lambda: os.getenv(
            "ISSUEMEMO_GITHUB_API_URL", "https://api.github.com"
        )
    )
    raw_url: str = Field(
        default_factory=lambda: os.getenv(
            "ISSUEMEMO_GITHUB_RAW_URL", "https://raw.githubusercontent.com"
        )
    )
    branch: str = Field(default_factory=lambda: os.getenv("ISSUEMEMO_BRANCH", "main"))
    # HTTP timeout applied to every tracker call (seconds)
    timeout: float = Field(
        default_factory=lambda: float(os.getenv("ISSUEMEMO_TIMEOUT", "30"))
    )
    # Default page size for memo listing
    page_size: int = Field(
        default_factory=lambda: int(os.getenv("ISSUEMEMO_PAGE_SIZE", "20"))
    )
    # When True, unknown filter fragments raise instead of being ignored
    strict_filters: bool = Field(
        default_factory=lambda: _env_flag("ISSUEMEMO_STRICT_FILTERS", "false")
    )
    # When True, malformed resource names raise instead of degrading
    strict_names: bool = Field(
        default_factory=lambda: _env_flag("ISSUEMEMO_STRICT_NAMES", "true")
    )
    # Refetch-and-retry budget for JSON file writes rejected as stale
    conflict_retries: int = Field(
        default_factory=lambda: int(os.getenv("ISSUEMEMO_CONFLICT_RETRIES", "2"))
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("ISSUEMEMO_SERVER_NAME", "issuememo-mcp"))
    server_version: str = Field(default=__version__)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _validate_limits(self) -> "TrackerConfig":
        """Reject nonsensical numeric settings."""
        if self.page_size < 1 or self.page_size > 100:
            raise ValueError("page_size must be between 1 and 100")
        if self.conflict_retries < 0:
            raise ValueError("conflict_retries must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        return self

    @classmethod
    def from_env(cls) -> "TrackerConfig":
        """Build a config purely from environment variables."""
        return cls()

    def with_credentials(self, token: str, owner: str, repo: str) -> "TrackerConfig":
        """Return a copy pointing at another repository, with trimmed values."""
        return self.model_copy(
            update={"token": token.strip(), "owner": owner.strip(), "repo": repo.strip()}
        )

    def cleared(self) -> "TrackerConfig":
        """Return a copy with all credentials removed."""
        return self.model_copy(update={"token": "", "owner": "", "repo": ""})

    def is_configured(self) -> bool:
        """True when token, owner and repo are all set."""
        return bool(self.token and self.owner and self.repo)

    def require_configured(self) -> "TrackerConfig":
        """Return self, or raise ConfigurationError naming the first missing key."""
        for key in ("token", "owner", "repo"):
            if not getattr(self, key):
                raise ConfigurationError(
                    f"GitHub {key} is not configured",
                    config_key=f"ISSUEMEMO_GITHUB_{key.upper()}",
                )
        return self

    def raw_file_url(self, path: str) -> str:
        """Raw-content URL for a repository file on the configured branch."""
        return (
            f"{self.raw_url.rstrip('/')}/{self.owner}/{self.repo}/"
            f"{self.branch}/{path.lstrip('/')}"
        )

    def get_log_dir(self) -> Optional[Path]:
        """Log directory from ISSUEMEMO_LOG_DIR, or None for the default."""
        log_dir = os.getenv("ISSUEMEMO_LOG_DIR")
        return Path(log_dir) if log_dir else None
