"""Tests for tracker configuration."""
import pytest
from pydantic import ValidationError as PydanticValidationError

from issuememo_mcp.config import TrackerConfig
from issuememo_mcp.exceptions import ConfigurationError
from tests.fakes import make_config


class TestTrackerConfig:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ISSUEMEMO_GITHUB_TOKEN", "env-token")
        monkeypatch.setenv("ISSUEMEMO_GITHUB_OWNER", "env-owner")
        monkeypatch.setenv("ISSUEMEMO_GITHUB_REPO", "env-repo")
        monkeypatch.setenv("ISSUEMEMO_PAGE_SIZE", "50")
        monkeypatch.setenv("ISSUEMEMO_STRICT_NAMES", "no")

        config = TrackerConfig.from_env()

        assert config.token == "env-token"
        assert config.owner == "env-owner"
        assert config.repo == "env-repo"
        assert config.page_size == 50
        assert config.strict_names is False

    def test_is_immutable(self):
        config = make_config()
        with pytest.raises(PydanticValidationError):
            config.owner = "someone-else"

    @pytest.mark.parametrize("overrides", [
        {"page_size": 0},
        {"page_size": 101},
        {"conflict_retries": -1},
        {"timeout": 0},
    ])
    def test_rejects_nonsensical_limits(self, overrides):
        with pytest.raises(PydanticValidationError):
            make_config(**overrides)

    def test_with_credentials_returns_new_trimmed_value(self):
        config = make_config()
        other = config.with_credentials(" new-token ", " acme ", " notes\n")

        assert (other.token, other.owner, other.repo) == ("new-token", "acme", "notes")
        assert config.owner == "octo"
        assert other.api_url == config.api_url

    def test_cleared(self):
        cleared = make_config().cleared()
        assert not cleared.is_configured()

    @pytest.mark.parametrize("missing,key", [
        ("token", "ISSUEMEMO_GITHUB_TOKEN"),
        ("owner", "ISSUEMEMO_GITHUB_OWNER"),
        ("repo", "ISSUEMEMO_GITHUB_REPO"),
    ])
    def test_require_configured_names_missing_key(self, missing, key):
        with pytest.raises(ConfigurationError) as exc:
            make_config(**{missing: ""}).require_configured()
        assert exc.value.config_key == key

    def test_raw_file_url(self):
        config = make_config()
        assert config.raw_file_url("/attachments/a.png") == (
            "https://raw.github.test/octo/memos/main/attachments/a.png"
        )

    def test_log_dir(self, monkeypatch, tmp_path):
        monkeypatch.delenv("ISSUEMEMO_LOG_DIR", raising=False)
        assert make_config().get_log_dir() is None
        monkeypatch.setenv("ISSUEMEMO_LOG_DIR", str(tmp_path))
        assert make_config().get_log_dir() == tmp_path
