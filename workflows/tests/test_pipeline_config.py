"""Tests for PipelineConfig loading."""
import dataclasses
import pytest

from workflows.config import ConfigurationError, PipelineConfig


class TestPipelineConfigDefaults:
    """Test default values."""

    def test_defaults(self):
        config = PipelineConfig()
        assert config.github_token is None
        assert config.db_path == "discovery.db"
        assert config.quota_floor == 100
        assert config.search_quota_floor == 2
        assert config.archive_min_stars == 5
        assert config.rescore_threshold == 10

    def test_frozen(self):
        """Configuration is immutable once loaded."""
        config = PipelineConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.db_path = "other.db"

    def test_replace_overrides_single_field(self):
        config = dataclasses.replace(PipelineConfig(github_token="t"), db_path="other.db")
        assert config.db_path == "other.db"
        assert config.github_token == "t"

    def test_quota_policy_follows_config(self):
        policy = PipelineConfig(quota_floor=50, quota_cooldown_seconds=10.0).quota_policy
        assert policy.floor == 50
        assert policy.cooldown == 10.0


class TestPipelineConfigFromEnv:
    """Test from_env with an explicit mapping."""

    def test_reads_values(self):
        config = PipelineConfig.from_env(env={
            "GITHUB_TOKEN": "ghp_test",
            "DISCOVERY_DB_PATH": "/tmp/d.db",
            "QUOTA_FLOOR": "250",
            "SEARCH_QUOTA_FLOOR": "5",
            "QUOTA_SAFETY_MARGIN_SECONDS": "2.5",
            "ARCHIVE_MIN_STARS": "12",
            "RESCORE_THRESHOLD": "7",
        })

        assert config.github_token == "ghp_test"
        assert config.db_path == "/tmp/d.db"
        assert config.quota_floor == 250
        assert config.search_quota_floor == 5
        assert config.quota_safety_margin_seconds == 2.5
        assert config.archive_min_stars == 12
        assert config.rescore_threshold == 7

    def test_blank_values_fall_back_to_defaults(self):
        config = PipelineConfig.from_env(env={"GITHUB_TOKEN": "", "QUOTA_FLOOR": "  "})
        assert config.github_token is None
        assert config.quota_floor == 100

    def test_malformed_number_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="QUOTA_FLOOR"):
            PipelineConfig.from_env(env={"QUOTA_FLOOR": "lots"})

    def test_reads_dotenv_file(self, tmp_path, monkeypatch):
        """Without an explicit mapping, .env values reach os.environ."""
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.delenv("RESCORE_THRESHOLD", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("GITHUB_TOKEN=from_dotenv\nRESCORE_THRESHOLD=3\n")

        try:
            config = PipelineConfig.from_env(dotenv_path=str(env_file))
        finally:
            # load_dotenv writes into os.environ directly
            monkeypatch.delenv("GITHUB_TOKEN", raising=False)
            monkeypatch.delenv("RESCORE_THRESHOLD", raising=False)

        assert config.github_token == "from_dotenv"
        assert config.rescore_threshold == 3


class TestRequireToken:
    """Test the fatal missing-token check."""

    def test_missing_token_raises(self):
        with pytest.raises(ConfigurationError, match="GITHUB_TOKEN"):
            PipelineConfig().require_github_token()

    def test_present_token_returned(self):
        assert PipelineConfig(github_token="abc").require_github_token() == "abc"

    def test_to_dict_masks_token(self):
        data = PipelineConfig(github_token="secret").to_dict()
        assert data["github_token"] == "***"
        assert "secret" not in str(data)
