"""Tests for config.py -- load_config() precedence and validation."""

import pytest

from scaffold_sync.config import Config, load_config, validate_config

ENV_KEYS = [
    "SCAFFOLD_SYNC_SOURCE_URL",
    "SCAFFOLD_SYNC_SOURCE_DIR",
    "SCAFFOLD_SYNC_TOKEN",
    "SCAFFOLD_SYNC_INSECURE",
    "SCAFFOLD_SYNC_DEBUG",
    "SCAFFOLD_SYNC_BACKUP_RETENTION",
    "SCAFFOLD_SYNC_CONFLICT_THRESHOLD",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestSourcePrecedence:
    """CLI > env > YAML for the release source."""

    def test_cli_url(self):
        config = load_config(source_url="https://t.example.com/")
        assert config.source_url == "https://t.example.com"
        assert config.source_dir is None

    def test_cli_beats_env(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_SYNC_SOURCE_URL", "https://env.example.com")
        config = load_config(source_dir="/releases")
        assert config.source_dir == "/releases"
        assert config.source_url is None

    def test_env_beats_yaml(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_SYNC_SOURCE_DIR", "/env/releases")
        config = load_config(yaml_fallbacks={"url": "https://yaml.example.com"})
        assert config.source_dir == "/env/releases"
        assert config.source_url is None

    def test_yaml_fallback(self):
        config = load_config(
            yaml_fallbacks={
                "url": "https://yaml.example.com",
                "token": "yamltoken",
                "timeout": 15,
                "request_interval": 0.5,
            }
        )
        assert config.source_url == "https://yaml.example.com"
        assert config.token == "yamltoken"
        assert config.timeout == 15.0
        assert config.request_interval == 0.5

    def test_env_token_beats_yaml(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_SYNC_TOKEN", "envtoken")
        config = load_config(
            source_dir="/r", yaml_fallbacks={"token": "yamltoken"}
        )
        assert config.token == "envtoken"


class TestValidation:
    def test_no_source(self):
        with pytest.raises(ValueError, match="No release source configured"):
            load_config()

    def test_no_source_allowed(self):
        config = load_config(require_source=False)
        assert config.source_url is None and config.source_dir is None

    def test_both_sources(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_SYNC_SOURCE_URL", "https://a.example.com")
        monkeypatch.setenv("SCAFFOLD_SYNC_SOURCE_DIR", "/releases")
        with pytest.raises(ValueError, match="Both a release URL"):
            load_config()

    def test_bad_scheme(self):
        with pytest.raises(ValueError, match="must start with http"):
            load_config(source_url="ftp://t.example.com")

    def test_missing_host(self):
        with pytest.raises(ValueError, match="hostname"):
            load_config(source_url="https://")

    def test_validate_config_directly(self):
        with pytest.raises(ValueError, match="backup retention"):
            validate_config(Config(source_dir="/r", backup_retention=0))


class TestFlagsAndNumbers:
    def test_insecure_env(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_SYNC_INSECURE", "yes")
        assert load_config(source_dir="/r").insecure is True

    def test_insecure_yaml(self):
        config = load_config(source_dir="/r", yaml_fallbacks={"insecure": True})
        assert config.insecure is True

    def test_debug_env(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_SYNC_DEBUG", "1")
        assert load_config(source_dir="/r").debug is True

    def test_defaults(self):
        config = load_config(source_dir="/r")
        assert config.backup_retention == 5
        assert config.conflict_line_threshold == 100
        assert config.state_dir == ".scaffold_sync"
        assert config.backup_dir is None

    def test_update_fallbacks(self):
        config = load_config(
            source_dir="/r",
            update_fallbacks={
                "backup_retention": 3,
                "conflict_line_threshold": 20,
                "state_dir": ".sync",
                "backup_dir": "backups",
            },
        )
        assert config.backup_retention == 3
        assert config.conflict_line_threshold == 20
        assert config.state_dir == ".sync"
        assert config.backup_dir == "backups"

    def test_env_retention_beats_yaml(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_SYNC_BACKUP_RETENTION", "12")
        config = load_config(
            source_dir="/r", update_fallbacks={"backup_retention": 3}
        )
        assert config.backup_retention == 12

    @pytest.mark.parametrize("raw", ["abc", "0", "1001"])
    def test_invalid_retention(self, monkeypatch, raw):
        monkeypatch.setenv("SCAFFOLD_SYNC_BACKUP_RETENTION", raw)
        with pytest.raises(
            ValueError, match="must be a number between 1 and 1000"
        ):
            load_config(source_dir="/r")

    def test_threshold_env(self, monkeypatch):
        monkeypatch.setenv("SCAFFOLD_SYNC_CONFLICT_THRESHOLD", "250")
        assert load_config(source_dir="/r").conflict_line_threshold == 250
