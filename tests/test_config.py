"""Tests for configuration loading."""

from docsync.config import Config, load_config


class TestLoadConfig:
    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv("DOCSYNC_REMOTE_URL", raising=False)
        config = load_config(None)

        assert isinstance(config, Config)
        assert config.store.db_path == "~/.docsync/records.db"
        assert config.sync.record_types == ["records"]
        assert config.remote.base_url == ""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.sync.max_concurrency == 4

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "user:\n"
            "  user_name: field_worker\n"
            "  organisation: UNICEF\n"
            "remote:\n"
            "  base_url: http://server:3000\n"
            "  max_retries: 5\n"
            "sync:\n"
            "  record_types: [children, enquiries]\n"
            "history:\n"
            "  excluded_keys: [photo_keys]\n"
        )

        config = load_config(path)

        assert config.user.user_name == "field_worker"
        assert config.user.organisation == "UNICEF"
        assert config.remote.base_url == "http://server:3000"
        assert config.remote.max_retries == 5
        assert config.remote.timeout == 30.0
        assert config.sync.record_types == ["children", "enquiries"]
        assert config.history.excluded_keys == ["photo_keys"]

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("remote:\n  base_url: http://from-file\n")
        monkeypatch.setenv("DOCSYNC_REMOTE_URL", "http://from-env")
        monkeypatch.setenv("DOCSYNC_SYNC_RECORD_TYPES", "children, enquiries")
        monkeypatch.setenv("DOCSYNC_SYNC_ENABLED", "no")

        config = load_config(path)

        assert config.remote.base_url == "http://from-env"
        assert config.sync.record_types == ["children", "enquiries"]
        assert config.sync.enabled is False

    def test_env_overrides_retry_and_concurrency(self, monkeypatch):
        monkeypatch.setenv("DOCSYNC_REMOTE_BACKOFF_SECONDS", "0.5")
        monkeypatch.setenv("DOCSYNC_SYNC_MAX_CONCURRENCY", "8")

        config = load_config()

        assert config.remote.backoff_seconds == 0.5
        assert config.sync.max_concurrency == 8
