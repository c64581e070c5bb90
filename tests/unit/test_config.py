"""
Unit tests for engine configuration.

Tests cover:
- Defaults
- Environment loading
- Validation errors
"""

import pytest

from gobex.sync_engine.config import (
    BackendConfig,
    EngineConfig,
    ObservabilityConfig,
    SyncConfig,
)


class TestSyncConfig:
    """Tests for SyncConfig."""

    def test_defaults(self):
        config = SyncConfig()

        assert config.interval_seconds == 120.0
        assert config.retry_count == 3
        assert config.retry_delay_seconds == 5.0
        assert config.debounce_seconds == 1.0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SYNC_INTERVAL_SECONDS", "30")
        monkeypatch.setenv("SYNC_RETRY_COUNT", "5")
        monkeypatch.setenv("SYNC_RETRY_DELAY_SECONDS", "0.5")
        monkeypatch.setenv("SYNC_DEBOUNCE_SECONDS", "2")

        config = SyncConfig.from_env()

        assert config.interval_seconds == 30.0
        assert config.retry_count == 5
        assert config.retry_delay_seconds == 0.5
        assert config.debounce_seconds == 2.0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"interval_seconds": 0},
            {"retry_count": 0},
            {"retry_delay_seconds": 0},
            {"debounce_seconds": -1},
        ],
    )
    def test_validate_rejects_out_of_range(self, overrides):
        with pytest.raises(ValueError):
            SyncConfig(**overrides).validate()


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_from_env_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("GOBEX_DATA_DIR", str(tmp_path))
        monkeypatch.delenv("SYNC_BACKEND_TOKEN", raising=False)

        config = EngineConfig.from_env()

        assert config.storage.data_dir == str(tmp_path)
        assert config.backend.base_url == "http://localhost:8090"
        assert config.backend.api_token is None
        assert config.owner.username == "owner"
        assert config.connectivity.enabled is True

    def test_connectivity_can_be_disabled(self, monkeypatch):
        monkeypatch.setenv("CONNECTIVITY_PROBE_ENABLED", "false")

        assert EngineConfig.from_env().connectivity.enabled is False

    def test_invalid_log_format(self):
        config = EngineConfig(observability=ObservabilityConfig(log_format="xml"))

        with pytest.raises(ValueError, match="LOG_FORMAT"):
            config.validate()

    def test_missing_backend_url(self):
        config = EngineConfig(backend=BackendConfig(base_url=""))

        with pytest.raises(ValueError, match="SYNC_BACKEND_URL"):
            config.validate()

    def test_invalid_sync_section(self, monkeypatch):
        monkeypatch.setenv("SYNC_RETRY_COUNT", "0")

        with pytest.raises(ValueError, match="SYNC_RETRY_COUNT"):
            EngineConfig.from_env()

    def test_log_config_redacts_token(self, caplog):
        config = EngineConfig(backend=BackendConfig(api_token="super-secret"))

        with caplog.at_level("INFO"):
            config.log_config()

        assert "super-secret" not in caplog.text
        record = next(r for r in caplog.records if r.message == "Engine configuration loaded")
        assert record.backend_token_set is True
