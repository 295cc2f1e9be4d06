"""Tests for configuration settings."""
import pytest

from flipsync.config import (
    BACKUPS_DIR,
    DATA_DIR,
    Settings,
    SyncSettings,
    RemoteSettings,
    settings,
)


def test_base_directories_exist():
    """Test that all required directories exist."""
    assert DATA_DIR.exists()
    assert BACKUPS_DIR.exists()


def test_settings_defaults():
    """Test default settings values."""
    assert settings.sync.cache_expiry_ms == 30 * 60 * 1000
    assert settings.sync.max_retry_attempts == 3
    assert settings.sync.sync_interval_ms == 5 * 60 * 1000
    assert settings.sync.conflict_resolution_strategy == "merge"
    assert settings.sync.storage_namespace == "linguaflip"
    assert settings.sync.cache_expiry_seconds == 1800
    assert settings.sync.sync_interval_seconds == 300


def test_settings_from_test_env():
    """Test that .env.test values are picked up."""
    assert settings.sync.enable_background_sync is False
    assert settings.sync.retry_base_delay == pytest.approx(0.01)
    assert settings.monitoring.enabled is False


def test_validate_rejects_unknown_strategy():
    """Test that an unknown conflict strategy is rejected."""
    bad = Settings(sync=SyncSettings(conflict_resolution_strategy="newest"))
    with pytest.raises(ValueError, match="CONFLICT_RESOLUTION_STRATEGY"):
        bad.validate()


def test_validate_rejects_bad_interval_and_timeout():
    """Test that non-positive intervals are rejected."""
    with pytest.raises(ValueError, match="SYNC_INTERVAL_MS"):
        Settings(sync=SyncSettings(sync_interval_ms=0)).validate()

    with pytest.raises(ValueError, match="REMOTE_TIMEOUT"):
        Settings(remote=RemoteSettings(timeout=0)).validate()


if __name__ == "__main__":
    pytest.main([__file__])
