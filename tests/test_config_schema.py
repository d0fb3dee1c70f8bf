"""Tests for config_schema.py: UnifiedConfig, SyncSettings, LoggingConfig.

Covers:
- Zero-config defaults
- Field ranges and name validation
- Unknown section handling in build_config()
- Frozen models
"""

import pydantic
import pytest

from tracker_sync.config_schema import (
    LoggingConfig,
    SyncSettings,
    UnifiedConfig,
    build_config,
)


class TestUnifiedConfig:
    """Tests for UnifiedConfig and build_config()."""

    def test_empty_dict_gives_defaults(self):
        config = build_config({})
        assert config.sync == SyncSettings()
        assert config.logging == LoggingConfig()

    def test_full_config(self):
        config = build_config(
            {
                "sync": {
                    "branch": "issues",
                    "remote": "upstream",
                    "max_push_attempts": 5,
                    "git_timeout": 120,
                    "auto_repair": False,
                    "auto_save_outbox": False,
                    "import_outbox": False,
                },
                "logging": {"level": "DEBUG", "file": "/tmp/sync.log", "format": "json"},
            }
        )
        assert config.sync.branch == "issues"
        assert config.sync.git_timeout == 120
        assert config.sync.auto_repair is False
        assert config.logging.format == "json"

    def test_unknown_sections_ignored(self, caplog):
        config = build_config({"sync": {"remote": "upstream"}, "dashboard": {"url": "x"}})
        assert config.sync.remote == "upstream"
        assert "dashboard" in caplog.text

    def test_frozen(self):
        config = UnifiedConfig()
        with pytest.raises(pydantic.ValidationError):
            config.sync = SyncSettings(remote="other")


class TestSyncSettings:
    """Tests for SyncSettings validation."""

    def test_defaults(self):
        settings = SyncSettings()
        assert settings.branch == "tracker-sync"
        assert settings.remote == "origin"
        assert settings.max_push_attempts == 3
        assert settings.git_timeout == 60
        assert settings.auto_repair and settings.auto_save_outbox and settings.import_outbox

    @pytest.mark.parametrize("attempts", [0, 11])
    def test_attempts_range(self, attempts):
        with pytest.raises(pydantic.ValidationError):
            SyncSettings(max_push_attempts=attempts)

    @pytest.mark.parametrize("timeout", [0, 3601])
    def test_timeout_range(self, timeout):
        with pytest.raises(pydantic.ValidationError):
            SyncSettings(git_timeout=timeout)

    def test_invalid_branch(self):
        with pytest.raises(pydantic.ValidationError, match="Branch name"):
            SyncSettings(branch="bad..name")

    def test_invalid_remote(self):
        with pytest.raises(pydantic.ValidationError):
            SyncSettings(remote="")

    def test_unset_fields_excluded_from_dump(self):
        settings = build_config({"sync": {"remote": "upstream"}}).sync
        assert settings.model_dump(exclude_unset=True) == {"remote": "upstream"}


class TestLoggingConfig:
    def test_format_restricted(self):
        with pytest.raises(pydantic.ValidationError):
            LoggingConfig(format="xml")
