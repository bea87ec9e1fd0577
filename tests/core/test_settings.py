"""Tests for ReplyflowSettings."""

import pytest
from pydantic import ValidationError

from replyflow.core.settings import ReplyflowSettings


class TestSettings:
    """Tests for env-driven configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("REPLYFLOW_REDIS_URL", raising=False)
        settings = ReplyflowSettings(_env_file=None)
        assert settings.database_url == "sqlite:///replyflow.db"
        assert settings.ephemeral_ttl_seconds == 172800
        assert settings.burst_window_minutes == 5
        assert settings.graph_api_base_url == "https://graph.instagram.com"
        assert settings.uses_redis is False

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("REPLYFLOW_REDIS_URL", "redis://cache:6379/1")
        monkeypatch.setenv("REPLYFLOW_LOG_LEVEL", "debug")
        settings = ReplyflowSettings(_env_file=None)
        assert settings.redis_url == "redis://cache:6379/1"
        assert settings.uses_redis is True
        assert settings.log_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            ReplyflowSettings(_env_file=None, log_level="LOUD")

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            ReplyflowSettings(_env_file=None, ephemeral_ttl_seconds=0)
