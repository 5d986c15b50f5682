"""Tests for the configuration module."""

from __future__ import annotations

import os
from unittest.mock import patch

import pydantic
import pytest

from src.core.config import Settings, get_settings


class TestSettings:
    """Test suite for application Settings."""

    def test_default_values(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(
                _env_file=None,  # type: ignore[call-arg]
            )
        assert settings.app_name == "PostRelay"
        assert settings.store_backend == "redis"
        assert settings.log_verbosity == "errors"
        assert settings.log_retention_days == 30
        assert settings.default_post_status == "draft"
        assert settings.default_post_type == "post"
        assert settings.default_category == "Uncategorized"
        assert settings.task_ttl_seconds == 3600
        assert settings.callback_ttl_seconds == 86400
        assert settings.callback_timeout_seconds == 30.0
        assert settings.image_download_timeout_seconds == 300.0
        assert settings.callback_configured is False

    def test_redis_url_built_from_components(self) -> None:
        """redis_url should be derived from host/port when not set."""
        settings = Settings(
            redis_host="cache-host",
            redis_port=6380,
            redis_url=None,
            _env_file=None,  # type: ignore[call-arg]
        )
        assert settings.redis_url == "redis://cache-host:6380/0"

    def test_explicit_redis_url_not_overwritten(self) -> None:
        settings = Settings(
            redis_url="redis://explicit:6379/3",
            _env_file=None,  # type: ignore[call-arg]
        )
        assert settings.redis_url == "redis://explicit:6379/3"

    def test_values_read_from_environment(self) -> None:
        env = {
            "CALLBACK_URL": "https://hooks.example.com/cb",
            "CALLBACK_API_KEY": "k",
            "LOG_VERBOSITY": "all",
            "STORE_BACKEND": "memory",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.callback_configured is True
        assert settings.callback_api_key.get_secret_value() == "k"
        assert settings.log_verbosity == "all"
        assert settings.store_backend == "memory"

    def test_non_https_callback_url_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="https"):
            Settings(callback_url="http://hooks.example.com/cb", _env_file=None)  # type: ignore[call-arg]

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("draft", "draft"), ("pending-review", "pending"), ("Published", "publish"), ("pending", "pending")],
    )
    def test_default_post_status_aliases(self, value: str, expected: str) -> None:
        settings = Settings(default_post_status=value, _env_file=None)  # type: ignore[call-arg]
        assert settings.default_post_status == expected

    def test_unknown_default_post_status_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="default_post_status"):
            Settings(default_post_status="scheduled", _env_file=None)  # type: ignore[call-arg]

    def test_unknown_verbosity_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Settings(log_verbosity="debug", _env_file=None)  # type: ignore[call-arg]

    def test_empty_secret_material_rejected(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Settings(auth_key="", _env_file=None)  # type: ignore[call-arg]

    def test_get_settings_is_cached(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
