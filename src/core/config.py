"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools
from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Kept in sync with src.publishing.models.PostStatus; duplicated here so
# settings can be loaded without importing the publishing package.
_POST_STATUSES = {"draft": "draft", "pending": "pending", "pending-review": "pending", "publish": "publish", "published": "publish"}


class Settings(BaseSettings):
    """PostRelay application settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "PostRelay"
    app_env: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ── Logging ──────────────────────────────────────────────────
    log_verbosity: Literal["errors", "all"] = "errors"
    log_file: str = ""
    log_retention_days: int = 30

    # ── Store / Redis ────────────────────────────────────────────
    store_backend: Literal["redis", "memory"] = "redis"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_url: str | None = None
    redis_socket_timeout: float = 5.0
    key_prefix: str = "postrelay"

    # ── Secret material (Fernet key derivation) ──────────────────
    auth_key: str = "dev-auth-key-change-in-production"
    nonce_salt: str = "dev-nonce-salt-change-in-production"

    # ── Status callbacks ─────────────────────────────────────────
    callback_url: str = ""
    callback_api_key: SecretStr = SecretStr("")
    callback_timeout_seconds: float = 30.0

    # ── Publishing defaults ──────────────────────────────────────
    default_post_status: str = "draft"
    default_post_type: str = "post"
    default_author: str | None = None
    default_category: str = "Uncategorized"

    # ── Lifetimes ────────────────────────────────────────────────
    task_ttl_seconds: int = 3600
    callback_ttl_seconds: int = 86400

    # ── Media ────────────────────────────────────────────────────
    image_download_timeout_seconds: float = 300.0
    image_probe_timeout_seconds: float = 30.0

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_enabled: bool = True
    scheduler_poll_interval_seconds: float = 1.0
    scheduler_batch_size: int = 100
    scheduler_lock_ttl_seconds: int = 60

    # ── Operator notifications ───────────────────────────────────
    site_name: str = "PostRelay"
    operator_email: str = ""
    smtp_host: str = ""
    smtp_port: int = 25
    smtp_sender: str = "postrelay@localhost"
    smtp_timeout_seconds: float = 10.0

    # ── Rate Limiting ─────────────────────────────────────────────
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60

    # ── Dev mode collaborators ───────────────────────────────────
    site_url: str = "http://localhost:8000"
    dev_publisher_username: str = ""
    dev_publisher_password: SecretStr = SecretStr("")

    @field_validator("default_post_status")
    @classmethod
    def normalize_default_post_status(cls, v: str) -> str:
        """Accept the canonical statuses and their long-form aliases."""
        status = _POST_STATUSES.get(v.strip().lower())
        if status is None:
            raise ValueError(f"default_post_status must be one of: {', '.join(sorted(set(_POST_STATUSES.values())))}")
        return status

    @field_validator("callback_url")
    @classmethod
    def require_https_callback(cls, v: str) -> str:
        """Callbacks carry a bearer token, so only TLS destinations are allowed."""
        v = v.strip()
        if v and not v.startswith("https://"):
            raise ValueError("callback_url must use https")
        return v

    @field_validator("auth_key", "nonce_salt")
    @classmethod
    def require_secret_material(cls, v: str) -> str:
        if not v:
            raise ValueError("secret material must not be empty")
        return v

    @model_validator(mode="after")
    def build_derived_urls(self) -> Settings:
        """Build redis_url from components if not set."""
        if not self.redis_url:
            self.redis_url = f"redis://{self.redis_host}:{self.redis_port}/0"
        return self

    @property
    def callback_configured(self) -> bool:
        return bool(self.callback_url) and bool(self.callback_api_key.get_secret_value())


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
