"""Course platform configuration."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    """Environment-driven settings for the course platform backend."""

    # Identity provider / BaaS
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""
    supabase_jwt_secret: str = ""

    # Postgres DSN; empty selects the in-process store
    database_url: str = ""

    # Transactional email
    resend_api_key: str = ""
    email_from: str = "Courses <noreply@example.com>"

    # WooCommerce webhook shared secret (no default: unset rejects every delivery)
    woocommerce_webhook_secret: str = ""

    app_url: str = "http://localhost:3000"
    # Comma-separated or a JSON array
    cors_origins: Annotated[list[str], NoDecode] = ["http://localhost:3000"]

    # Rate limiting ("memory://" or "redis://host:port/db")
    rate_limit_storage_uri: str = "memory://"
    rate_limit_default: str = "100/minute"
    rate_limit_auth: str = "20/minute"
    trusted_proxies: str = ""

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                return json.loads(value)
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def login_url(self) -> str:
        return f"{self.app_url.rstrip('/')}/login"

    @property
    def password_reset_redirect(self) -> str:
        return f"{self.app_url.rstrip('/')}/set-new-password"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings (cleared in tests via cache_clear)."""
    return Settings()
