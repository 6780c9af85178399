"""Application configuration and constants."""
from __future__ import annotations

import os
from dataclasses import dataclass


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value is not None else default


def _get_flag(name: str, default: str) -> bool:
    return _get_env(name, default).lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class Settings:
    """Simple settings container with environment variable overrides."""

    token_url: str = _get_env("CATALOG_TOKEN_URL", "https://api.shopify.com/auth/access_token")
    mcp_endpoint: str = _get_env("CATALOG_MCP_ENDPOINT", "https://discover.shopifyapps.com/global/mcp")
    client_id: str = _get_env("CATALOG_CLIENT_ID", "")
    client_secret: str = _get_env("CATALOG_CLIENT_SECRET", "")
    token_refresh_margin_seconds: float = float(_get_env("TOKEN_REFRESH_MARGIN_SECONDS", "60"))
    http_timeout_seconds: float = float(_get_env("HTTP_TIMEOUT_SECONDS", "20"))
    max_search_requests: int = int(_get_env("MAX_SEARCH_REQUESTS", "8"))
    database_url: str = _get_env("DATABASE_URL", "sqlite:///frameshop.db")
    session_backend: str = _get_env("SESSION_BACKEND", "sql")
    redis_host: str = _get_env("REDIS_HOST", "localhost")
    redis_port: int = int(_get_env("REDIS_PORT", "6379"))
    session_key_prefix: str = _get_env("SESSION_KEY_PREFIX", "frameshop:session")
    session_max_age_seconds: int = int(_get_env("SESSION_MAX_AGE_SECONDS", "300"))
    analytics_max_retries: int = int(_get_env("ANALYTICS_MAX_RETRIES", "3"))
    analytics_base_delay_seconds: float = float(_get_env("ANALYTICS_BASE_DELAY_SECONDS", "0.2"))
    analytics_queue_size: int = int(_get_env("ANALYTICS_QUEUE_SIZE", "1000"))
    amplitude_api_key: str = _get_env("AMPLITUDE_API_KEY", "")
    use_amplitude: bool = _get_flag("USE_AMPLITUDE", "true")
    app_env: str = _get_env("APP_ENV", "development")
    log_level: str = _get_env("LOG_LEVEL", "INFO")


settings = Settings()
