"""
Application settings loaded from environment variables.

Uses pydantic-settings so that every config value is validated at startup.
Upstream credentials stay in .env on the server, never in client code.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration.

    Credentials are optional at startup: a missing GATEWAY_API_KEY or
    METERING_API_KEY is reported per request as a 500 "not configured"
    error, before any upstream call is attempted.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ── App ─────────────────────────────────────────────────
    APP_NAME: str = "Key Console"
    DEBUG: bool = False

    # ── Gateway (consumer + API key resources) ──────────────
    GATEWAY_API_KEY: str = ""
    GATEWAY_ACCOUNT: str = ""
    GATEWAY_BUCKET: str = ""
    GATEWAY_BASE_URL: str = "https://dev.zuplo.com/v1"
    CONSUMER_PAGE_SIZE: int = 1000

    # ── Metering (usage queries) ────────────────────────────
    METERING_API_KEY: str = ""
    METERING_BASE_URL: str = "https://openmeter.cloud"
    METERING_TIME_ZONE: str = "UTC"

    # ── Limits ──────────────────────────────────────────────
    DEFAULT_MODEL: str = "gpt-4o"

    UPSTREAM_TIMEOUT: float = 30.0


# Singleton, imported everywhere as `from keyconsole.core.config import settings`
settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide settings."""
    return settings
