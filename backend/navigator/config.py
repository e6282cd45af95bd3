"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Shadow Work Navigator"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # Database
    # If database_url_override is set (e.g., for Neon with SSL), it takes precedence
    database_url_override: str | None = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "navigator"
    postgres_password: str = ""
    postgres_db: str = "navigator"

    @computed_field
    @property
    def database_url(self) -> str:
        """Get async database URL. Uses override if provided, otherwise constructs from parts."""
        if self.database_url_override:
            url = self.database_url_override
            # Replace scheme for async driver
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            elif url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql+asyncpg://", 1)
            # Strip query params - asyncpg doesn't accept them via URL
            # SSL is handled via connect_args in session.py
            if "?" in url:
                url = url.split("?")[0]
            return url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @computed_field
    @property
    def database_requires_ssl(self) -> bool:
        """Check if the database connection requires SSL (for Neon, etc.)."""
        if self.database_url_override:
            return "sslmode=require" in self.database_url_override or "ssl=require" in self.database_url_override
        return False

    @computed_field
    @property
    def database_url_sync(self) -> str:
        """Get sync database URL (for Alembic). Uses override if provided, otherwise constructs from parts."""
        if self.database_url_override:
            url = self.database_url_override
            if url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql://", 1)
            elif url.startswith("postgresql+asyncpg://"):
                url = url.replace("postgresql+asyncpg://", "postgresql://", 1)
            return url
        return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    # Session JWT (issued after Memberstack verification)
    jwt_signing_secret: str  # Required - no default, must be set in .env
    jwt_issuer: str = "shadowwork-navigator-api"
    jwt_audience: str = "shadowwork-navigator-web"
    jwt_algorithm: str = "HS256"
    access_token_ttl_seconds: int = 900

    # Set to true when frontend and API are on different sites
    # This uses samesite="none" instead of samesite="strict"
    cookie_cross_domain: bool = False

    # Memberstack
    memberstack_secret_key: str  # Required - sk_live_... in production
    memberstack_api_base_url: str = "https://admin.memberstack.com"
    allow_test_memberstack_key: bool = False

    # OpenAI
    openai_api_key: str
    openai_api_base_url: str | None = None
    openai_model: str = "gpt-5.2"
    llm_max_attempts: int = 2

    # Stripe
    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_api_base_url: str | None = None
    stripe_price_id: str = ""
    stripe_checkout_mode: str = "payment"
    checkout_success_url: str = ""
    checkout_cancel_url: str = ""
    stripe_webhook_tolerance_seconds: int = 300

    # Admin override for the paid flag
    admin_member_ids: list[str] = []
    paid_admin_token: str = ""

    # CORS allowlist. Empty list rejects every cross-origin request.
    allowed_origins: list[str] = []

    # Upper bound for every third-party HTTP call (Memberstack, OpenAI, Stripe)
    external_api_timeout_seconds: float = 10.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def sanitize_error(error: Exception, *, generic_message: str = "An internal error occurred.") -> str:
    """
    Return a user-safe error message.

    In development, returns the full exception string for debugging.
    In staging/production, returns a generic message to avoid leaking internals.
    """
    settings = get_settings()
    if settings.environment == "development":
        return str(error)
    return generic_message
