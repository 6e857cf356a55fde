# Service configuration: token lifetimes, identity provider, Redis, search limits.
# Values come from environment variables or a local .env file.

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "Hidden Gems API"
    VERSION: str = "0.2.0"
    BRIEF_DESCRIPTION: str = "Proximity search and session lifecycle for community-submitted hidden gem destinations."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")
    LOG_LEVEL: str = Field("INFO", description="Root log level (DEBUG, INFO, WARNING, ...)")

    # --- Access tokens ---
    JWT_SECRET: str = Field("dev-only-insecure-secret-change-me-please", description="Symmetric secret used to sign access tokens")
    JWT_ALGORITHM: str = Field("HS256", description="HMAC signing algorithm for access tokens")
    ACCESS_TOKEN_TTL_SECONDS: int = Field(15 * 60, description="Access token lifetime (15 minutes)")
    REFRESH_TOKEN_TTL_SECONDS: int = Field(7 * 24 * 60 * 60, description="Refresh credential lifetime (7 days)")

    # --- Identity provider ---
    IDENTITY_PROVIDER_URL: Optional[str] = Field(None, description="Token introspection endpoint of the identity provider")
    IDENTITY_PROVIDER_API_KEY: Optional[str] = Field(None, description="API key sent to the identity provider")
    IDENTITY_PROVIDER_TIMEOUT: float = Field(5.0, description="Timeout (seconds) for identity provider calls")

    # --- Refresh chain store ---
    REDIS_URL: Optional[str] = Field(None, description="Redis URL for the refresh credential chain")
    ENABLE_REDIS: bool = Field(False, description="Feature flag for Redis; in-memory chain store when off")

    # --- Document store ---
    GEMS_DATA_FILE: Optional[str] = Field(None, description="JSON file seeding the in-memory gem store")

    # --- Proximity search ---
    DEFAULT_SEARCH_RADIUS_KM: float = 10.0
    MAX_SEARCH_RADIUS_KM: float = 500.0
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 50

    # --- Cookies ---
    ACCESS_TOKEN_COOKIE: str = "x-access-token"
    REFRESH_TOKEN_COOKIE: str = "x-refresh-token"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()

def is_production() -> bool:
    return settings.ENV.lower() == "production"
