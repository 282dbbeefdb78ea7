"""Application configuration using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # OpenRouter (only needed for models with provider "openrouter")
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    SITE_URL: str = ""
    SITE_NAME: str = "Scripture Fidelity"

    # Dispatch
    DISPATCH_PARALLELISM: int = 4
    MODEL_CALL_TIMEOUT: float = 120.0  # Seconds per model call
    MODEL_CALL_MAX_ATTEMPTS: int = 1  # Transport-level attempts for 429/5xx
    RUN_LOCK_TTL_SECONDS: int = 3600  # Lease after which an abandoned lock can be taken over

    # Canon
    DEFAULT_BIBLE_ID: int = 1001

    # Listing
    RUNS_PAGE_SIZE: int = 50
    RUNS_MAX_PAGE_SIZE: int = 100

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
