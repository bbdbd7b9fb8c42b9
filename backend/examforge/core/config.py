"""
ExamForge - Core Configuration
Pydantic Settings for application configuration with environment variable support
"""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "ExamForge"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # API
    API_V1_PREFIX: str = "/api/v1"

    # Single fixed principal that owns attempts and wrong items
    DEFAULT_USER_ID: str = "00000000-0000-0000-0000-000000000001"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "examforge"
    DB_COMMAND_TIMEOUT_SECONDS: int = 30
    DATABASE_URL_OVERRIDE: str = ""

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # Redis
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: str = ""
    REDIS_DB: int = 0

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # LLM Configuration
    LLM_PROVIDER: Literal["openai", "anthropic"] = "openai"
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""

    # OpenAI specific (any OpenAI-compatible endpoint)
    OPENAI_BASE_URL: str = ""
    OPENAI_MODEL: str = "gpt-4.1-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"

    # Anthropic specific
    ANTHROPIC_MODEL: str = "claude-3-5-sonnet-latest"

    # LLM Performance
    LLM_TIMEOUT_SECONDS: int = 60
    LLM_MAX_RETRIES: int = 2

    # Pipeline tunables
    CHUNK_MAX_CHARS: int = 1800
    EMBEDDING_BATCH_SIZE: int = 64
    GENERATION_MAX_CHUNKS: int = 24
    GENERATION_CHUNK_SCAN_LIMIT: int = 400
    CHUNK_PROMPT_CHARS: int = 1200

    # Remote fetching
    HTTP_TIMEOUT_SECONDS: int = 20
    GITHUB_MAX_FILES: int = 80
    GITHUB_MAX_FILE_BYTES: int = 100 * 1024

    # Job queue
    JOB_QUEUE_NAME: str = "examforge"
    JOB_TIMEOUT_SECONDS: int = 600
    JOB_MAX_ATTEMPTS: int = 3
    JOB_BACKOFF_SECONDS: int = 1
    FETCH_JOB_MAX_ATTEMPTS: int = 2
    FETCH_JOB_BACKOFF_SECONDS: int = 2

    # Live updates
    SSE_KEEPALIVE_SECONDS: float = 15.0
    EVENT_POLL_SECONDS: float = 1.0

    # Observability
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "examforge-backend"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = "http://localhost:4317"

    # CORS - stored as comma-separated string
    CORS_ORIGINS_STR: str = "http://localhost:3000,http://localhost:5173"

    @property
    def CORS_ORIGINS(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS_STR.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
