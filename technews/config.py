# technews/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate environment variables once per
process. Credentials for the text service and the destination are optional:
a run without them skips the stages that need them instead of failing.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        default="sqlite:///./data/news.db",
        description="SQLAlchemy connection URL (SQLite for local runs, PostgreSQL in production)",
    )

    # Text service
    TEXT_PROVIDER: str = Field(
        default="openai",
        description="Active text service provider: openai, anthropic",
    )
    OPENAI_API_KEY: str | None = Field(
        default=None,
        description="OpenAI API key for summaries and digests",
    )
    OPENAI_MODEL: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used for summaries and digests",
    )
    ANTHROPIC_API_KEY: str | None = Field(
        default=None,
        description="Anthropic API key",
    )
    ANTHROPIC_MODEL: str = Field(
        default="claude-haiku-4-5",
        description="Anthropic model used when TEXT_PROVIDER=anthropic",
    )

    # Destination (Notion)
    NOTION_API_KEY: str | None = Field(
        default=None,
        description="Notion integration token",
    )
    NOTION_DATABASE_ID: str | None = Field(
        default=None,
        description="Notion database receiving one page per published item",
    )
    NOTION_DIGEST_DATABASE_ID: str | None = Field(
        default=None,
        description="Notion database for digest pages. Empty = use NOTION_DATABASE_ID.",
    )
    PUBLISH_REQUESTS_PER_SECOND: float = Field(
        default=3.0,
        description="Destination rate limit (Notion allows ~3 requests/second)",
    )

    # Feeds and extraction
    USER_AGENT: str = Field(
        default="Mozilla/5.0 (compatible; TechFinanceNews/0.1)",
        description="User agent sent when fetching feeds",
    )
    FEED_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout for a single feed download",
    )

    # Summarization
    SUMMARY_MAX_WORKERS: int = Field(
        default=2,
        description="Concurrent text service calls during summarization",
    )
    SUMMARY_BATCH_DELAY_SECONDS: float = Field(
        default=1.0,
        description="Pause between summarization chunks",
    )

    # Retry policy for external calls
    RETRY_MAX_ATTEMPTS: int = Field(default=3, description="Attempts per external call")
    RETRY_INITIAL_DELAY_SECONDS: float = Field(default=1.0, description="First backoff delay")
    RETRY_MAX_DELAY_SECONDS: float = Field(default=30.0, description="Backoff delay cap")
    RETRY_BACKOFF_FACTOR: float = Field(default=2.0, description="Backoff multiplier")

    # Filtering
    FILTER_MIN_SCORE: float = Field(
        default=2.0,
        description="Minimum relevance score for an item to pass the filter",
    )

    # Digests
    DIGEST_TIMEZONE: str = Field(
        default="Europe/Paris",
        description="IANA timezone used to compute digest periods",
    )
    DIGEST_MAX_CONTEXT_ITEMS: int = Field(
        default=100,
        description="Maximum items included in a digest prompt",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_JSON: bool = Field(default=False, description="Emit single-line JSON logs")

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosting providers hand out postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("TEXT_PROVIDER")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.lower().strip()

    @property
    def digest_database_id(self) -> str | None:
        return self.NOTION_DIGEST_DATABASE_ID or self.NOTION_DATABASE_ID

    @property
    def text_service_configured(self) -> bool:
        if self.TEXT_PROVIDER == "anthropic":
            return bool(self.ANTHROPIC_API_KEY)
        return bool(self.OPENAI_API_KEY)

    @property
    def destination_configured(self) -> bool:
        return bool(self.NOTION_API_KEY and self.NOTION_DATABASE_ID)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
