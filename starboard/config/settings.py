"""Application settings and configuration"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Starboard Sync"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/starboard.db"
    QUERY_CACHE_TTL_SECONDS: int = 60

    # API
    CRON_SECRET: Optional[str] = None
    LIVE_ISSUES_CACHE_SECONDS: int = 300
    LIVE_ISSUES_PER_LABEL: int = 50

    # GitHub API
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_TIMEOUT_SECONDS: float = 30.0
    GITHUB_MAX_RETRIES: int = 3
    GITHUB_BACKOFF_BASE_SECONDS: float = 1.0
    GITHUB_BACKOFF_MAX_SECONDS: float = 16.0
    GITHUB_RATE_LIMIT_BUFFER_SECONDS: int = 2
    USER_AGENT: str = "StarboardSync/1.0"

    # LLM providers (Anthropic preferred when both keys are present)
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL: str = "claude-haiku-4-5"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 60.0
    ENABLE_AIML_CLASSIFICATION: bool = False

    # Repository metadata sync
    REPO_SYNC_BATCH_SIZE: int = 10
    REPO_SYNC_BATCH_DELAY_SECONDS: float = 1.0
    REPO_SYNC_COOLDOWN_HOURS: float = 11.0

    # Trending discovery
    TRENDING_RESULTS_PER_QUERY: int = 20
    TRENDING_QUERY_DELAY_SECONDS: float = 0.3

    # Issue sync
    ISSUE_SYNC_BATCH_SIZE: int = 15
    ISSUE_SYNC_COOLDOWN_HOURS: float = 12.0
    ISSUE_SYNC_REPO_DELAY_SECONDS: float = 0.2
    ISSUE_SYNC_SINCE_BUFFER_SECONDS: int = 60
    ISSUES_PAGE_SIZE: int = 100

    # Enrichment passes
    ENRICHMENT_BATCH_DELAY_SECONDS: float = 1.0
    SUMMARY_PASS_LIMIT: int = 50
    SUMMARY_PASS_BATCH_SIZE: int = 5
    AIML_PASS_LIMIT: int = 100
    AIML_PASS_BATCH_SIZE: int = 10
    BUILD_PLAN_PASS_LIMIT: int = 30
    BUILD_PLAN_PASS_BATCH_SIZE: int = 5

    # Insight synthesis
    INSIGHTS_REPO_LIMIT: int = 10
    INSIGHTS_ISSUE_LIMIT: int = 40
    INSIGHTS_MAX_TOKENS: int = 2048

    # Scheduler
    SYNC_ON_STARTUP: bool = True
    SYNC_STARTUP_DELAY_SECONDS: float = 5.0
    SYNC_INTERVAL_PHASE1_HOURS: float = 2.5
    SYNC_INTERVAL_PHASE2_HOURS: float = 12.0
    SYNC_PHASE1_DURATION_HOURS: float = 48.0
    MAINTENANCE_INTERVAL_DAYS: int = 7
    STAR_HISTORY_RETENTION_DAYS: int = 90

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env


settings = Settings()
