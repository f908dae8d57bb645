from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional
import os

class Settings(BaseSettings):
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Read-only database used for analytical queries
    DATABASE_URL_RO: Optional[str] = None
    DB_POOL_MAX_CONNECTIONS: int = 5
    DB_POOL_IDLE_TIMEOUT_S: int = 30  # applied as pool_recycle (max connection age)
    DB_POOL_ACQUIRE_TIMEOUT_S: int = 5

    # Query limits
    MAX_QUERY_TIMEOUT_MS: int = 30000
    DEFAULT_ROW_LIMIT: int = 5000
    MAX_ROWS_HARD_LIMIT: int = 10000
    MAX_SAMPLE_ROWS: int = 50
    MAX_SQL_LENGTH: int = 10000

    # LLM Configuration (Generic URL-based)
    LLM_API_KEY: Optional[str] = None
    LLM_BASE_URL: str = "https://api.groq.com/openai/v1" # Default to Groq for now
    LLM_MODEL: str = "llama-3.3-70b-versatile"
    LLM_TIMEOUT: int = 60  # Timeout in seconds for LLM API calls

    # Backwards compatibility (optional mapping)
    GROQ_API_KEY: Optional[str] = None
    CLAUDE_API_KEY: Optional[str] = None

    # Orchestrator
    PLANNER_MAX_RETRIES: int = 2
    CHAT_ROW_CAP: int = 5000
    HISTORY_WINDOW: int = 5

    # Redis (plan cache)
    REDIS_URL: str = "redis://localhost:6379"
    PLAN_CACHE_TTL_S: int = 3600

    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(__file__), "../.env"),
        extra="ignore",
    )

@lru_cache()
def get_settings():
    s = Settings()
    # Auto-map legacy env vars if new ones are missing
    if not s.LLM_API_KEY:
        s.LLM_API_KEY = s.GROQ_API_KEY or s.CLAUDE_API_KEY
    return s
