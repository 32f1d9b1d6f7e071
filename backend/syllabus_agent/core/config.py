from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"

    # database & redis
    # Plain strings so sqlite:/// and redis:// URLs are always accepted
    DATABASE_URL: str = "sqlite:///./syllabus_agent.db"
    REDIS_URL: str = "redis://localhost:6379/0"

    # llm
    LLM_PROVIDER: str = "gemini"  # or "openai", "openrouter"
    LLM_MODEL: str = "gemini-1.5-flash"
    GEMINI_API_KEY: str | None = None
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    OPENAI_API_KEY: str | None = None
    OPENROUTER_API_KEY: str | None = None
    # Hard cap on concurrent LLM calls per process
    LLM_MAX_CONCURRENCY: int = 4
    # Retries are left to the caller via the job retry endpoint
    LLM_MAX_RETRIES: int = 0
    LLM_TIMEOUT_SECONDS: float = 25.0

    # job pipeline
    MIN_INPUT_CHARS: int = 100
    MAX_INPUT_CHARS: int = 50_000
    JOB_TIMEOUT_SECONDS: float = 30.0
    JOB_RETENTION_SECONDS: float = 300.0

    # history
    MAX_HISTORY_PER_USER: int = 100
    HISTORY_RETENTION_DAYS: int = 365

    # auth / security
    API_AUTH_KEY: str | None = None
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
