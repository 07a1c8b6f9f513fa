from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional
import os


class Settings(BaseSettings):
    # App Settings
    app_name: str = "Catalog"
    app_version: str = "1.0.0"
    debug: bool = False

    # Database - Railway provides DATABASE_URL, fallback to SQLite for local
    database_url: Optional[str] = None

    # Redis - empty disables caching, the service then reads straight from the database
    redis_url: str = ""
    cache_key_prefix: str = "catalog:"
    cache_ttl_seconds: int = 3600

    # Job queue retry policy
    queue_max_attempts: int = 3
    queue_backoff_strategy: str = "exponential"  # fixed | exponential
    queue_backoff_delay: float = 5.0  # seconds
    queue_stall_timeout: float = 30.0  # seconds

    # Worker
    worker_concurrency: int = 1
    worker_poll_interval: float = 1.0
    worker_max_idle_interval: float = 10.0
    job_retention_hours: int = 72
    run_embedded_worker: bool = False

    # API Settings
    allowed_origins: str = "http://localhost:3000"
    write_rate_limit: str = "60/minute"
    rate_limit_enabled: bool = True
    backend_host: str = "0.0.0.0"
    backend_port: int = int(os.getenv("PORT", "8000"))  # Railway provides PORT env var

    class Config:
        env_file = ".env"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.database_url is None:
            railway_db = os.getenv("DATABASE_URL")
            if railway_db:
                self.database_url = normalize_database_url(railway_db)
            else:
                self.database_url = "sqlite+aiosqlite:///./database/catalog.db"
        else:
            self.database_url = normalize_database_url(self.database_url)


def normalize_database_url(url: str) -> str:
    """Railway uses postgres:// or postgresql://, but SQLAlchemy async needs postgresql+asyncpg://"""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


@lru_cache()
def get_settings() -> Settings:
    return Settings()
