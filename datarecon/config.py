"""
Application Configuration
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Record store (runs + per-key records)
    database_url: Optional[str] = None

    # Environment
    environment: str = "development"

    # Datasources and dataset definitions (YAML)
    reconciliation_config_path: str = "config/reconciliation.yml"

    # Streaming
    query_fetch_size: int = 1000  # Rows per round trip from a server-side cursor
    record_batch_size: int = 500  # Record upserts per store transaction

    # Multi-dataset trigger
    max_concurrent_runs: int = 4

    # Scheduler
    scheduler_timezone: str = "UTC"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
