"""Runtime configuration loaded from WEBSEARCH_* environment variables."""

from functools import lru_cache
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operational knobs for indexing and querying. CLI flags override these."""

    model_config = SettingsConfigDict(
        env_prefix="WEBSEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_path: str = Field(default="data/index.sqlite3", description="SQLite index file, or ':memory:'")

    # Persistence
    batch_size: int = Field(default=1000, ge=1, description="Postings per store write")
    queue_size: int = Field(default=10_000, ge=1, description="Bounded persistence queue capacity")
    writer_threads: int = Field(default=2, ge=1, description="Persistence writer threads")

    # Index build
    index_threads: int = Field(default=4, ge=1, description="Documents indexed concurrently")
    max_content_bytes: int = Field(default=100_000_000, ge=1, description="Largest accepted document")

    # Query
    fetch_timeout: float = Field(default=10.0, gt=0, description="Seconds allowed per term postings fetch")
    page_size: int = Field(default=10, ge=1, description="Default results per page")

    log_level: str = Field(default="INFO", description="Root log level for the CLIs")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | int = "INFO") -> None:
    """Install a console handler on the root logger (CLI entry points only)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
