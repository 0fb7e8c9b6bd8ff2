"""
Configuration settings using Pydantic Settings.
"""

from pathlib import Path
from pydantic import model_validator
from pydantic_settings import BaseSettings
from functools import lru_cache

from readlog.models.enums import OrphanPolicy

BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    DATABASE_PATH: str = "database/readlog.db"

    TIMELINE_DEFAULT_LIMIT: int = 20
    TIMELINE_MAX_LIMIT: int = 100

    REBUILD_BATCH_SIZE: int = 200
    ORPHAN_POLICY: OrphanPolicy = OrphanPolicy.FREEZE

    # 0 disables age-based staleness; rows are then only recomputed once invalidated.
    STATS_MAX_AGE_SECONDS: int = 0

    DEBUG: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }

    @model_validator(mode="after")
    def resolve_relative_paths(self):
        db_path = Path(self.DATABASE_PATH)
        if not db_path.is_absolute():
            self.DATABASE_PATH = str((BASE_DIR / db_path).resolve())
        if self.REBUILD_BATCH_SIZE < 1:
            raise ValueError("REBUILD_BATCH_SIZE must be at least 1")
        if self.TIMELINE_MAX_LIMIT < self.TIMELINE_DEFAULT_LIMIT:
            raise ValueError("TIMELINE_MAX_LIMIT must not be below TIMELINE_DEFAULT_LIMIT")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    :return: Cached Settings instance
    :rtype: Settings
    """
    return Settings()


settings = get_settings()
