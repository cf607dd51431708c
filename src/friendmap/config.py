"""
Centralized configuration management.
Uses environment variables with sensible defaults.
"""
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with validation."""

    # Clustering configuration
    CLUSTER_RADIUS_PX: int = 60
    TILE_SIZE: int = 256

    # Image loading
    IMAGE_LOADER_WORKERS: int = 4

    # State snapshots
    SNAPSHOT_KEY: str = "markerManagerFriends"

    # Logging
    LOG_LEVEL: str = "WARNING"
    LOG_FORMAT: str = "text"
    LOG_FILE: Optional[Path] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
