"""Configuration management"""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    APP_NAME: str = "streamwatch"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    HOST: str = "0.0.0.0"
    PORT: int = 5000
    CORS_ORIGINS: List[str] = ["*"]

    # Directories
    DATA_DIR: Path = Path("data")
    THUMBNAILS_DIR: Path = DATA_DIR / "thumbnails"
    LOGS_DIR: Path = DATA_DIR / "logs"

    # Polling
    POLL_INTERVAL: float = 7.0  # seconds between cycle starts
    STARTUP_DELAY: float = 1.0
    MANIFEST_TIMEOUT: float = 10.0
    STALE_THRESHOLD_MS: int = 7000

    # Deep analysis
    MAX_CONCURRENT_PROBES: int = 4
    PROBE_TIMEOUT: float = 30.0
    THUMBNAIL_TIMEOUT: float = 30.0
    THUMBNAIL_WIDTH: int = 640
    THUMBNAIL_SEEK: float = 0.5

    # Retention
    ERROR_LOG_CAP: int = 1000
    METRICS_RETENTION_DAYS: int = 7
    LOG_COMPRESS_DAYS: int = 1
    LOG_DELETE_DAYS: int = 30

    # Event delivery
    EVENT_QUEUE_SIZE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
