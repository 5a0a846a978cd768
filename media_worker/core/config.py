"""Worker configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Worker settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "SilentCine Media Worker"
    VERSION: str = "0.1.0"
    API_PREFIX: str = ""
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Security - REQUIRED (shared secret sent by callers as x-api-key)
    WORKER_API_KEY: str

    # Record store - REQUIRED
    DATABASE_URL: str

    # Celery broker for the retention task
    REDIS_URL: str = "redis://localhost:6379/0"

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = "movies"
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True
    SIGNED_URL_EXPIRES_SECONDS: int = 3600

    # Processing
    TMP_DIR: str = "./tmp"
    MAX_CONCURRENT: int = Field(default=2, ge=1)
    JOB_RETENTION_SECONDS: float = 300.0
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    MIN_AUDIO_BYTES: int = 1024
    MAX_CAPTION_UPLOAD_BYTES: int = 5 * 1024 * 1024

    # Retention
    RETENTION_PURGE_AFTER_DAYS: int = 7

    # Observability
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    OTLP_ENDPOINT: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
