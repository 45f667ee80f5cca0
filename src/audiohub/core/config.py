"""Configuration management for the audiohub media service."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "audiohub-media"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Storage Configuration
    STORAGE_BACKEND: str = "local"  # "local", "s3" or "gcs"
    LOCAL_STORAGE_PATH: str = "./data/storage"
    HLS_BUCKET: str = "audio-hls"

    # S3-compatible object store (AWS S3, RustFS, MinIO)
    S3_ENDPOINT_URL: str = ""
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""

    # GCP Configuration
    GCP_PROJECT_ID: str = ""

    # Upload Constraints
    MAX_UPLOAD_MB: int = 50
    UPLOAD_TMP_DIR: str = ""  # Empty = system temp directory
    HLS_STAGING_DIR: str = ""  # Empty = system temp directory

    # External tools
    FFPROBE_TIMEOUT_SECONDS: int = 30
    FFMPEG_DECODE_TIMEOUT_SECONDS: int = 300
    FFMPEG_HLS_TIMEOUT_SECONDS: int = 600
    PROCESS_POOL_WORKERS: int = 4

    # Event bus
    EVENT_BUS_BACKEND: str = "memory"  # "pubsub" or "memory"
    MEDIA_TOPIC: str = "media"
    PODCAST_SUBSCRIPTION: str = "podcast-audiohub"
    EVENT_PUBLISH_TIMEOUT_SECONDS: float = 5.0
    DELETION_CONSUMER_ENABLED: bool = True

    # Progress stream
    PROGRESS_POLL_INTERVAL_MS: int = 300
    PROGRESS_LOOKUP_ATTEMPTS: int = 100
    PROGRESS_GRACE_SECONDS: float = 5.0
    PROGRESS_KEEPALIVE_SECONDS: float = 15.0
    PROGRESS_RETENTION_SECONDS: float = 300.0

    @property
    def max_upload_bytes(self) -> int:
        """Convert MAX_UPLOAD_MB to bytes."""
        return self.MAX_UPLOAD_MB * 1024 * 1024

    @property
    def progress_poll_interval(self) -> float:
        """Progress poll interval in seconds."""
        return self.PROGRESS_POLL_INTERVAL_MS / 1000

    @property
    def upload_tmp_dir(self) -> str | None:
        """Directory for incoming upload files, None for the system default."""
        return self.UPLOAD_TMP_DIR or None

    @property
    def hls_staging_dir(self) -> str | None:
        """Root directory for transcoder staging packages, None for the system default."""
        return self.HLS_STAGING_DIR or None


# Singleton settings instance
settings = Settings()
