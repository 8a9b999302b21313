from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


class Settings(BaseSettings):
    # Application settings
    app_name: str = "eventlens"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./eventlens.db"

    # Security settings
    secret_key: str = "change-me"
    access_token_algorithm: str = "HS256"
    cron_secret: str | None = None

    # Object storage (S3 compatible)
    s3_endpoint: str | None = None
    s3_region: str = "auto"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_bucket_name: str = "eventlens"
    s3_public_url: str | None = None
    presigned_url_expiry: int = 3600

    # Redis (rate limiting)
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_fail_open: bool = False
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    api_key_rate_limit: int = 1000
    api_key_upload_rate_limit: int = 100

    # Upload limits
    default_storage_limit: int = 20 * GIB
    max_image_size: int = 50 * MIB
    max_video_size: int = 5 * GIB
    max_banner_size: int = 10 * MIB
    multipart_threshold: int = 100 * MIB
    multipart_part_size: int = 10 * MIB
    multipart_concurrency: int = 4
    multipart_presign_batch: int = 10

    # Background maintenance
    ghost_safety_threshold_hours: int = 24
    ghost_time_limit_seconds: float = 15.0
    heic_conversion_timeout: float = 30.0

    # Live feed
    feed_keepalive_interval: float = 15.0

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
