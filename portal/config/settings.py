from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Required for workers and webhooks (RLS bypass)

    # Mux live streaming
    mux_token_id: Optional[str] = None
    mux_token_secret: Optional[str] = None
    mux_webhook_secret: Optional[str] = None  # When set, Mux-Signature is verified
    mux_api_base: str = "https://api.mux.com"

    # Livepush
    livepush_client_id: Optional[str] = None
    livepush_client_secret: Optional[str] = None
    livepush_api_base: str = "https://api.livepush.io"

    # Social OAuth apps
    tiktok_client_id: Optional[str] = None
    tiktok_client_secret: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    meta_app_id: Optional[str] = None
    meta_app_secret: Optional[str] = None

    # AWS S3 (recordings CDN origin)
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "us-east-1"
    recordings_bucket_name: Optional[str] = None
    recordings_cdn_base_url: Optional[str] = None  # e.g. https://cdn.example.com; falls back to s3 URL

    # Supabase Storage
    social_clips_bucket: str = "social_clips"

    # Workers
    enable_background_workers: bool = True
    stream_poll_interval_seconds: int = 60
    stream_poll_statuses: str = "scheduled,waiting,ready"
    scheduled_posts_interval_seconds: int = 60
    scheduled_posts_batch_size: int = 50
    token_refresh_interval_seconds: int = 3600
    instagram_poll_interval_seconds: float = 5.0
    instagram_poll_attempts: int = 60
    http_timeout_seconds: float = 30.0
    cron_secret: Optional[str] = None

    # App
    app_name: str = "artist-portal-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def get_stream_poll_statuses(self) -> List[str]:
        return [s.strip() for s in self.stream_poll_statuses.split(",") if s.strip()]

    @property
    def mux_configured(self) -> bool:
        return bool(self.mux_token_id and self.mux_token_secret)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
