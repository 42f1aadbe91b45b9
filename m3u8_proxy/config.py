"""Configuration management for the proxy server."""

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROXY_SECRET = "change-me-proxy-secret"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Token Configuration
    proxy_secret: str = DEFAULT_PROXY_SECRET
    token_bucket_seconds: int = 60
    token_skew_buckets: int = 5  # 5 minutes with 1-minute buckets

    # Origin Configuration
    allowed_origins: str = "http://localhost:5000"  # Comma-separated list
    origin_gating_enabled: bool = False

    # Proxy Configuration
    proxy_path: str = "/proxy"
    public_base_url: str = ""  # Defaults to the request's base URL
    upstream_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    playlist_cache_control: str = "no-cache"
    segment_cache_control: str = "public, max-age=31536000, immutable"

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    dev_mode: bool = False

    # HTTP Client Configuration
    http_timeout_seconds: float = 10.0
    http_max_connections: int = 100
    http_max_keepalive_connections: int = 20

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse allowed origins from comma-separated string."""
        if not self.allowed_origins:
            return []
        return [o.strip().rstrip("/") for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def token_lifetime_seconds(self) -> int:
        """Longest time a freshly issued token keeps verifying."""
        return (self.token_skew_buckets + 1) * self.token_bucket_seconds


# Global settings instance
settings = Settings()
