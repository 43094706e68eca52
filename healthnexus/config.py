"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="HealthNexus API", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")  # noqa: S104
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")
    ensure_indexes_on_startup: bool = Field(default=True, alias="ENSURE_INDEXES_ON_STARTUP")
    slow_query_threshold_ms: int = Field(default=1000, alias="SLOW_QUERY_THRESHOLD_MS")
    cleanup_days_to_keep: int = Field(default=90, alias="CLEANUP_DAYS_TO_KEEP")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_socket_timeout: float = Field(default=5.0, alias="REDIS_SOCKET_TIMEOUT")

    # Cache
    cache_enabled: bool = Field(default=True, alias="CACHE_ENABLED")
    cache_ttl_services: int = Field(default=300, alias="CACHE_TTL_SERVICES")
    cache_ttl_appointments: int = Field(default=600, alias="CACHE_TTL_APPOINTMENTS")

    # JWT (tokens are issued by the auth service; we only verify them)
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Rate Limiting
    rate_limit_max_requests: int = Field(default=100, alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_seconds: int = Field(default=900, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_max_identities: int = Field(default=10_000, alias="RATE_LIMIT_MAX_IDENTITIES")

    # Appointment rules
    cancellation_window_hours: float = Field(default=24, alias="CANCELLATION_WINDOW_HOURS")
    reschedule_window_hours: float = Field(default=2, alias="RESCHEDULE_WINDOW_HOURS")

    # Payment gateway
    payment_gateway_url: str = Field(default="https://api.stripe.com", alias="PAYMENT_GATEWAY_URL")
    payment_gateway_api_key: str = Field(default="", alias="PAYMENT_GATEWAY_API_KEY")
    payment_gateway_timeout: float = Field(default=5.0, alias="PAYMENT_GATEWAY_TIMEOUT")

    # Health checks
    health_check_database_timeout: float = Field(default=3.0, alias="HEALTH_CHECK_DATABASE_TIMEOUT")
    health_check_redis_timeout: float = Field(default=2.0, alias="HEALTH_CHECK_REDIS_TIMEOUT")
    health_check_min_free_disk_ratio: float = Field(
        default=0.05,
        alias="HEALTH_CHECK_MIN_FREE_DISK_RATIO",
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
