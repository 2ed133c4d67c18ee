from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # Storage
    database_url: str = "duckdb://./data/tiffin.duckdb"

    # JWT
    jwt_secret_key: str = "change-me-tiffin-development-secret-key"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7

    # API
    api_title: str = "Tiffin Subscription API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"
    cors_origins: List[str] = ["*"]

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Business calendar
    business_timezone: str = "Asia/Kolkata"
    action_cutoff_minutes: int = 120
    default_country: str = "India"

    # Fan-out limits for generation and bulk operations
    generation_max_workers: int = 8
    store_timeout_seconds: float = 30.0

    # Push notifications (best effort)
    push_endpoint: Optional[str] = None
    push_server_key: Optional[str] = None
    push_timeout_seconds: float = 5.0

    log_level: str = "INFO"

    # Development mode
    debug: bool = False

    class Config:
        env_file = ".env"
        env_prefix = "TIFFIN_"
        case_sensitive = False


# Global settings instance
settings = Settings()
