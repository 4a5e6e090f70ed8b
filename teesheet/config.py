from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./teesheet.db"

    environment: str = "development"
    timezone: str = "America/Chicago"
    log_level: str = "INFO"

    provider_http_timeout_seconds: float = 30.0

    redis_url: str | None = None

    token_cache_ttl_seconds: int = 3600
    lightspeed_access_token_ttl_seconds: int = 7200
    lightspeed_refresh_token_ttl_seconds: int = 86400

    index_days_ahead: int = 15

    scheduler_api_key: str | None = None
    scheduler_service_account: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
