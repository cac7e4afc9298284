"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "CourtSlot"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"

    # Database
    database_url: str = "postgresql+asyncpg://courtslot:courtslot@db:5432/courtslot"
    database_echo: bool = False

    # Redis (Celery broker for the sweep)
    redis_url: str = "redis://redis:6379/0"
    sweep_interval_seconds: int = 60

    # Auth
    access_token_expire_minutes: int = 60
    confirmation_token_expire_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Email / SMTP
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "noreply@courtslot.local"
    api_origin: str = "http://localhost:8000"

    # Venue
    timezone: str = "Asia/Kolkata"
    institution_domain: str = "nitw.ac.in"

    model_config = {"env_prefix": "CS_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
