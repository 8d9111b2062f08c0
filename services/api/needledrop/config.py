"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database (TiDB / MySQL protocol) ───────────────────────────────────
    database_url: str = "mysql+aiomysql://root:@tidb:4000/needledrop"
    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_echo: bool = False

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    popular_reviews_cache_ttl: int = 300   # seconds the ranked id list lives

    # ── Feed ───────────────────────────────────────────────────────────────
    feed_default_limit: int = 20
    feed_max_limit: int = 50
    new_and_upcoming_cooldown_days: int = 7
    max_post_communities: int = 5

    # ── Notifications ──────────────────────────────────────────────────────
    # False: notification is written after the engagement commits (best effort).
    # True:  notification shares the engagement transaction.
    notifications_in_transaction: bool = False

    # ── Observability ──────────────────────────────────────────────────────
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "needledrop-api"
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
