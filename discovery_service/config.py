"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── TiDB (MySQL-protocol compatible) ───────────────────────────────────
    tidb_host: str = "tidb"
    tidb_port: int = 4000
    tidb_user: str = "root"
    tidb_password: str = ""
    tidb_database: str = "social_content"

    @property
    def tidb_url(self) -> str:
        return (
            f"mysql+aiomysql://{self.tidb_user}:{self.tidb_password}"
            f"@{self.tidb_host}:{self.tidb_port}/{self.tidb_database}"
        )

    # ── Redis ──────────────────────────────────────────────────────────────
    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0
    redis_key_prefix: str = "discovery:"

    # ── Recommendation cache TTLs (seconds) ────────────────────────────────
    personalized_ttl: int = 60 * 60 * 3       # 3h
    trending_ttl: int = 60 * 30               # 30 min
    network_trending_ttl: int = 60 * 60       # 1h
    people_suggestions_ttl: int = 60 * 60 * 24  # 24h

    # ── Request limits ─────────────────────────────────────────────────────
    default_page_size: int = 20
    max_page_size: int = 50

    # ── Scheduled jobs ─────────────────────────────────────────────────────
    jobs_enabled: bool = True
    trending_update_interval: int = 60 * 30   # every 30 min
    popularity_update_interval: int = 60 * 60 * 3  # every 3h
    popularity_batch_size: int = 50

    # ── A/B testing ────────────────────────────────────────────────────────
    # JSON object: {"experiment_name": ["variant-a", "variant-b"]}
    ab_testing_experiments: str = ""
    experiment_log_size: int = 1000

    # ── Auth (token verification only; tokens are issued elsewhere) ────────
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"

    # ── Observability ──────────────────────────────────────────────────────
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "discovery-service"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
