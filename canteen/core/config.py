"""
Canteen Service - Configuration
All settings are read from environment variables (or .env file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "canteen-service"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"

    # ── PostgreSQL ────────────────────────────────────────────
    POSTGRES_HOST: str = "canteen-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "canteen_db"
    POSTGRES_USER: str = "canteen_user"
    POSTGRES_PASSWORD: str = "canteen_pass"
    DATABASE_URL: str | None = None  # full override, e.g. sqlite+aiosqlite:///./canteen.db
    DB_COMMAND_TIMEOUT_SECONDS: float = 10.0

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis ─────────────────────────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Idempotency ───────────────────────────────────────────
    IDEMPOTENCY_KEY_TTL_SECONDS: int = 86400

    # ── Optimistic Locking Retry ──────────────────────────────
    OPT_LOCK_MAX_RETRIES: int = 5
    OPT_LOCK_BASE_DELAY_MS: int = 50      # base exponential backoff delay in ms
    OPT_LOCK_MAX_DELAY_MS: int = 1000     # max backoff cap in ms
    OPT_LOCK_JITTER_MS: int = 50          # random jitter range in ms

    # ── Transient read retry ──────────────────────────────────
    READ_RETRY_ATTEMPTS: int = 3
    READ_RETRY_DELAY_MS: int = 100

    # ── Catalog import ────────────────────────────────────────
    IMPORT_CHUNK_SIZE: int = 500
    DB_IN_QUERY_LIMIT: int = 100

    # ── Weekly menu limits ────────────────────────────────────
    MAX_ITEMS_PER_MEAL: dict[str, int] = {
        "breakfast": 5,
        "snack": 10,
        "lunch": 2,
        "drinks": 5,
    }
    DEFAULT_MAX_ITEMS_PER_MEAL: int = 10

    # ── Change streams (SSE) ──────────────────────────────────
    CHANGE_CHANNEL_PREFIX: str = "canteen:changes:"
    SSE_KEEPALIVE_INTERVAL_SECONDS: int = 15
    SSE_RETRY_MILLISECONDS: int = 3000

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
