"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "DMS API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_SERIALIZE: bool = True

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # DB (dms). DB_URL wins over the discrete MySQL settings when present.
    DB_URL: str | None = None
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "appadmin"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "dms"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ISOLATION_LEVEL: str = "READ COMMITTED"
    DB_RETRY_ATTEMPTS: int = 4
    DB_RETRY_BASE_DELAY: float = 0.05
    DB_RETRY_JITTER: float = 0.025
    INNODB_LOCK_WAIT_TIMEOUT_SEC: int = 10
    SELECT_MAX_EXECUTION_TIME_MS: int = 5000
    DB_NOWAIT_LOCKS: bool = False
    SQLITE_BUSY_TIMEOUT_SEC: int = 30

    # Counters and delivery log bookkeeping
    SEQUENCE_MAX_ATTEMPTS: int = 5
    DELIVERY_LOG_ATTACH_ATTEMPTS: int = 3
    # Post-commit delivery log sync; a timeout is a missed sync that the
    # reconciliation job repairs later.
    DELIVERY_SYNC_TIMEOUT_SEC: float = 10.0

    # Maximum allowed request body size.
    MAX_UPLOAD_BYTES: int = 1024 * 1024  # 1 MB

    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    @property
    def DATABASE_URL(self) -> str:
        if self.DB_URL:
            return self.DB_URL
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
