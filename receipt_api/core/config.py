from pydantic_settings import BaseSettings
from typing import Optional

from receipt_api import __version__


class Settings(BaseSettings):
    PROJECT_NAME: str = "meme-receipt-api"
    VERSION: str = __version__

    # Environment ("local", "test", "prod")
    ENVIRONMENT: str = "local"

    # Security
    # API_KEY: when unset, auth is disabled entirely
    API_KEY: Optional[str] = None

    # Key-value store
    # redis://host:6379/0 -> Redis, sqlite:///./receipts.db / postgresql://... -> SQL table,
    # memory:// -> in-process SQLite (local development only)
    KV_URL: Optional[str] = None
    KV_TIMEOUT_SECONDS: float = 5.0

    # Receipts
    DEDUP_TTL_SECONDS: int = 60
    INDEX_TTL_DAYS: int = 14
    LIST_DEFAULT_LIMIT: int = 50
    LIST_MAX_LIMIT: int = 200
    NOTE_MAX_LENGTH: int = 500
    SOURCE_MAX_LENGTH: int = 120

    # CORS preflight cache
    CORS_MAX_AGE: int = 86400

    # Logging
    LOG_LEVEL: str = "INFO"

    # uvicorn (receipt-api CLI)
    HOST: str = "0.0.0.0"
    PORT: int = 8787

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra environment variables

    @property
    def auth_enabled(self) -> bool:
        return bool(self.API_KEY)

    @property
    def index_ttl_seconds(self) -> int:
        return self.INDEX_TTL_DAYS * 24 * 60 * 60
