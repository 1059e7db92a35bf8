# db/config.py
from typing import Optional

from pydantic_settings import BaseSettings

DIRECT_PORT = 5432
POOLER_PORT = 6543


class DatabaseSettings(BaseSettings):
    """Where fragments and their backup commits are stored"""

    # Pooled URL for the API and workflow steps, direct URL for migrations
    DATABASE_URL: Optional[str] = None
    DIRECT_DATABASE_URL: Optional[str] = None

    # Discrete parts, used when no URL is given
    DB_HOST: Optional[str] = None
    DB_PORT: int = POOLER_PORT
    DB_NAME: Optional[str] = None
    DB_USER: Optional[str] = None
    DB_PASSWORD: Optional[str] = None

    # Local development without Postgres, e.g. ./vibe-backup.db
    DB_SQLITE_PATH: Optional[str] = None

    POOL_SIZE: int = 5
    MAX_OVERFLOW: int = 10
    POOL_PRE_PING: bool = True

    ECHO_SQL: bool = False

    class Config:
        env_file = ".env"
        extra = "ignore"  # .env also holds GITHUB_TOKEN, E2B_API_KEY, INNGEST_*

    def _url_from_parts(self, use_direct: bool) -> Optional[str]:
        if not (self.DB_HOST and self.DB_NAME and self.DB_USER and self.DB_PASSWORD):
            return None
        port = DIRECT_PORT if use_direct else self.DB_PORT
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{port}/{self.DB_NAME}"

    def get_connection_url(self, use_direct: bool = False) -> str:
        """
        Resolve the async driver URL.

        Args:
            use_direct: Bypass the Supavisor pooler (migrations, admin scripts)

        Raises:
            ValueError: If nothing usable is configured
        """
        explicit = self.DIRECT_DATABASE_URL if use_direct else self.DATABASE_URL
        url = explicit or self._url_from_parts(use_direct)
        if url is None and self.DB_SQLITE_PATH:
            url = f"sqlite+aiosqlite:///{self.DB_SQLITE_PATH}"
        if url is None:
            raise ValueError(
                "Database connection parameters not configured "
                "(set DATABASE_URL, DB_HOST/DB_NAME/DB_USER/DB_PASSWORD or DB_SQLITE_PATH)"
            )
        return normalize_async_url(url)


def normalize_async_url(url: str) -> str:
    """Point Postgres URLs at asyncpg; anything else passes through"""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def get_db_settings() -> DatabaseSettings:
    return DatabaseSettings()
