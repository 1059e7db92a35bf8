# app_config.py
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """Runtime settings for GitHub backup, sandbox restore and the workflow engine"""

    # GitHub
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_OWNER: str = "backup_admin"
    GITHUB_OWNER_IS_ORG: bool = True
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_DEFAULT_BRANCH: str = "main"
    REPO_PROVISION_DELAY: float = 1.0  # seconds to wait after creating a repo

    # Identity used for commits made inside a sandbox
    GIT_AUTHOR_NAME: str = "backup_admin"
    GIT_AUTHOR_EMAIL: str = "backup-bot@users.noreply.github.com"

    # "api" builds commits through the REST API, "shell" runs git in the sandbox
    SYNC_STRATEGY: Literal["api", "shell"] = "api"

    # E2B
    E2B_API_KEY: Optional[str] = None
    E2B_TEMPLATE: str = "vibe-nextjs"
    SANDBOX_TIMEOUT_SECONDS: int = 1800
    SANDBOX_WORKDIR: str = "/home/user"

    # Dev server started after a restore
    DEV_SERVER_PORT: int = 3000
    DEV_SERVER_COMMAND: str = "npm run dev"
    DEV_SERVER_START_DELAY: float = 5.0

    # Per-command budgets (milliseconds)
    GIT_INSTALL_TIMEOUT_MS: int = 300_000
    CLONE_TIMEOUT_MS: int = 300_000
    CHECKOUT_TIMEOUT_MS: int = 120_000
    GIT_ADD_TIMEOUT_MS: int = 60_000
    PUSH_TIMEOUT_MS: int = 120_000
    DEPENDENCY_INSTALL_TIMEOUT_MS: int = 300_000

    # Inngest
    INNGEST_APP_ID: str = "vibe-backup"
    INNGEST_IS_PRODUCTION: bool = False
    INNGEST_EVENT_KEY: Optional[str] = None
    INNGEST_SIGNING_KEY: Optional[str] = None

    class Config:
        env_file = ".env"
        extra = "ignore"  # .env also carries database and unrelated keys

    def require_github_token(self) -> str:
        """Return the GitHub token or fail loudly when it is not configured"""
        if not self.GITHUB_TOKEN:
            raise ValueError("GITHUB_TOKEN environment variable is required")
        return self.GITHUB_TOKEN


def get_app_settings() -> AppSettings:
    """Get application settings from environment"""
    return AppSettings()
