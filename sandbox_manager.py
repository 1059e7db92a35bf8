# sandbox_manager.py
import logging
from typing import Any, Optional

from e2b import AsyncSandbox

from utils.sandbox_urls import host_url

logger = logging.getLogger(__name__)


class SandboxManager:
    """Creates and connects to E2B sandboxes for sync and restore"""

    def __init__(
        self,
        template: str,
        timeout_seconds: int = 1800,
        api_key: Optional[str] = None,
    ):
        self.template = template
        self.timeout_seconds = timeout_seconds
        self.api_key = api_key

    async def create(self) -> AsyncSandbox:
        """Provision a fresh sandbox from the configured template"""
        logger.info(f"Creating sandbox from template '{self.template}'")
        sandbox = await AsyncSandbox.create(
            template=self.template,
            timeout=self.timeout_seconds,
            api_key=self.api_key,
        )
        logger.info(f"Sandbox created: {sandbox.sandbox_id}")
        return sandbox

    async def connect(self, sandbox_id: str) -> AsyncSandbox:
        """Attach to a running sandbox and push its idle timeout forward"""
        logger.info(f"Connecting to sandbox {sandbox_id}")
        sandbox = await AsyncSandbox.connect(sandbox_id, api_key=self.api_key)
        await sandbox.set_timeout(self.timeout_seconds)
        return sandbox

    def preview_url(self, sandbox: Any, port: int = 3000) -> str:
        return host_url(sandbox.get_host(port))

    async def kill(self, sandbox: Any) -> bool:
        """Best-effort teardown. Returns False instead of raising."""
        sandbox_id = getattr(sandbox, "sandbox_id", "unknown")
        try:
            await sandbox.kill()
            logger.info(f"Sandbox {sandbox_id} killed")
            return True
        except Exception as e:
            logger.warning(f"Could not kill sandbox {sandbox_id}: {e}")
            return False


def create_sandbox_manager(settings) -> SandboxManager:
    """Factory function to build a SandboxManager from AppSettings"""
    return SandboxManager(
        template=settings.E2B_TEMPLATE,
        timeout_seconds=settings.SANDBOX_TIMEOUT_SECONDS,
        api_key=settings.E2B_API_KEY,
    )
