"""
Restore Orchestrator
====================

Brings a backed-up fragment back to life in a brand new E2B sandbox:

1. Load the fragment and check it has a commit and a repository
2. Provision a sandbox
3. Clone the backup repository and check out the fragment's commit
4. Install dependencies (best-effort)
5. Start the dev server and health-check it (best-effort)
6. Hand back the new preview URL

The backup repository is only read here. Nothing is provisioned when the
fragment cannot be restored.
"""

import logging
import shlex
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from command_runner_e2b import DevServer, SandboxCommandRunner, ensure_git
from db.integration import FragmentSnapshot
from errors import BackupError, FragmentNotFoundError, PreconditionFailedError
from utils.sandbox_urls import authenticated_clone_url, is_valid_project_id

logger = logging.getLogger(__name__)


@dataclass
class RestoreRequest:
    project_id: str
    fragment_id: str


class RestoreOrchestrator:
    def __init__(
        self,
        fragments: Any,
        sandbox_manager: Any,
        github_owner: str,
        github_token: str,
        settings: Any,
    ):
        """
        Args:
            fragments: FragmentStore (anything with ``get_fragment``)
            sandbox_manager: SandboxManager used to provision the new sandbox
            github_owner: Owner of the backup repositories
            github_token: Token used for the authenticated clone
            settings: AppSettings with timeouts and dev server options
        """
        self.fragments = fragments
        self.sandbox_manager = sandbox_manager
        self.github_owner = github_owner
        self.github_token = github_token
        self.settings = settings

    def _log(self, log: List[str], message: str) -> None:
        log.append(message)
        logger.info(f"[RESTORE] {message}")

    async def _load_fragment(self, fragment_id: str) -> FragmentSnapshot:
        fragment = await self.fragments.get_fragment(fragment_id)
        if fragment is None:
            raise FragmentNotFoundError(fragment_id)
        if not fragment.commit_sha:
            raise PreconditionFailedError(
                f"Fragment {fragment_id} has no commitSha to restore",
                metadata={"fragment_id": fragment_id},
            )
        if not fragment.repository_name:
            raise PreconditionFailedError(
                f"Fragment {fragment_id} has no repositoryName",
                metadata={"fragment_id": fragment_id},
            )
        if not is_valid_project_id(fragment.repository_name):
            raise PreconditionFailedError(
                f"Fragment {fragment_id} has an invalid repositoryName {fragment.repository_name!r}",
                metadata={"fragment_id": fragment_id},
            )
        return fragment

    async def _checkout(self, runner: SandboxCommandRunner, fragment: FragmentSnapshot, log: List[str]) -> None:
        clone_url = authenticated_clone_url(
            self.github_owner, fragment.repository_name, self.github_token
        )
        self._log(log, f"Cloning {fragment.repository_name}")
        await runner.run_checked(
            f"git clone {shlex.quote(clone_url)} .",
            timeout_ms=self.settings.CLONE_TIMEOUT_MS,
            description="Git clone",
        )

        self._log(log, f"Checking out commit {fragment.commit_sha}")
        await runner.run_checked(
            f"git checkout {shlex.quote(fragment.commit_sha)}",
            timeout_ms=self.settings.CHECKOUT_TIMEOUT_MS,
            description="Git checkout",
        )

    async def _install_dependencies(self, runner: SandboxCommandRunner, log: List[str]) -> bool:
        self._log(log, "Installing dependencies")
        try:
            result = await runner.run(
                "npm install", timeout_ms=self.settings.DEPENDENCY_INSTALL_TIMEOUT_MS
            )
        except BackupError as e:
            self._log(log, f"npm install did not finish, continuing without dependencies: {e.message}")
            return False
        if result.failed:
            self._log(log, f"npm install failed, continuing without dependencies: {result.failure_reason()}")
            return False
        return True

    async def _start_dev_server(self, runner: SandboxCommandRunner, log: List[str]) -> DevServer:
        server = DevServer(
            runner,
            command=self.settings.DEV_SERVER_COMMAND,
            port=self.settings.DEV_SERVER_PORT,
        )
        service = await server.start()
        self._log(log, f"Dev server started (pid {service.pid})")

        await server.wait_until_started(self.settings.DEV_SERVER_START_DELAY)
        try:
            healthy = await server.health_check()
        except BackupError as e:
            healthy = False
            self._log(log, f"Health check errored: {e.message}")
        if not healthy:
            self._log(log, "Server may not be ready yet, continuing")
        return server

    async def restore(self, request: RestoreRequest) -> Dict[str, Any]:
        """
        Restore a fragment's commit into a new sandbox.

        Returns:
            On success {success, newSandboxUrl, newSandboxId, originalFragment,
            projectId, restorationLog}; otherwise {success: False, error,
            errorType, projectId, fragmentId, restorationLog}.
        """
        log: List[str] = []
        sandbox: Optional[Any] = None

        try:
            fragment = await self._load_fragment(request.fragment_id)
            self._log(log, f"Fragment {fragment.id} -> {fragment.repository_name}@{fragment.commit_sha}")

            sandbox = await self.sandbox_manager.create()
            self._log(log, f"Sandbox created: {sandbox.sandbox_id}")

            runner = SandboxCommandRunner(
                sandbox,
                cwd=self.settings.SANDBOX_WORKDIR,
                secrets=[self.github_token],
            )
            await ensure_git(runner, self.settings.GIT_INSTALL_TIMEOUT_MS)
            await self._checkout(runner, fragment, log)
            dependencies_installed = await self._install_dependencies(runner, log)
            server = await self._start_dev_server(runner, log)

            new_sandbox_url = self.sandbox_manager.preview_url(sandbox, self.settings.DEV_SERVER_PORT)
            self._log(log, f"Restore finished: {new_sandbox_url}")

            return {
                "success": True,
                "newSandboxUrl": new_sandbox_url,
                "newSandboxId": sandbox.sandbox_id,
                "originalFragment": fragment.summary(),
                "projectId": request.project_id,
                "dependenciesInstalled": dependencies_installed,
                "devServerPid": server.pid,
                "restorationLog": list(log),
            }

        except BackupError as e:
            logger.error(f"[RESTORE] Restore commit failed: {e.message}")
            error, error_type = e.message, e.error_type
        except Exception as e:
            logger.error(f"[RESTORE] Unexpected error: {e}")
            error, error_type = str(e) or type(e).__name__, "unexpected_error"

        if sandbox is not None:
            self._log(log, f"Tearing down sandbox {sandbox.sandbox_id} after failure")
            await self.sandbox_manager.kill(sandbox)

        return {
            "success": False,
            "error": error,
            "errorType": error_type,
            "projectId": request.project_id,
            "fragmentId": request.fragment_id,
            "restorationLog": list(log),
        }


def create_restore_orchestrator(settings: Any, fragments: Any = None, sandbox_manager: Any = None) -> RestoreOrchestrator:
    """Factory function to create a RestoreOrchestrator from AppSettings"""
    if fragments is None:
        from db.integration import FragmentStore

        fragments = FragmentStore()
    if sandbox_manager is None:
        from sandbox_manager import create_sandbox_manager

        sandbox_manager = create_sandbox_manager(settings)

    return RestoreOrchestrator(
        fragments=fragments,
        sandbox_manager=sandbox_manager,
        github_owner=settings.GITHUB_OWNER,
        github_token=settings.require_github_token(),
        settings=settings,
    )
