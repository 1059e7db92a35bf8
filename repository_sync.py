"""
Repository Synchronizer
=======================

Backs up a project's current file set as one new commit in the GitHub
repository ``project-<projectId>``.

Two interchangeable strategies share the same contract:

- ApiSyncStrategy builds blobs, a tree and a commit through the GitHub REST
  API and moves the branch ref. Needs no git binary; this is the default.
- ShellSyncStrategy drives git inside the project's E2B sandbox (clone to
  keep history when the remote exists, otherwise init + forced push).

RepositorySynchronizer wraps either strategy and never lets an exception
escape: failures come back as ``SyncResult(success=False, ...)``.
"""

import asyncio
import logging
import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from command_runner_e2b import CommandAttempt, SandboxCommandRunner, ensure_git
from errors import BackupError, ToolingError
from github_client import GitHubAPIError, GitHubClient
from utils.sandbox_urls import is_valid_project_id, repository_name_for, require_sandbox_id

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

README_PATH = "README.md"
BLOB_MODE = "100644"

# Never committed: dependencies, env files, logs, build output, shell profile
GITIGNORE_ENTRIES = [
    "node_modules/",
    ".next/",
    ".npm/",
    "nextjs-app/",
    ".env*",
    "*.log",
    ".wh.*",
    ".bash*",
    ".profile",
    ".sudo*",
    ".gitconfig",
]

# Allow-list staged first by the shell strategy
PROJECT_PATHS = [
    "package.json",
    "package-lock.json",
    "tsconfig.json",
    "next.config.ts",
    "components.json",
    "postcss.config.mjs",
    README_PATH,
    ".gitignore",
    "app/",
    "components/",
    "hooks/",
    "lib/",
    "public/",
]


# =============================================================================
# TYPES
# =============================================================================


class SyncAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    NO_CHANGES = "no-changes"
    # remote existed but had no history to adopt, so it was overwritten
    SYNCED = "synced"


@dataclass
class SyncRequest:
    """Input of one synchronization"""

    project_id: str
    files: Dict[str, str]
    sandbox_url: str
    title: str
    fragment_id: Optional[str] = None

    @property
    def repository_name(self) -> str:
        return repository_name_for(self.project_id)


@dataclass
class SyncResult:
    success: bool
    project_id: str
    files_count: int
    repo_url: Optional[str] = None
    action: Optional[SyncAction] = None
    commit_sha: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, request: SyncRequest, error: str, error_type: str = "unknown") -> "SyncResult":
        return cls(
            success=False,
            project_id=request.project_id,
            files_count=len(request.files),
            error=error,
            error_type=error_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire form returned from workflow steps"""
        if not self.success:
            return {
                "success": False,
                "error": self.error,
                "errorType": self.error_type,
                "projectId": self.project_id,
                "filesCount": self.files_count,
            }
        return {
            "success": True,
            "repoUrl": self.repo_url,
            "action": self.action.value if self.action else None,
            "commitSha": self.commit_sha,
            "projectId": self.project_id,
            "filesCount": self.files_count,
        }


def build_readme(request: SyncRequest) -> str:
    """
    README committed alongside the project files.

    Deterministic for a given request so that re-syncing unchanged files
    yields an identical tree.
    """
    file_list = "\n".join(f"- {path}" for path in sorted(request.files))
    return (
        f"# {request.title or 'Vibe Project'}\n"
        f"\n"
        f"This project was auto-generated from Vibe.\n"
        f"\n"
        f"**Project ID:** {request.project_id}\n"
        f"**Sandbox URL:** {request.sandbox_url}\n"
        f"\n"
        f"## Files\n"
        f"\n"
        f"{file_list}\n"
    )


def commit_message(request: SyncRequest, now: Optional[datetime] = None) -> str:
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    return f"Auto-sync from Vibe Project: {request.title} - {timestamp}"


# =============================================================================
# API STRATEGY
# =============================================================================


class ApiSyncStrategy:
    """Commit through the GitHub git database API"""

    name = "api"

    def __init__(
        self,
        github: GitHubClient,
        owner: str,
        branch: str = "main",
        is_org: bool = True,
        provision_delay: float = 1.0,
    ):
        self.github = github
        self.owner = owner
        self.branch = branch
        self.is_org = is_org
        self.provision_delay = provision_delay

    async def _ensure_repository(self, repo_name: str) -> bool:
        """Create the repository if missing. Returns True when created here."""
        existing = await self.github.get_repository(self.owner, repo_name)
        if existing is not None:
            logger.info(f"Repository {self.owner}/{repo_name} exists, updating")
            return False

        try:
            await self.github.create_repository(
                self.owner, repo_name, auto_init=True, is_org=self.is_org
            )
        except GitHubAPIError as e:
            if e.is_already_exists:
                # Someone else created it between the lookup and the create
                logger.info(f"Repository {self.owner}/{repo_name} created concurrently")
                return False
            raise

        # auto_init needs a moment before the default branch is readable
        await asyncio.sleep(self.provision_delay)
        return True

    async def _create_blobs(self, repo_name: str, files: Dict[str, str]) -> List[Dict[str, Any]]:
        paths = list(files)
        shas = await asyncio.gather(
            *(self.github.create_blob(self.owner, repo_name, files[path]) for path in paths)
        )
        return [
            {"path": path, "mode": BLOB_MODE, "type": "blob", "sha": sha}
            for path, sha in zip(paths, shas)
        ]

    async def _stale_entries(
        self, repo_name: str, base_tree_sha: str, keep: Dict[str, str]
    ) -> List[Dict[str, Any]]:
        """Deletion entries for files the new file set no longer contains"""
        tree = await self.github.get_tree(self.owner, repo_name, base_tree_sha, recursive=True)
        stale = sorted(
            entry["path"]
            for entry in tree.get("tree", [])
            if entry.get("type") == "blob" and entry["path"] not in keep
        )
        return [{"path": path, "mode": BLOB_MODE, "type": "blob", "sha": None} for path in stale]

    async def sync(self, request: SyncRequest, repo_name: str) -> SyncResult:
        created = await self._ensure_repository(repo_name)

        parent_sha = await self.github.get_ref(self.owner, repo_name, self.branch)
        parent = await self.github.get_commit(self.owner, repo_name, parent_sha)
        base_tree_sha = parent["tree"]["sha"]

        files = dict(request.files)
        files[README_PATH] = build_readme(request)

        entries = await self._create_blobs(repo_name, files)
        entries += await self._stale_entries(repo_name, base_tree_sha, files)
        tree_sha = await self.github.create_tree(
            self.owner, repo_name, entries, base_tree=base_tree_sha
        )

        repo_url = self.github.repository_url(self.owner, repo_name)
        if tree_sha == base_tree_sha:
            logger.info(f"No changes for {repo_name}, tip stays at {parent_sha}")
            return SyncResult(
                success=True,
                project_id=request.project_id,
                files_count=len(request.files),
                repo_url=repo_url,
                action=SyncAction.NO_CHANGES,
                commit_sha=parent_sha,
            )

        commit_sha = await self.github.create_commit(
            self.owner,
            repo_name,
            message=commit_message(request),
            tree=tree_sha,
            parents=[parent_sha],
        )
        await self.github.update_ref(self.owner, repo_name, self.branch, commit_sha, force=True)
        logger.info(f"Committed {len(files)} files to {repo_name}: {commit_sha}")

        return SyncResult(
            success=True,
            project_id=request.project_id,
            files_count=len(request.files),
            repo_url=repo_url,
            action=SyncAction.CREATED if created else SyncAction.UPDATED,
            commit_sha=commit_sha,
            details={"blobs": len(entries), "parent": parent_sha},
        )


# =============================================================================
# SHELL STRATEGY
# =============================================================================


class ShellSyncStrategy:
    """Commit and push with git inside the project's sandbox"""

    name = "shell"

    def __init__(self, github: GitHubClient, sandbox_manager: Any, owner: str, settings: Any):
        self.github = github
        self.sandbox_manager = sandbox_manager
        self.owner = owner
        self.settings = settings
        self.branch = settings.GITHUB_DEFAULT_BRANCH

    async def _configure_identity(self, runner: SandboxCommandRunner, global_scope: bool) -> None:
        scope = "--global " if global_scope else ""
        name = shlex.quote(self.settings.GIT_AUTHOR_NAME)
        email = shlex.quote(self.settings.GIT_AUTHOR_EMAIL)
        await runner.run_checked(f"git config {scope}user.name {name}", description="git config user.name")
        await runner.run_checked(f"git config {scope}user.email {email}", description="git config user.email")

    async def _read_head(self, runner: SandboxCommandRunner) -> Optional[str]:
        head = await runner.run("git rev-parse HEAD")
        return head.stdout.strip() if head.success and head.stdout.strip() else None

    async def _adopt_remote_history(self, runner: SandboxCommandRunner, clone_url: str, repo_name: str) -> bool:
        """
        Put the remote's history under the current working tree.

        Returns False when the remote has no commits yet.
        """
        scratch = shlex.quote(f"/tmp/{repo_name}-history")
        await runner.run_checked(
            f"rm -rf {scratch} && git clone --no-checkout {shlex.quote(clone_url)} {scratch}",
            timeout_ms=self.settings.CLONE_TIMEOUT_MS,
            description="git clone",
        )
        await runner.run_checked(f"mv {scratch}/.git .git && rm -rf {scratch}", description="Adopting cloned history")

        # Mixed reset: index follows the remote tip, working tree stays as is
        reset = await runner.run("git reset -q")
        if reset.failed:
            logger.warning(f"Remote {repo_name} has no commits to adopt: {reset.failure_reason()}")
            return False
        return True

    async def _create_remote(self, repo_name: str) -> None:
        try:
            await self.github.create_repository(
                self.owner, repo_name, auto_init=False, is_org=self.settings.GITHUB_OWNER_IS_ORG
            )
        except GitHubAPIError as e:
            if not e.is_already_exists:
                raise
            logger.info(f"Repository {repo_name} already exists, updating")

    def _stage_attempts(self) -> List[CommandAttempt]:
        timeout = self.settings.GIT_ADD_TIMEOUT_MS
        return [
            CommandAttempt("explicit project paths", f"git add {' '.join(PROJECT_PATHS)}", timeout),
            CommandAttempt("add everything", "git add .", timeout),
            CommandAttempt("force-stage, skipping unreadable files", "git add --all --ignore-errors", timeout),
        ]

    def _push_attempts(self, forced: bool) -> List[CommandAttempt]:
        timeout = self.settings.PUSH_TIMEOUT_MS
        branch = shlex.quote(self.branch)
        if not forced:
            return [
                CommandAttempt("push with upstream", f"git push -u origin {branch}", timeout),
                CommandAttempt("push", f"git push origin {branch}", timeout),
            ]
        return [
            CommandAttempt("force-with-lease", f"git push -u origin {branch} --force-with-lease", timeout),
            CommandAttempt("force", f"git push -u origin {branch} --force", timeout),
            CommandAttempt("force without upstream", f"git push origin {branch} --force", timeout),
        ]

    async def _commit(self, runner: SandboxCommandRunner, request: SyncRequest) -> None:
        command = f"git commit -m {shlex.quote(commit_message(request))}"
        result = await runner.run(command)
        if result.success:
            return

        logger.warning("Commit failed, re-applying local identity and retrying")
        await self._configure_identity(runner, global_scope=False)
        await runner.run_checked(command, description="git commit")

    async def sync(self, request: SyncRequest, repo_name: str) -> SyncResult:
        sandbox_id = require_sandbox_id(request.sandbox_url)
        sandbox = await self.sandbox_manager.connect(sandbox_id)

        runner = SandboxCommandRunner(
            sandbox,
            cwd=self.settings.SANDBOX_WORKDIR,
            secrets=[self.github.token],
        )
        clone_url = self.github.authenticated_clone_url(self.owner, repo_name)

        await ensure_git(runner, self.settings.GIT_INSTALL_TIMEOUT_MS)
        await runner.run(f"rm -f .git/index.lock {shlex.quote(f'.git/refs/heads/{self.branch}.lock')}")
        await self._configure_identity(runner, global_scope=True)

        if (await runner.run("test -d .git")).success:
            logger.info("Resetting existing local repository")
            await runner.run_checked("rm -rf .git", description="Removing local .git")

        remote_exists = await self.github.get_repository(self.owner, repo_name) is not None
        history_preserved = False
        if remote_exists:
            history_preserved = await self._adopt_remote_history(runner, clone_url, repo_name)
        if not history_preserved:
            if remote_exists:
                await runner.run_checked("rm -rf .git", description="Discarding empty clone")
            branch = shlex.quote(self.branch)
            head_ref = shlex.quote(f"refs/heads/{self.branch}")
            init = await runner.run_fallbacks([
                CommandAttempt("init on branch", f"git init -b {branch}"),
                CommandAttempt("init then rename", f"git init && git symbolic-ref HEAD {head_ref}"),
            ])
            if not init.succeeded:
                raise ToolingError(f"git init failed: {init.last_error}")
            if not remote_exists:
                await self._create_remote(repo_name)

        await self._configure_identity(runner, global_scope=False)
        await runner.write_file(".gitignore", "\n".join(GITIGNORE_ENTRIES) + "\n")
        await runner.write_file(README_PATH, build_readme(request))

        staged = await runner.run_fallbacks(self._stage_attempts())
        if not staged.succeeded:
            raise ToolingError(f"git add failed after all fallbacks: {staged.last_error}")

        repo_url = self.github.repository_url(self.owner, repo_name)
        status = await runner.run_checked("git status --porcelain", description="git status")
        if not status.stdout.strip():
            head = await self._read_head(runner)
            logger.info(f"No changes to commit for {repo_name} (HEAD {head})")
            return SyncResult(
                success=True,
                project_id=request.project_id,
                files_count=len(request.files),
                repo_url=repo_url,
                action=SyncAction.NO_CHANGES,
                commit_sha=head,
            )

        await self._commit(runner, request)
        remote = shlex.quote(clone_url)
        await runner.run_checked(
            f"git remote add origin {remote} || git remote set-url origin {remote}",
            description="git remote",
        )

        pushed = await runner.run_fallbacks(self._push_attempts(forced=not history_preserved))
        if not pushed.succeeded:
            raise ToolingError(f"All pushes failed. Last error: {pushed.last_error}")

        head = await self._read_head(runner)
        if not head:
            raise ToolingError("Could not read HEAD after push")

        if not remote_exists:
            action = SyncAction.CREATED
        elif history_preserved:
            action = SyncAction.UPDATED
        else:
            action = SyncAction.SYNCED

        logger.info(f"Pushed {repo_name} ({action.value}): {head}")
        return SyncResult(
            success=True,
            project_id=request.project_id,
            files_count=len(request.files),
            repo_url=repo_url,
            action=action,
            commit_sha=head,
            details={"push": pushed.winner.label, "staged": staged.winner.label},
        )


# =============================================================================
# SYNCHRONIZER
# =============================================================================


class RepositorySynchronizer:
    def __init__(self, strategy: Any):
        self.strategy = strategy

    async def synchronize(self, request: SyncRequest) -> SyncResult:
        """
        Produce one commit holding the request's file set plus a README.

        Never raises: any failure is returned as a SyncResult with
        success=False. Partial work (e.g. a commit whose push failed) is
        left in place.
        """
        if not is_valid_project_id(request.project_id):
            logger.error(f"Refusing to sync invalid project id {request.project_id!r}")
            return SyncResult.failure(
                request, f"Invalid project id {request.project_id!r}", "invalid_project_id"
            )

        try:
            repo_name = request.repository_name
            logger.info(
                f"Syncing project {request.project_id} to {repo_name} "
                f"({len(request.files)} files, strategy={self.strategy.name})"
            )
            return await self.strategy.sync(request, repo_name)
        except BackupError as e:
            logger.error(f"GitHub sync failed for {request.project_id}: {e.message}")
            return SyncResult.failure(request, e.message, e.error_type)
        except Exception as e:
            logger.error(f"GitHub sync failed for {request.project_id}: {e}")
            return SyncResult.failure(request, str(e) or type(e).__name__, "unexpected_error")


def create_synchronizer(
    settings: Any,
    github: Optional[GitHubClient] = None,
    sandbox_manager: Any = None,
) -> RepositorySynchronizer:
    """
    Factory function to create a RepositorySynchronizer.

    Args:
        settings: AppSettings
        github: Client to use; built from settings when omitted
        sandbox_manager: Needed by the shell strategy; built from settings when omitted

    Returns:
        Synchronizer using the strategy named by SYNC_STRATEGY
    """
    github = github or GitHubClient(
        token=settings.require_github_token(), api_url=settings.GITHUB_API_URL
    )

    if settings.SYNC_STRATEGY == "shell":
        if sandbox_manager is None:
            from sandbox_manager import create_sandbox_manager

            sandbox_manager = create_sandbox_manager(settings)
        strategy = ShellSyncStrategy(github, sandbox_manager, settings.GITHUB_OWNER, settings)
    else:
        strategy = ApiSyncStrategy(
            github,
            owner=settings.GITHUB_OWNER,
            branch=settings.GITHUB_DEFAULT_BRANCH,
            is_org=settings.GITHUB_OWNER_IS_ORG,
            provision_delay=settings.REPO_PROVISION_DELAY,
        )
    return RepositorySynchronizer(strategy)
