"""
GitHub REST client for project backups.

Only the handful of endpoints the synchronizer needs: repository lookup and
creation plus the low-level git database (blobs, trees, commits, refs), so a
commit can be built without a git binary anywhere.
"""

import logging
from typing import Any, Dict, List, Optional

import aiohttp

from errors import RemoteStateError
from utils.sandbox_urls import authenticated_clone_url, repository_url

logger = logging.getLogger(__name__)


class GitHubAPIError(RemoteStateError):
    """Non-2xx answer from the GitHub API"""

    def __init__(self, status: int, message: str, method: str = "", path: str = ""):
        super().__init__(
            f"GitHub API {method} {path} failed with {status}: {message}",
            metadata={"status": status, "method": method, "path": path},
            retry_possible=status >= 500 or status == 429,
        )
        self.status = status

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_already_exists(self) -> bool:
        return self.status == 422 and "already exists" in self.message.lower()


class GitHubClient:
    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = 30.0,
    ):
        """
        Args:
            token: Personal access or installation token with repo scope
            api_url: Base URL of the REST API
            session: Shared aiohttp session; one is created lazily otherwise
            request_timeout: Total timeout per request in seconds
        """
        if not token:
            raise ValueError("GitHub token is required")
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.request_timeout = request_timeout
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        session = self._get_session()
        url = f"{self.api_url}{path}"

        async with session.request(method, url, json=json, params=params) as response:
            if response.status >= 400:
                try:
                    body = await response.json(content_type=None)
                    message = body.get("message", "") if isinstance(body, dict) else str(body)
                    errors = body.get("errors") if isinstance(body, dict) else None
                    if errors:
                        message = f"{message} {errors}"
                except (aiohttp.ContentTypeError, ValueError):
                    message = await response.text()
                raise GitHubAPIError(response.status, message, method=method, path=path)

            if response.status == 204:
                return None
            return await response.json(content_type=None)

    # =========================================================================
    # REPOSITORIES
    # =========================================================================

    async def get_repository(self, owner: str, repo: str) -> Optional[Dict[str, Any]]:
        """Return repository metadata, or None when it does not exist"""
        try:
            return await self._request("GET", f"/repos/{owner}/{repo}")
        except GitHubAPIError as e:
            if e.is_not_found:
                return None
            raise

    async def create_repository(
        self,
        owner: str,
        name: str,
        description: str = "Auto-generated Vibe Project",
        private: bool = True,
        auto_init: bool = True,
        is_org: bool = True,
    ) -> Dict[str, Any]:
        path = f"/orgs/{owner}/repos" if is_org else "/user/repos"
        logger.info(f"Creating repository {owner}/{name} (auto_init={auto_init})")
        return await self._request(
            "POST",
            path,
            json={
                "name": name,
                "description": description,
                "private": private,
                "auto_init": auto_init,
            },
        )

    # =========================================================================
    # GIT DATABASE
    # =========================================================================

    async def get_ref(self, owner: str, repo: str, branch: str) -> str:
        """SHA the branch currently points at"""
        data = await self._request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}")
        return data["object"]["sha"]

    async def get_commit(self, owner: str, repo: str, commit_sha: str) -> Dict[str, Any]:
        return await self._request("GET", f"/repos/{owner}/{repo}/git/commits/{commit_sha}")

    async def get_tree(
        self, owner: str, repo: str, tree_sha: str, recursive: bool = True
    ) -> Dict[str, Any]:
        params = {"recursive": "1"} if recursive else None
        return await self._request(
            "GET", f"/repos/{owner}/{repo}/git/trees/{tree_sha}", params=params
        )

    async def create_blob(self, owner: str, repo: str, content: str) -> str:
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/blobs",
            json={"content": content, "encoding": "utf-8"},
        )
        return data["sha"]

    async def create_tree(
        self,
        owner: str,
        repo: str,
        entries: List[Dict[str, Any]],
        base_tree: Optional[str] = None,
    ) -> str:
        payload: Dict[str, Any] = {"tree": entries}
        if base_tree:
            payload["base_tree"] = base_tree
        data = await self._request("POST", f"/repos/{owner}/{repo}/git/trees", json=payload)
        return data["sha"]

    async def create_commit(
        self, owner: str, repo: str, message: str, tree: str, parents: List[str]
    ) -> str:
        data = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            json={"message": message, "tree": tree, "parents": parents},
        )
        return data["sha"]

    async def update_ref(
        self, owner: str, repo: str, branch: str, sha: str, force: bool = True
    ) -> None:
        await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/heads/{branch}",
            json={"sha": sha, "force": force},
        )

    # =========================================================================
    # URLS
    # =========================================================================

    def repository_url(self, owner: str, name: str) -> str:
        return repository_url(owner, name)

    def authenticated_clone_url(self, owner: str, name: str) -> str:
        return authenticated_clone_url(owner, name, self.token)


def create_github_client(settings) -> GitHubClient:
    """Factory function to build a GitHubClient from AppSettings"""
    return GitHubClient(
        token=settings.require_github_token(),
        api_url=settings.GITHUB_API_URL,
    )
