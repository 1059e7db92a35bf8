"""
Database integration for the backup workflows.

FragmentStore is the only thing the workflow steps and the restore
orchestrator know about the database: read a fragment snapshot, record the
commit that backed a fragment up.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .session import get_db_session
from .repositories import FragmentRepository


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FragmentSnapshot:
    """Detached, read-only view of a fragment row"""

    id: str
    title: str
    repository_name: Optional[str]
    commit_sha: Optional[str]
    sandbox_url: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "commitSha": self.commit_sha,
            "repositoryName": self.repository_name,
        }


class FragmentStore:
    def __init__(self, session_scope: Callable = get_db_session):
        """
        Args:
            session_scope: Async context manager factory yielding an
                AsyncSession that commits on exit (get_db_session by default)
        """
        self.session_scope = session_scope

    async def get_fragment(self, fragment_id: str) -> Optional[FragmentSnapshot]:
        async with self.session_scope() as session:
            fragment = await FragmentRepository(session).get_fragment(fragment_id)
            if fragment is None:
                return None
            return FragmentSnapshot(
                id=fragment.id,
                title=fragment.title,
                repository_name=fragment.repository_name,
                commit_sha=fragment.commit_sha,
                sandbox_url=fragment.sandbox_url,
            )

    async def record_commit_sha(
        self,
        repository_name: str,
        commit_sha: str,
        fragment_id: Optional[str] = None,
    ) -> int:
        """
        Persist a backup commit. Rows that already have a commit are never
        touched.

        Args:
            repository_name: Backup repository the commit lives in
            commit_sha: Commit produced by the synchronizer
            fragment_id: Fragment that triggered the sync. When omitted every
                fragment of the repository without a commit is stamped.

        Returns:
            Number of fragments updated
        """
        async with self.session_scope() as session:
            repo = FragmentRepository(session)

            if fragment_id:
                updated = int(await repo.bind_commit_sha(fragment_id, repository_name, commit_sha))
                if not updated:
                    logger.info(
                        f"Fragment {fragment_id} not stamped (missing or already has a commit)"
                    )
                return updated

            logger.warning(
                f"Sync for {repository_name} carried no fragment id, "
                f"stamping all unbound fragments of the repository"
            )
            return await repo.stamp_repository_commit(repository_name, commit_sha)
