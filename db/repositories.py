# db/repositories.py
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Dict

from .models import Project, Message, Fragment, MessageRole, MessageType


class ProjectRepository:
    """Repository for project operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create_project(
        self,
        project_id: str,
        project_name: str = "Default Project"
    ) -> Project:
        """Get existing project or create new one"""
        stmt = select(Project).where(Project.id == project_id)
        result = await self.session.execute(stmt)
        project = result.scalar_one_or_none()

        if not project:
            project = Project(
                id=project_id,
                name=project_name
            )
            self.session.add(project)
            await self.session.flush()

        return project


class MessageRepository:
    """Repository for chat message operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_message(
        self,
        project_id: str,
        content: str,
        role: MessageRole,
        type: MessageType = MessageType.RESULT
    ) -> Message:
        message = Message(
            project_id=project_id,
            content=content,
            role=role,
            type=type
        )
        self.session.add(message)
        await self.session.flush()
        return message


class FragmentRepository:
    """Repository for fragment operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_fragment(
        self,
        message_id: str,
        title: str,
        files: Dict[str, str],
        sandbox_url: str,
        repository_name: Optional[str] = None
    ) -> Fragment:
        """Create the fragment of an assistant result message"""
        fragment = Fragment(
            message_id=message_id,
            title=title,
            files=dict(files),
            sandbox_url=sandbox_url,
            repository_name=repository_name
        )
        self.session.add(fragment)
        await self.session.flush()
        return fragment

    async def get_fragment(self, fragment_id: str) -> Optional[Fragment]:
        stmt = select(Fragment).where(Fragment.id == fragment_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def bind_commit_sha(
        self,
        fragment_id: str,
        repository_name: str,
        commit_sha: str
    ) -> bool:
        """
        Stamp one fragment with the commit that backed it up.

        No-op if the fragment already has a commit_sha.

        Returns:
            True if the row was updated
        """
        stmt = (
            update(Fragment)
            .where(Fragment.id == fragment_id, Fragment.commit_sha.is_(None))
            .values(commit_sha=commit_sha, repository_name=repository_name)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def stamp_repository_commit(
        self,
        repository_name: str,
        commit_sha: str
    ) -> int:
        """
        Stamp every fragment of a repository that has no commit yet.

        Kept for sync events that do not say which fragment triggered them;
        this can bind the commit to an older fragment of the same project.

        Returns:
            Number of rows updated
        """
        stmt = (
            update(Fragment)
            .where(
                Fragment.repository_name == repository_name,
                Fragment.commit_sha.is_(None)
            )
            .values(commit_sha=commit_sha)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0
