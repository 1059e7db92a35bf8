"""
Database package for project, message and fragment metadata.

This package provides:
- Models: Project, Message, Fragment
- Repositories: ProjectRepository, MessageRepository, FragmentRepository
- Integration: FragmentStore used by the backup workflows
- Session management: Database connection and session factory
- Configuration: Database settings
"""

from .models import (
    Base,
    Project,
    Message,
    Fragment,
    MessageRole,
    MessageType,
)

from .session import (
    init_db,
    get_db_session,
    get_session_factory,
    close_db,
)

from .repositories import (
    ProjectRepository,
    MessageRepository,
    FragmentRepository,
)

from .integration import (
    FragmentSnapshot,
    FragmentStore,
)

from .config import (
    get_db_settings,
    DatabaseSettings,
)

__all__ = [
    # Models
    "Base",
    "Project",
    "Message",
    "Fragment",
    "MessageRole",
    "MessageType",

    # Session management
    "init_db",
    "get_db_session",
    "get_session_factory",
    "close_db",

    # Repositories
    "ProjectRepository",
    "MessageRepository",
    "FragmentRepository",

    # Integration
    "FragmentSnapshot",
    "FragmentStore",

    # Configuration
    "get_db_settings",
    "DatabaseSettings",
]
