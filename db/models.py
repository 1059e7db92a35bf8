# db/models.py
from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Text, DateTime, Enum, ForeignKey, Index, JSON
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func
import uuid
import enum


class Base(AsyncAttrs, DeclarativeBase):
    """Base model for all tables"""
    pass


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageType(str, enum.Enum):
    RESULT = "result"
    ERROR = "error"


# =============================================================================
# PROJECT MODEL
# =============================================================================

class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    messages: Mapped[list["Message"]] = relationship(back_populates="project", cascade="all, delete-orphan")


# =============================================================================
# MESSAGE MODEL
# =============================================================================

class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=generate_uuid)
    project_id: Mapped[str] = mapped_column(String, ForeignKey("projects.id", ondelete="CASCADE"), index=True)

    content: Mapped[str] = mapped_column(Text)
    role: Mapped[MessageRole] = mapped_column(Enum(MessageRole))
    type: Mapped[MessageType] = mapped_column(Enum(MessageType))

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    project: Mapped["Project"] = relationship(back_populates="messages")
    fragment: Mapped[Optional["Fragment"]] = relationship(
        back_populates="message", cascade="all, delete-orphan", uselist=False
    )


# =============================================================================
# FRAGMENT MODEL
# =============================================================================

class Fragment(Base):
    __tablename__ = "fragments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=generate_uuid)
    message_id: Mapped[str] = mapped_column(
        String, ForeignKey("messages.id", ondelete="CASCADE"), unique=True
    )

    # Generated code
    sandbox_url: Mapped[str] = mapped_column(String(500))
    title: Mapped[str] = mapped_column(String(255))
    files: Mapped[dict] = mapped_column(JSON, default=dict)

    # GitHub backup - commit_sha is written once, after a successful push
    repository_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    commit_sha: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    message: Mapped["Message"] = relationship(back_populates="fragment")

    __table_args__ = (
        Index("ix_fragments_repository_commit", "repository_name", "commit_sha"),
    )


# =============================================================================
# EXPORTS - Ensure all models are registered for Alembic autogenerate
# =============================================================================

__all__ = [
    "Base",
    "Project",
    "Message",
    "Fragment",
    "MessageRole",
    "MessageType",
]
