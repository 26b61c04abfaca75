"""
SQLAlchemy ORM models for TiDB.

These tables are owned by collaborator services; the discovery engine only
reads them and writes back the two score columns on `content`.

Tables:
  users         — profiles + interest tags
  connections   — social graph edges (from_user → to_user, with status)
  content       — content metadata + popularity / trending scores
  interactions  — user × content engagement events (append-only)
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from discovery_service.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    avatar: Mapped[Optional[str]] = mapped_column(String(500))
    bio: Mapped[Optional[str]] = mapped_column(Text)
    # Serialised list[str] of interest tags.
    interests: Mapped[Optional[list]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Connection(Base):
    __tablename__ = "connections"

    connection_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    from_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    to_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_connections_from", "from_user_id", "status"),
        Index("idx_connections_to", "to_user_id", "status"),
    )


class Content(Base):
    __tablename__ = "content"

    content_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    creator_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    title: Mapped[Optional[str]] = mapped_column(String(500))
    description: Mapped[Optional[str]] = mapped_column(Text)
    tags: Mapped[Optional[list]] = mapped_column(JSON)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    content_type: Mapped[Optional[str]] = mapped_column(String(50))
    popularity_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    trending_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    # Written by the moderation/quality collaborator when available.
    quality_score: Mapped[Optional[float]] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    creator = relationship("User", lazy="joined")

    __table_args__ = (
        Index("idx_content_creator", "creator_id"),
        Index("idx_content_popularity", "popularity_score"),
        Index("idx_content_trending", "trending_score"),
    )


class Interaction(Base):
    __tablename__ = "interactions"

    interaction_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.user_id"), nullable=False
    )
    content_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("content.content_id"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_interactions_user", "user_id"),
        Index("idx_interactions_content", "content_id"),
        Index("idx_interactions_created", "created_at"),
    )
