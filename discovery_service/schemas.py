"""
Pydantic schemas shared by the engine and the API layer.
Kept separate from ORM models so the engine stays storage-agnostic: the
repositories translate rows into these types and the engine never sees a
SQLAlchemy object.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class InteractionType(str, Enum):
    VIEW = "view"
    LIKE = "like"
    COMMENT = "comment"
    SHARE = "share"
    SAVE = "save"


# ──────────────────────────── Users ───────────────────────────────────────

class CreatorSummary(BaseModel):
    id: str
    username: Optional[str] = None
    name: Optional[str] = None
    avatar: Optional[str] = None

    class Config:
        from_attributes = True


class UserProfile(BaseModel):
    id: str
    username: Optional[str] = None
    name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    interests: list[str] = Field(default_factory=list)


class UserSuggestion(BaseModel):
    """A "people you may know" entry."""
    id: str
    username: Optional[str] = None
    name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    # Set on the 2nd-degree path: number of shared connections
    connection_strength: Optional[int] = None
    # Set on the interest fallback path: fraction of the caller's interests shared
    interest_overlap: Optional[float] = None


# ──────────────────────────── Graph ───────────────────────────────────────

class Connection(BaseModel):
    from_user_id: str
    to_user_id: str
    status: str = "accepted"

    def other(self, user_id: str) -> str:
        """Return the endpoint that is not `user_id`."""
        return self.to_user_id if self.from_user_id == user_id else self.from_user_id


# ──────────────────────────── Content ─────────────────────────────────────

class ContentItem(BaseModel):
    id: str
    creator_id: str
    creator: Optional[CreatorSummary] = None
    title: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    category: Optional[str] = None
    content_type: Optional[str] = None
    popularity_score: float = 0.0
    trending_score: float = 0.0
    quality_score: Optional[float] = None
    created_at: datetime


class Interaction(BaseModel):
    user_id: str
    content_id: str
    # Kept as a plain string: unknown types are tolerated and weighted as "other"
    type: str
    created_at: datetime


# ──────────────────────────── Experiments ─────────────────────────────────

class VariantMetrics(BaseModel):
    exposures: int = 0
    conversions: dict[str, int] = Field(default_factory=dict)
    conversion_rates: dict[str, float] = Field(default_factory=dict)


class ExperimentMetrics(BaseModel):
    experiment_name: str
    variants: list[str]
    metrics: dict[str, VariantMetrics]
    start_date: str = "unknown"
