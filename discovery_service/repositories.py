"""
Read-mostly repository interfaces the discovery engine depends on.

The engine only ever talks to these abstract classes, which keeps it
storage-agnostic: production wires in the SQLAlchemy implementations from
`sql_repositories`, tests wire in in-memory ones.

Implementations raise DataAccessError for any store failure.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from discovery_service.schemas import Connection, ContentItem, Interaction, UserProfile

ACCEPTED = "accepted"


class ContentRepository(ABC):
    @abstractmethod
    async def get_many(self, content_ids: Iterable[str]) -> list[ContentItem]:
        """Items for the given ids, in no particular order; unknown ids are skipped."""

    @abstractmethod
    async def popular(
        self, limit: int, exclude_ids: Iterable[str] = ()
    ) -> list[ContentItem]:
        """Highest popularity_score first."""

    @abstractmethod
    async def trending(
        self, limit: int, creator_ids: Optional[Iterable[str]] = None
    ) -> list[ContentItem]:
        """Items with trending_score > 0, highest first, optionally by creator."""

    @abstractmethod
    async def trending_ids(self) -> set[str]:
        """Ids of every item whose trending_score is currently > 0."""

    @abstractmethod
    async def matching_features(
        self,
        *,
        tags: Iterable[str] = (),
        categories: Iterable[str] = (),
        creator_ids: Iterable[str] = (),
        content_types: Iterable[str] = (),
        exclude_ids: Iterable[str] = (),
        limit: int,
    ) -> list[ContentItem]:
        """Items matching ANY of the given features, minus `exclude_ids`."""

    @abstractmethod
    async def all_content(self) -> list[ContentItem]:
        ...

    @abstractmethod
    async def set_popularity_score(self, content_id: str, score: float) -> None:
        ...

    @abstractmethod
    async def set_trending_score(self, content_id: str, score: float) -> None:
        ...


class InteractionRepository(ABC):
    @abstractmethod
    async def by_user(self, user_id: str) -> list[Interaction]:
        ...

    @abstractmethod
    async def on_content(
        self, content_ids: Iterable[str], exclude_user_id: Optional[str] = None
    ) -> list[Interaction]:
        """Interactions touching any of `content_ids`."""

    @abstractmethod
    async def by_users(
        self, user_ids: Iterable[str], exclude_content_ids: Iterable[str] = ()
    ) -> list[Interaction]:
        """Interactions made by any of `user_ids`, newest first."""

    @abstractmethod
    async def for_content(self, content_id: str) -> list[Interaction]:
        ...

    @abstractmethod
    async def since(self, since: datetime) -> list[Interaction]:
        """Every interaction created at or after `since`."""


class ConnectionRepository(ABC):
    @abstractmethod
    async def edges_of(
        self, user_ids: Iterable[str], status: Optional[str] = ACCEPTED
    ) -> list[Connection]:
        """Edges touching any of `user_ids`; `status=None` means any status."""

    async def connections_of(
        self, user_id: str, status: Optional[str] = ACCEPTED
    ) -> list[str]:
        """Ids on the other end of `user_id`'s edges, de-duplicated, in edge order."""
        seen: dict[str, None] = {}
        for edge in await self.edges_of([user_id], status=status):
            seen.setdefault(edge.other(user_id), None)
        return list(seen)


class UserRepository(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def get_many(self, user_ids: Iterable[str]) -> list[UserProfile]:
        ...

    @abstractmethod
    async def sharing_interests(
        self, interests: Iterable[str], exclude_ids: Iterable[str], limit: int
    ) -> list[UserProfile]:
        """Users holding at least one of `interests`."""

    @abstractmethod
    async def sample(self, exclude_ids: Iterable[str], limit: int) -> list[UserProfile]:
        """An unscored random sample of users."""
