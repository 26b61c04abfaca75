"""
SQLAlchemy implementations of the discovery repositories (TiDB / MySQL).

Each method opens its own short-lived AsyncSession so request handlers and
the scheduled jobs never share a session. Any SQLAlchemyError is re-raised
as DataAccessError, which the engine turns into a fallback.

Tag / interest sets are JSON arrays; membership uses JSON_CONTAINS, which
TiDB supports natively.
"""
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from discovery_service.errors import DataAccessError
from discovery_service.models import Connection as ConnectionRow
from discovery_service.models import Content, Interaction as InteractionRow, User
from discovery_service.repositories import (
    ACCEPTED,
    ConnectionRepository,
    ContentRepository,
    InteractionRepository,
    UserRepository,
)
from discovery_service.schemas import (
    Connection,
    ContentItem,
    CreatorSummary,
    Interaction,
    UserProfile,
)

logger = logging.getLogger(__name__)


def _naive_utc(ts: datetime) -> datetime:
    # DateTime columns are naive UTC
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def _to_content(row: Content) -> ContentItem:
    creator = None
    if row.creator is not None:
        creator = CreatorSummary(
            id=row.creator.user_id,
            username=row.creator.username,
            name=row.creator.name,
            avatar=row.creator.avatar,
        )
    return ContentItem(
        id=row.content_id,
        creator_id=row.creator_id,
        creator=creator,
        title=row.title,
        description=row.description,
        tags=list(row.tags or []),
        category=row.category,
        content_type=row.content_type,
        popularity_score=row.popularity_score or 0.0,
        trending_score=row.trending_score or 0.0,
        quality_score=row.quality_score,
        created_at=row.created_at,
    )


def _to_interaction(row: InteractionRow) -> Interaction:
    return Interaction(
        user_id=row.user_id,
        content_id=row.content_id,
        type=row.type,
        created_at=row.created_at,
    )


def _to_user(row: User) -> UserProfile:
    return UserProfile(
        id=row.user_id,
        username=row.username,
        name=row.name,
        avatar=row.avatar,
        bio=row.bio,
        interests=list(row.interests or []),
    )


class _SqlRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise DataAccessError(f"{operation} failed: {exc}") from exc


class SqlContentRepository(_SqlRepository, ContentRepository):
    async def get_many(self, content_ids: Iterable[str]) -> list[ContentItem]:
        ids = list(content_ids)
        if not ids:
            return []
        async with self._session("content.get_many") as db:
            rows = await db.execute(select(Content).where(Content.content_id.in_(ids)))
            return [_to_content(c) for c in rows.scalars().all()]

    async def popular(self, limit: int, exclude_ids: Iterable[str] = ()) -> list[ContentItem]:
        query = select(Content).order_by(Content.popularity_score.desc()).limit(limit)
        excluded = list(exclude_ids)
        if excluded:
            query = query.where(Content.content_id.not_in(excluded))
        async with self._session("content.popular") as db:
            rows = await db.execute(query)
            return [_to_content(c) for c in rows.scalars().all()]

    async def trending(
        self, limit: int, creator_ids: Optional[Iterable[str]] = None
    ) -> list[ContentItem]:
        query = (
            select(Content)
            .where(Content.trending_score > 0)
            .order_by(Content.trending_score.desc())
            .limit(limit)
        )
        if creator_ids is not None:
            query = query.where(Content.creator_id.in_(list(creator_ids)))
        async with self._session("content.trending") as db:
            rows = await db.execute(query)
            return [_to_content(c) for c in rows.scalars().all()]

    async def trending_ids(self) -> set[str]:
        async with self._session("content.trending_ids") as db:
            rows = await db.execute(
                select(Content.content_id).where(Content.trending_score > 0)
            )
            return {r[0] for r in rows.all()}

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
        conditions = [func.json_contains(Content.tags, json.dumps(tag)) for tag in tags]
        categories, creator_ids, content_types = (
            list(categories), list(creator_ids), list(content_types)
        )
        if categories:
            conditions.append(Content.category.in_(categories))
        if creator_ids:
            conditions.append(Content.creator_id.in_(creator_ids))
        if content_types:
            conditions.append(Content.content_type.in_(content_types))
        if not conditions:
            return []

        query = select(Content).where(or_(*conditions)).limit(limit)
        excluded = list(exclude_ids)
        if excluded:
            query = query.where(Content.content_id.not_in(excluded))
        async with self._session("content.matching_features") as db:
            rows = await db.execute(query)
            return [_to_content(c) for c in rows.scalars().all()]

    async def all_content(self) -> list[ContentItem]:
        async with self._session("content.all") as db:
            rows = await db.execute(select(Content))
            return [_to_content(c) for c in rows.scalars().all()]

    async def set_popularity_score(self, content_id: str, score: float) -> None:
        async with self._session("content.set_popularity_score") as db:
            await db.execute(
                update(Content)
                .where(Content.content_id == content_id)
                .values(popularity_score=score)
            )
            await db.commit()

    async def set_trending_score(self, content_id: str, score: float) -> None:
        async with self._session("content.set_trending_score") as db:
            await db.execute(
                update(Content)
                .where(Content.content_id == content_id)
                .values(trending_score=score)
            )
            await db.commit()


class SqlInteractionRepository(_SqlRepository, InteractionRepository):
    async def by_user(self, user_id: str) -> list[Interaction]:
        async with self._session("interactions.by_user") as db:
            rows = await db.execute(
                select(InteractionRow).where(InteractionRow.user_id == user_id)
            )
            return [_to_interaction(i) for i in rows.scalars().all()]

    async def on_content(
        self, content_ids: Iterable[str], exclude_user_id: Optional[str] = None
    ) -> list[Interaction]:
        ids = list(content_ids)
        if not ids:
            return []
        query = select(InteractionRow).where(InteractionRow.content_id.in_(ids))
        if exclude_user_id is not None:
            query = query.where(InteractionRow.user_id != exclude_user_id)
        async with self._session("interactions.on_content") as db:
            rows = await db.execute(query)
            return [_to_interaction(i) for i in rows.scalars().all()]

    async def by_users(
        self, user_ids: Iterable[str], exclude_content_ids: Iterable[str] = ()
    ) -> list[Interaction]:
        ids = list(user_ids)
        if not ids:
            return []
        query = (
            select(InteractionRow)
            .where(InteractionRow.user_id.in_(ids))
            .order_by(InteractionRow.created_at.desc())
        )
        excluded = list(exclude_content_ids)
        if excluded:
            query = query.where(InteractionRow.content_id.not_in(excluded))
        async with self._session("interactions.by_users") as db:
            rows = await db.execute(query)
            return [_to_interaction(i) for i in rows.scalars().all()]

    async def for_content(self, content_id: str) -> list[Interaction]:
        async with self._session("interactions.for_content") as db:
            rows = await db.execute(
                select(InteractionRow).where(InteractionRow.content_id == content_id)
            )
            return [_to_interaction(i) for i in rows.scalars().all()]

    async def since(self, since: datetime) -> list[Interaction]:
        async with self._session("interactions.since") as db:
            rows = await db.execute(
                select(InteractionRow).where(InteractionRow.created_at >= _naive_utc(since))
            )
            return [_to_interaction(i) for i in rows.scalars().all()]


class SqlConnectionRepository(_SqlRepository, ConnectionRepository):
    async def edges_of(
        self, user_ids: Iterable[str], status: Optional[str] = ACCEPTED
    ) -> list[Connection]:
        ids = list(user_ids)
        if not ids:
            return []
        query = select(ConnectionRow).where(
            or_(ConnectionRow.from_user_id.in_(ids), ConnectionRow.to_user_id.in_(ids))
        )
        if status is not None:
            query = query.where(ConnectionRow.status == status)
        async with self._session("connections.edges_of") as db:
            rows = await db.execute(query)
            return [
                Connection(
                    from_user_id=c.from_user_id, to_user_id=c.to_user_id, status=c.status
                )
                for c in rows.scalars().all()
            ]


class SqlUserRepository(_SqlRepository, UserRepository):
    async def get(self, user_id: str) -> Optional[UserProfile]:
        async with self._session("users.get") as db:
            user = await db.get(User, user_id)
            return _to_user(user) if user else None

    async def get_many(self, user_ids: Iterable[str]) -> list[UserProfile]:
        ids = list(user_ids)
        if not ids:
            return []
        async with self._session("users.get_many") as db:
            rows = await db.execute(select(User).where(User.user_id.in_(ids)))
            return [_to_user(u) for u in rows.scalars().all()]

    async def sharing_interests(
        self, interests: Iterable[str], exclude_ids: Iterable[str], limit: int
    ) -> list[UserProfile]:
        conditions = [
            func.json_contains(User.interests, json.dumps(interest)) for interest in interests
        ]
        if not conditions:
            return []
        query = select(User).where(or_(*conditions)).limit(limit)
        excluded = list(exclude_ids)
        if excluded:
            query = query.where(User.user_id.not_in(excluded))
        async with self._session("users.sharing_interests") as db:
            rows = await db.execute(query)
            return [_to_user(u) for u in rows.scalars().all()]

    async def sample(self, exclude_ids: Iterable[str], limit: int) -> list[UserProfile]:
        query = select(User).order_by(func.rand()).limit(limit)
        excluded = list(exclude_ids)
        if excluded:
            query = query.where(User.user_id.not_in(excluded))
        async with self._session("users.sample") as db:
            rows = await db.execute(query)
            return [_to_user(u) for u in rows.scalars().all()]
