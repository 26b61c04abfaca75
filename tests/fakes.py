"""
In-memory doubles for the stores the discovery service talks to.

FakeRedis implements the slice of the redis.asyncio API the service uses,
with TTLs driven by a settable clock. The repositories keep plain Python
collections and can be told to fail any operation with DataAccessError.
"""
import fnmatch
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from redis.exceptions import ConnectionError as RedisConnectionError

from discovery_service.errors import DataAccessError
from discovery_service.repositories import (
    ACCEPTED,
    ConnectionRepository,
    ContentRepository,
    InteractionRepository,
    UserRepository,
)
from discovery_service.schemas import Connection, ContentItem, Interaction, UserProfile

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ──────────────────────────── Redis ───────────────────────────────────────

class FakePipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self._redis = redis
        self._ops: list[tuple] = []

    def lpush(self, key, *values):
        self._ops.append(("lpush", key, values))
        return self

    def ltrim(self, key, start, end):
        self._ops.append(("ltrim", key, (start, end)))
        return self

    async def execute(self):
        results = []
        for op, key, args in self._ops:
            results.append(await getattr(self._redis, op)(key, *args))
        self._ops.clear()
        return results


class FakeRedis:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now
        self.fail = False
        self._data: dict[str, object] = {}
        self._expiry: dict[str, datetime] = {}

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    def _live(self, key: str) -> bool:
        expires = self._expiry.get(key)
        if expires is not None and self.now >= expires:
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return key in self._data

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self._data[key] if self._live(key) else None

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and self._live(key):
            return None
        self._data[key] = str(value)
        if ex is not None:
            self._expiry[key] = self.now + timedelta(seconds=ex)
        else:
            self._expiry.pop(key, None)
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self._live(key):
                removed += 1
            self._data.pop(key, None)
            self._expiry.pop(key, None)
        return removed

    async def incr(self, key):
        self._check()
        value = int(self._data[key]) + 1 if self._live(key) else 1
        self._data[key] = str(value)
        return value

    async def lpush(self, key, *values):
        self._check()
        if not self._live(key):
            self._data[key] = []
        items = self._data[key]
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key, start, end):
        self._check()
        if self._live(key):
            self._data[key] = self._data[key][start:end + 1]
        return True

    async def lrange(self, key, start, end):
        self._check()
        if not self._live(key):
            return []
        items = self._data[key]
        return items[start:] if end == -1 else items[start:end + 1]

    async def scan_iter(self, match="*"):
        self._check()
        for key in list(self._data):
            if self._live(key) and fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self):
        return FakePipeline(self)

    async def aclose(self):
        pass

    def keys_matching(self, pattern: str) -> list[str]:
        return sorted(k for k in list(self._data) if self._live(k) and fnmatch.fnmatchcase(k, pattern))


# ──────────────────────────── Repositories ────────────────────────────────

class InMemoryStore:
    """
    Shared backing data. `failing` holds operation names that should raise;
    `failing_writes` holds content ids whose score writes should raise.
    """

    def __init__(self) -> None:
        self.users: dict[str, UserProfile] = {}
        self.content: dict[str, ContentItem] = {}
        self.interactions: list[Interaction] = []
        self.connections: list[Connection] = []
        self.failing: set[str] = set()
        self.failing_writes: set[str] = set()
        self.calls: list[str] = []

    def check(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing or "*" in self.failing:
            raise DataAccessError(f"{operation} failed: simulated outage")

    def check_write(self, operation: str, content_id: str) -> None:
        self.check(operation)
        if content_id in self.failing_writes:
            raise DataAccessError(f"{operation} failed for {content_id}")

    # ── seeding helpers ──────────────────────────────────────────────────

    def add_user(self, user_id: str, interests: Iterable[str] = (), **kwargs) -> UserProfile:
        user = UserProfile(
            id=user_id, username=user_id, name=user_id.title(), interests=list(interests), **kwargs
        )
        self.users[user_id] = user
        return user

    def add_content(
        self,
        content_id: str,
        creator_id: str = "creator",
        *,
        tags: Iterable[str] = (),
        category: Optional[str] = None,
        content_type: Optional[str] = None,
        popularity: float = 0.0,
        trending: float = 0.0,
        quality: Optional[float] = None,
        age_days: float = 0.0,
    ) -> ContentItem:
        item = ContentItem(
            id=content_id,
            creator_id=creator_id,
            title=f"Content {content_id}",
            tags=list(tags),
            category=category,
            content_type=content_type,
            popularity_score=popularity,
            trending_score=trending,
            quality_score=quality,
            created_at=NOW - timedelta(days=age_days),
        )
        self.content[content_id] = item
        return item

    def interact(
        self, user_id: str, content_id: str, type: str = "like", hours_ago: float = 1.0
    ) -> Interaction:
        interaction = Interaction(
            user_id=user_id,
            content_id=content_id,
            type=type,
            created_at=NOW - timedelta(hours=hours_ago),
        )
        self.interactions.append(interaction)
        return interaction

    def connect(self, from_user: str, to_user: str, status: str = ACCEPTED) -> None:
        self.connections.append(
            Connection(from_user_id=from_user, to_user_id=to_user, status=status)
        )


class InMemoryContentRepository(ContentRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get_many(self, content_ids):
        self.store.check("content.get_many")
        return [self.store.content[c] for c in content_ids if c in self.store.content]

    async def popular(self, limit, exclude_ids=()):
        self.store.check("content.popular")
        excluded = set(exclude_ids)
        ranked = sorted(
            (c for c in self.store.content.values() if c.id not in excluded),
            key=lambda c: c.popularity_score,
            reverse=True,
        )
        return ranked[:limit]

    async def trending(self, limit, creator_ids=None):
        self.store.check("content.trending")
        creators = set(creator_ids) if creator_ids is not None else None
        ranked = sorted(
            (
                c for c in self.store.content.values()
                if c.trending_score > 0 and (creators is None or c.creator_id in creators)
            ),
            key=lambda c: c.trending_score,
            reverse=True,
        )
        return ranked[:limit]

    async def trending_ids(self):
        self.store.check("content.trending_ids")
        return {c.id for c in self.store.content.values() if c.trending_score > 0}

    async def matching_features(
        self, *, tags=(), categories=(), creator_ids=(), content_types=(), exclude_ids=(), limit
    ):
        self.store.check("content.matching_features")
        tags, categories = set(tags), set(categories)
        creator_ids, content_types = set(creator_ids), set(content_types)
        excluded = set(exclude_ids)
        matches = [
            c for c in self.store.content.values()
            if c.id not in excluded and (
                tags.intersection(c.tags)
                or c.category in categories
                or c.creator_id in creator_ids
                or c.content_type in content_types
            )
        ]
        return matches[:limit]

    async def all_content(self):
        self.store.check("content.all")
        return list(self.store.content.values())

    async def set_popularity_score(self, content_id, score):
        self.store.check_write("content.set_popularity_score", content_id)
        item = self.store.content[content_id]
        self.store.content[content_id] = item.model_copy(update={"popularity_score": score})

    async def set_trending_score(self, content_id, score):
        self.store.check_write("content.set_trending_score", content_id)
        item = self.store.content[content_id]
        self.store.content[content_id] = item.model_copy(update={"trending_score": score})


class InMemoryInteractionRepository(InteractionRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def by_user(self, user_id):
        self.store.check("interactions.by_user")
        return [i for i in self.store.interactions if i.user_id == user_id]

    async def on_content(self, content_ids, exclude_user_id=None):
        self.store.check("interactions.on_content")
        ids = set(content_ids)
        return [
            i for i in self.store.interactions
            if i.content_id in ids and i.user_id != exclude_user_id
        ]

    async def by_users(self, user_ids, exclude_content_ids=()):
        self.store.check("interactions.by_users")
        ids, excluded = set(user_ids), set(exclude_content_ids)
        matches = [
            i for i in self.store.interactions
            if i.user_id in ids and i.content_id not in excluded
        ]
        return sorted(matches, key=lambda i: i.created_at, reverse=True)

    async def for_content(self, content_id):
        self.store.check("interactions.for_content")
        return [i for i in self.store.interactions if i.content_id == content_id]

    async def since(self, since):
        self.store.check("interactions.since")
        return [i for i in self.store.interactions if i.created_at >= since]


class InMemoryConnectionRepository(ConnectionRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def edges_of(self, user_ids, status=ACCEPTED):
        self.store.check("connections.edges_of")
        ids = set(user_ids)
        return [
            c for c in self.store.connections
            if (c.from_user_id in ids or c.to_user_id in ids)
            and (status is None or c.status == status)
        ]


class InMemoryUserRepository(UserRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, user_id):
        self.store.check("users.get")
        return self.store.users.get(user_id)

    async def get_many(self, user_ids):
        self.store.check("users.get_many")
        return [self.store.users[u] for u in user_ids if u in self.store.users]

    async def sharing_interests(self, interests, exclude_ids, limit):
        self.store.check("users.sharing_interests")
        wanted, excluded = set(interests), set(exclude_ids)
        matches = [
            u for u in self.store.users.values()
            if u.id not in excluded and wanted.intersection(u.interests)
        ]
        return matches[:limit]

    async def sample(self, exclude_ids, limit):
        self.store.check("users.sample")
        excluded = set(exclude_ids)
        return [u for u in self.store.users.values() if u.id not in excluded][:limit]
