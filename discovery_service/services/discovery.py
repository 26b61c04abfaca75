"""
Content discovery orchestrator.

Produces every ranked list the service exposes:

  Personalized │ cache → A/B variant → strategy → fallback chain
  ─────────────┼──────────────────────────────────────────────────────────
               │  collaborative-filtering  co-occurrence over similar users
               │  content-based            tag/category/creator/type overlap
               │  hybrid (default)         position-scored merge of both
               │  popular                  last resort, popularity_score desc

  Trending     │ global:  trending_score > 0, desc                (30 min)
               │ network: same, restricted to connections' content (1h),
               │          padded with global trending

  People       │ 2nd-degree connections → shared interests → random   (24h)

  Search       │ social re-ranking of externally supplied results (uncached)

Every strategy catches DataAccessError and hands over to the next one in the
chain, so the worst a store failure can do is degrade a list.

Two recomputation jobs also live here and are driven by DiscoveryScheduler:
  update_trending_content           trailing-24h trending_score
  update_content_popularity_scores  popularity_score for every item
"""
import asyncio
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from opentelemetry import trace
from pydantic import BaseModel, ValidationError

from discovery_service.errors import DataAccessError, InvalidInput
from discovery_service.repositories import (
    ACCEPTED,
    ConnectionRepository,
    ContentRepository,
    InteractionRepository,
    UserRepository,
)
from discovery_service.schemas import ContentItem, UserProfile, UserSuggestion
from discovery_service.services.cache import (
    GLOBAL_SUBJECT,
    NETWORK_TRENDING,
    PEOPLE_SUGGESTIONS,
    PERSONALIZED,
    TRENDING,
    RecommendationCache,
)
from discovery_service.services.experiments import ExperimentService
from discovery_service.services.scoring import (
    DEFAULT_TRENDING_WEIGHTS,
    DEFAULT_WEIGHTS,
    ScoringWeights,
    TrendingWeights,
    popularity_score,
    trending_score,
)
from discovery_service.telemetry import (
    DISCOVERY_LATENCY,
    FALLBACKS_TOTAL,
    JOB_ITEMS_UPDATED_TOTAL,
    JOB_RUNS_TOTAL,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

COLLABORATIVE = "collaborative-filtering"
CONTENT_BASED = "content-based"
HYBRID = "hybrid"

SIMILAR_USERS = 10      # neighbours considered by collaborative filtering
TOP_FEATURES = 10       # features used to query content-based candidates
CREATOR_MATCH_WEIGHT = 2.0

TRENDING_JOB = "trending-update"
POPULARITY_JOB = "popularity-update"


class SearchWeights(BaseModel, frozen=True):
    network_boost: float = 1.5
    popularity: float = 0.5
    social_signal: float = 0.4
    default_relevance: float = 0.5


class CacheTTLs(BaseModel, frozen=True):
    personalized: int = 60 * 60 * 3
    trending: int = 60 * 30
    network_trending: int = 60 * 60
    people_suggestions: int = 60 * 60 * 24


# ─────────────────────── Content feature helpers ──────────────────────────

def extract_content_features(items: Iterable[ContentItem]) -> Counter:
    """Count tag:/category:/creator:/type: features across `items`."""
    features: Counter = Counter()
    for item in items:
        for tag in item.tags:
            features[f"tag:{tag}"] += 1
        if item.category:
            features[f"category:{item.category}"] += 1
        if item.creator_id:
            features[f"creator:{item.creator_id}"] += 1
        if item.content_type:
            features[f"type:{item.content_type}"] += 1
    return features


def feature_similarity(item: ContentItem, features: Counter) -> float:
    """Matched feature weight over total feature weight; creator matches count double."""
    total = sum(features.values())
    if total <= 0:
        return 0.0

    score = sum(features[f"tag:{tag}"] for tag in item.tags)
    if item.category:
        score += features[f"category:{item.category}"]
    if item.creator_id:
        score += features[f"creator:{item.creator_id}"] * CREATOR_MATCH_WEIGHT
    if item.content_type:
        score += features[f"type:{item.content_type}"]
    return score / total


def _split_features(features: Iterable[str]) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = defaultdict(list)
    for feature in features:
        kind, _, value = feature.partition(":")
        groups[kind].append(value)
    return groups


# ─────────────────────── Search result helpers ────────────────────────────

def _number(result: dict, *keys: str) -> Optional[float]:
    for key in keys:
        value = result.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidInput(f"Search result field {key!r} must be numeric")
        return float(value)
    return None


def _creator_id(result: dict) -> Optional[str]:
    creator = result.get("creator")
    if isinstance(creator, str):
        return creator
    if isinstance(creator, dict):
        value = creator.get("id") or creator.get("_id")
        if value is not None:
            return str(value)
    creator_id = result.get("creator_id") or result.get("creatorId")
    return str(creator_id) if creator_id is not None else None


class ContentDiscoveryService:
    def __init__(
        self,
        *,
        content: ContentRepository,
        interactions: InteractionRepository,
        connections: ConnectionRepository,
        users: UserRepository,
        cache: RecommendationCache,
        experiments: ExperimentService,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        trending_weights: TrendingWeights = DEFAULT_TRENDING_WEIGHTS,
        search_weights: SearchWeights = SearchWeights(),
        ttls: CacheTTLs = CacheTTLs(),
        batch_size: int = 50,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.content = content
        self.interactions = interactions
        self.connections = connections
        self.users = users
        self.cache = cache
        self.experiments = experiments
        self.weights = weights
        self.trending_weights = trending_weights
        self.search_weights = search_weights
        self.ttls = ttls
        self.batch_size = max(1, batch_size)
        self._clock = clock

    # ───────────────────────── cache helpers ─────────────────────────────

    async def _cached_content(
        self, subject: str, list_type: str, limit: int
    ) -> Optional[list[ContentItem]]:
        cached = await self.cache.get(subject, list_type, limit)
        if cached is None:
            return None
        try:
            return [ContentItem.model_validate(entry) for entry in cached]
        except ValidationError as exc:
            logger.warning("Discarding malformed cached %s list: %s", list_type, exc)
            return None

    async def _cached_users(
        self, subject: str, list_type: str, limit: int
    ) -> Optional[list[UserSuggestion]]:
        cached = await self.cache.get(subject, list_type, limit)
        if cached is None:
            return None
        try:
            return [UserSuggestion.model_validate(entry) for entry in cached]
        except ValidationError as exc:
            logger.warning("Discarding malformed cached %s list: %s", list_type, exc)
            return None

    async def _remember(
        self, subject: str, list_type: str, limit: int, items: list[BaseModel], ttl: int
    ) -> None:
        # Degraded (empty) lists are not worth pinning for a whole TTL
        if items:
            await self.cache.set(
                subject, list_type, limit, [i.model_dump(mode="json") for i in items], ttl
            )

    # ───────────────────────── fallbacks ─────────────────────────────────

    async def popular_content(
        self, limit: int, exclude_ids: Iterable[str] = ()
    ) -> list[ContentItem]:
        """Last link of every content fallback chain."""
        if limit <= 0:
            return []
        try:
            return await self.content.popular(limit, exclude_ids=list(exclude_ids))
        except DataAccessError as exc:
            logger.error("Popular content unavailable: %s — returning empty list", exc)
            FALLBACKS_TOTAL.labels(strategy="popular", reason="error").inc()
            return []

    async def _fall_back_to_popular(
        self, strategy: str, reason: str, user_id: str, limit: int
    ) -> list[ContentItem]:
        FALLBACKS_TOTAL.labels(strategy=strategy, reason=reason).inc()
        logger.debug("%s for user %s fell back to popular content (%s)", strategy, user_id, reason)
        return await self.popular_content(limit)

    # ───────────────────────── personalized ──────────────────────────────

    async def get_personalized_recommendations(
        self, user_id: str, limit: int = 20
    ) -> list[ContentItem]:
        with tracer.start_as_current_span("personalized_recommendations") as span, \
                DISCOVERY_LATENCY.labels(endpoint="recommendations").time():
            span.set_attribute("user.id", user_id)

            cached = await self._cached_content(user_id, PERSONALIZED, limit)
            if cached is not None:
                span.set_attribute("cache.hit", True)
                return cached

            algorithm = self.experiments.get_recommendation_algorithm(user_id)
            span.set_attribute("experiment.algorithm", algorithm)
            strategy = {
                COLLABORATIVE: self.collaborative_filtering_recommendations,
                CONTENT_BASED: self.content_based_recommendations,
            }.get(algorithm, self.hybrid_recommendations)

            recommendations = await strategy(user_id, limit)
            span.set_attribute("recommendations.count", len(recommendations))

            await self._remember(
                user_id, PERSONALIZED, limit, recommendations, self.ttls.personalized
            )
            return recommendations

    async def collaborative_filtering_recommendations(
        self, user_id: str, limit: int
    ) -> list[ContentItem]:
        """
        Users who touched the same content are neighbours; content the top
        neighbours touched (and the user has not) is ranked by how many
        neighbour interactions it received, most recent first on ties.
        """
        strategy = "collaborative"
        try:
            history = await self.interactions.by_user(user_id)
            if not history:
                return await self._fall_back_to_popular(strategy, "empty", user_id, limit)

            seen = list(dict.fromkeys(i.content_id for i in history))
            overlap = await self.interactions.on_content(seen, exclude_user_id=user_id)
            neighbours = Counter(i.user_id for i in overlap if i.user_id != user_id)
            similar_users = [u for u, _ in neighbours.most_common(SIMILAR_USERS)]
            if not similar_users:
                return await self._fall_back_to_popular(strategy, "empty", user_id, limit)

            # by_users returns newest first, so first position doubles as recency rank
            frequency: Counter = Counter()
            recency: dict[str, int] = {}
            seen_set = set(seen)
            for position, interaction in enumerate(
                await self.interactions.by_users(similar_users, exclude_content_ids=seen)
            ):
                if interaction.content_id in seen_set:
                    continue
                frequency[interaction.content_id] += 1
                recency.setdefault(interaction.content_id, position)

            ranked_ids = sorted(frequency, key=lambda cid: (-frequency[cid], recency[cid]))[:limit]
            by_id = {c.id: c for c in await self.content.get_many(ranked_ids)}
            recommendations = [by_id[cid] for cid in ranked_ids if cid in by_id]

            if len(recommendations) < limit:
                recommendations += await self.popular_content(
                    limit - len(recommendations),
                    exclude_ids=[r.id for r in recommendations] + seen,
                )
            return recommendations

        except DataAccessError as exc:
            logger.error("Error getting collaborative filtering recommendations: %s", exc)
            return await self._fall_back_to_popular(strategy, "error", user_id, limit)

    async def content_based_recommendations(
        self, user_id: str, limit: int
    ) -> list[ContentItem]:
        """Score unseen content by overlap with features of content the user touched."""
        strategy = "content-based"
        try:
            history = await self.interactions.by_user(user_id)
            if not history:
                return await self._fall_back_to_popular(strategy, "empty", user_id, limit)

            seen = list(dict.fromkeys(i.content_id for i in history))
            by_id = {c.id: c for c in await self.content.get_many(seen)}
            # One entry per interaction, so repeat engagement weighs more
            interacted = [by_id[i.content_id] for i in history if i.content_id in by_id]
            if not interacted:
                return await self._fall_back_to_popular(strategy, "empty", user_id, limit)

            features = extract_content_features(interacted)
            if not features:
                return await self._fall_back_to_popular(strategy, "empty", user_id, limit)

            top = _split_features(f for f, _ in features.most_common(TOP_FEATURES))
            candidates = await self.content.matching_features(
                tags=top.get("tag", []),
                categories=top.get("category", []),
                creator_ids=top.get("creator", []),
                content_types=top.get("type", []),
                exclude_ids=seen,
                limit=limit * 2,
            )

            seen_set = set(seen)
            scored = [
                (feature_similarity(c, features), c) for c in candidates if c.id not in seen_set
            ]
            scored.sort(key=lambda pair: pair[0], reverse=True)
            return [c for _, c in scored[:limit]]

        except DataAccessError as exc:
            logger.error("Error getting content-based recommendations: %s", exc)
            return await self._fall_back_to_popular(strategy, "error", user_id, limit)

    async def hybrid_recommendations(self, user_id: str, limit: int) -> list[ContentItem]:
        """
        Merge both strategies by list position:
          collaborative  1.0 → 0.3
          content-based  0.9 → 0.3
        Items found by both sum their scores. Shortfall is topped up from
        popular content.
        """
        collaborative, content_based = await asyncio.gather(
            self.collaborative_filtering_recommendations(user_id, limit),
            self.content_based_recommendations(user_id, limit),
        )

        merged: dict[str, dict] = {}
        for index, item in enumerate(collaborative):
            if item.id in merged:
                continue
            merged[item.id] = {
                "content": item,
                "score": 1 - (index / len(collaborative)) * 0.7,
                "source": "collaborative",
            }
        for index, item in enumerate(content_based):
            score = 0.9 - (index / len(content_based)) * 0.6
            entry = merged.get(item.id)
            if entry is None:
                merged[item.id] = {"content": item, "score": score, "source": "content-based"}
            elif entry["source"] == "collaborative":
                entry["score"] += score
                entry["source"] = "both"

        ranked = sorted(merged.values(), key=lambda e: e["score"], reverse=True)[:limit]
        logger.debug(
            "Hybrid for %s: %d collaborative, %d content-based, %d from both",
            user_id,
            len(collaborative),
            len(content_based),
            sum(1 for e in ranked if e["source"] == "both"),
        )
        recommendations = [e["content"] for e in ranked]

        if len(recommendations) < limit:
            recommendations += await self.popular_content(
                limit - len(recommendations), exclude_ids=[r.id for r in recommendations]
            )
        return recommendations

    # ───────────────────────── trending ──────────────────────────────────

    async def get_trending_content(self, limit: int = 20) -> list[ContentItem]:
        with tracer.start_as_current_span("trending_content"), \
                DISCOVERY_LATENCY.labels(endpoint="trending").time():
            cached = await self._cached_content(GLOBAL_SUBJECT, TRENDING, limit)
            if cached is not None:
                return cached

            try:
                trending = await self.content.trending(limit)
            except DataAccessError as exc:
                logger.error("Error loading trending content: %s", exc)
                FALLBACKS_TOTAL.labels(strategy="trending", reason="error").inc()
                return []

            await self._remember(GLOBAL_SUBJECT, TRENDING, limit, trending, self.ttls.trending)
            return trending

    async def get_network_trending(self, user_id: str, limit: int = 20) -> list[ContentItem]:
        with tracer.start_as_current_span("network_trending") as span, \
                DISCOVERY_LATENCY.labels(endpoint="network_trending").time():
            span.set_attribute("user.id", user_id)

            cached = await self._cached_content(user_id, NETWORK_TRENDING, limit)
            if cached is not None:
                return cached

            try:
                network = await self.connections.connections_of(user_id)
            except DataAccessError as exc:
                logger.error("Error loading connections for %s: %s", user_id, exc)
                FALLBACKS_TOTAL.labels(strategy="network-trending", reason="error").inc()
                return await self.get_trending_content(limit)

            if not network:
                FALLBACKS_TOTAL.labels(strategy="network-trending", reason="empty").inc()
                return await self.get_trending_content(limit)

            span.set_attribute("network.size", len(network))
            try:
                trending = await self.content.trending(limit, creator_ids=network)
            except DataAccessError as exc:
                logger.error("Error loading network trending for %s: %s", user_id, exc)
                trending = []

            if len(trending) < limit:
                included = {c.id for c in trending}
                global_trending = await self.get_trending_content(limit)
                trending += [c for c in global_trending if c.id not in included][
                    : limit - len(trending)
                ]

            await self._remember(
                user_id, NETWORK_TRENDING, limit, trending, self.ttls.network_trending
            )
            return trending

    # ───────────────────────── people ────────────────────────────────────

    async def get_people_you_may_know(
        self, user_id: str, limit: int = 20
    ) -> list[UserSuggestion]:
        with tracer.start_as_current_span("people_you_may_know") as span, \
                DISCOVERY_LATENCY.labels(endpoint="people_suggestions").time():
            span.set_attribute("user.id", user_id)

            cached = await self._cached_users(user_id, PEOPLE_SUGGESTIONS, limit)
            if cached is not None:
                return cached

            # Any edge, pending or accepted, rules a user out
            try:
                connected = await self.connections.connections_of(user_id, status=None)
            except DataAccessError as exc:
                logger.error("Error loading connections for %s: %s", user_id, exc)
                FALLBACKS_TOTAL.labels(strategy="people", reason="error").inc()
                return []
            exclude = set(connected) | {user_id}

            suggestions = await self._second_degree_suggestions(connected, exclude, limit)
            if not suggestions:
                suggestions = await self._interest_based_suggestions(user_id, exclude, limit)
            if not suggestions:
                suggestions = await self._random_suggestions(exclude, limit)

            span.set_attribute("suggestions.count", len(suggestions))
            await self._remember(
                user_id, PEOPLE_SUGGESTIONS, limit, suggestions, self.ttls.people_suggestions
            )
            return suggestions

    @staticmethod
    def _suggestion(profile: UserProfile, **scores: Any) -> UserSuggestion:
        return UserSuggestion(**profile.model_dump(exclude={"interests"}), **scores)

    async def _second_degree_suggestions(
        self, connected: list[str], exclude: set[str], limit: int
    ) -> list[UserSuggestion]:
        if not connected:
            return []
        try:
            edges = await self.connections.edges_of(connected, status=ACCEPTED)
            connected_set = set(connected)
            strength: Counter = Counter()
            for edge in edges:
                candidate = (
                    edge.to_user_id if edge.from_user_id in connected_set else edge.from_user_id
                )
                if candidate not in exclude:
                    strength[candidate] += 1

            top = [u for u, _ in strength.most_common(limit)]
            if not top:
                return []
            profiles = {p.id: p for p in await self.users.get_many(top)}
        except DataAccessError as exc:
            logger.error("Error computing 2nd-degree suggestions: %s", exc)
            FALLBACKS_TOTAL.labels(strategy="people-2nd-degree", reason="error").inc()
            return []

        return [
            self._suggestion(profiles[u], connection_strength=strength[u])
            for u in top
            if u in profiles
        ]

    async def _interest_based_suggestions(
        self, user_id: str, exclude: set[str], limit: int
    ) -> list[UserSuggestion]:
        try:
            user = await self.users.get(user_id)
            interests = set(user.interests) if user else set()
            if not interests:
                return []
            others = await self.users.sharing_interests(
                sorted(interests), exclude_ids=sorted(exclude), limit=limit * 2
            )
        except DataAccessError as exc:
            logger.error("Error computing interest-based suggestions: %s", exc)
            FALLBACKS_TOTAL.labels(strategy="people-interests", reason="error").inc()
            return []

        scored = [
            (len(interests & set(other.interests)) / len(interests), other)
            for other in others
            if other.id not in exclude
        ]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            self._suggestion(other, interest_overlap=overlap) for overlap, other in scored[:limit]
        ]

    async def _random_suggestions(self, exclude: set[str], limit: int) -> list[UserSuggestion]:
        try:
            sample = await self.users.sample(exclude_ids=sorted(exclude), limit=limit)
        except DataAccessError as exc:
            logger.error("Error sampling users: %s", exc)
            FALLBACKS_TOTAL.labels(strategy="people-random", reason="error").inc()
            return []
        return [self._suggestion(p) for p in sample if p.id not in exclude][:limit]

    # ───────────────────────── search ────────────────────────────────────

    async def enhance_search_results(
        self, user_id: str, results: Any, query: str = ""
    ) -> list[dict]:
        """
        Re-rank externally supplied search results with social signals:

          score  = _score (relevance, default 0.5)
          score ×= 1.5                                  creator is a connection
          score += popularityScore × 0.5
          score += networkInteractions / interactionCount × 0.4

        Returns copies of the results carrying `_enhancedScore`, best first.
        """
        if not isinstance(results, list):
            raise InvalidInput("Search results must be a JSON array")
        if not all(isinstance(r, dict) for r in results):
            raise InvalidInput("Every search result must be a JSON object")
        if not results:
            return results

        with tracer.start_as_current_span("enhance_search") as span:
            span.set_attribute("search.query", query)
            span.set_attribute("search.results", len(results))

            try:
                network = set(await self.connections.connections_of(user_id))
            except DataAccessError as exc:
                logger.error("Error loading connections for search boost: %s", exc)
                network = set()

            w = self.search_weights
            enhanced = []
            for result in results:
                score = _number(result, "_score") or w.default_relevance

                creator = _creator_id(result)
                if creator is not None and creator in network:
                    score *= w.network_boost

                popularity = _number(result, "popularityScore", "popularity_score")
                if popularity:
                    score += popularity * w.popularity

                interaction_count = _number(result, "interactionCount", "interaction_count")
                network_interactions = _number(
                    result, "networkInteractions", "network_interactions"
                )
                if interaction_count and interaction_count > 0 and network_interactions:
                    score += (network_interactions / interaction_count) * w.social_signal

                enhanced.append({**result, "_enhancedScore": score})

            enhanced.sort(key=lambda r: r["_enhancedScore"], reverse=True)
            return enhanced

    # ───────────────────────── scheduled jobs ────────────────────────────

    async def _in_batches(
        self, job: str, work: dict[str, Any], worker: Callable[[str, Any], Awaitable[None]]
    ) -> tuple[int, int]:
        """Run `worker(content_id, payload)` batch by batch. Returns (written, failed)."""
        written = failed = 0
        content_ids = list(work)
        for start in range(0, len(content_ids), self.batch_size):
            batch = content_ids[start:start + self.batch_size]
            results = await asyncio.gather(
                *(worker(cid, work[cid]) for cid in batch), return_exceptions=True
            )
            for cid, result in zip(batch, results):
                if isinstance(result, BaseException):
                    failed += 1
                    logger.error("%s: update of %s failed: %s", job, cid, result)
                else:
                    written += 1
        return written, failed

    @staticmethod
    def _record_job(job: str, written: int, failed: int) -> None:
        JOB_RUNS_TOTAL.labels(job=job, status="error" if failed else "ok").inc()
        JOB_ITEMS_UPDATED_TOTAL.labels(job=job).inc(written)

    async def update_trending_content(self, now: Optional[datetime] = None) -> int:
        """
        Recompute trending_score from the trailing window of interactions.
        Items that were trending but have no interaction left in the window
        are reset to 0. Returns the number of items actually written; a
        failed write is logged and skipped.
        """
        now = now or self._clock()
        logger.info("Updating trending content scores")
        try:
            since = now - timedelta(hours=self.trending_weights.window_hours)
            by_content: dict[str, list] = defaultdict(list)
            for interaction in await self.interactions.since(since):
                by_content[interaction.content_id].append(interaction)

            expired = await self.content.trending_ids() - set(by_content)
        except Exception as exc:
            logger.error("Error updating trending content: %s", exc, exc_info=True)
            self._record_job(TRENDING_JOB, 0, 1)
            return 0

        scores = {
            cid: trending_score(group, now=now, weights=self.trending_weights)
            for cid, group in by_content.items()
        }
        scores.update((cid, 0.0) for cid in expired)
        written, failed = await self._in_batches(
            TRENDING_JOB, scores, self.content.set_trending_score
        )

        # Any landed write makes the cached global list stale
        if written:
            await self.cache.invalidate(GLOBAL_SUBJECT, TRENDING)

        logger.info(
            "Updated trending scores for %d content items (%d reset to 0, %d failed)",
            written, len(expired), failed,
        )
        self._record_job(TRENDING_JOB, written, failed)
        return written

    async def update_content_popularity_scores(self, now: Optional[datetime] = None) -> int:
        """Recompute popularity_score for every content item. Returns items written."""
        now = now or self._clock()
        logger.info("Updating content popularity scores")
        try:
            everything = await self.content.all_content()
        except Exception as exc:
            logger.error("Error updating content popularity scores: %s", exc, exc_info=True)
            self._record_job(POPULARITY_JOB, 0, 1)
            return 0

        if not everything:
            logger.debug("No content found for popularity calculation")
            self._record_job(POPULARITY_JOB, 0, 0)
            return 0

        async def rescore(content_id: str, item: ContentItem) -> None:
            interactions = await self.interactions.for_content(content_id)
            score = popularity_score(item, interactions, now=now, weights=self.weights)
            await self.content.set_popularity_score(content_id, score)

        written, failed = await self._in_batches(
            POPULARITY_JOB, {item.id: item for item in everything}, rescore
        )
        logger.info(
            "Updated popularity scores for %d content items (%d failed)", written, failed
        )
        self._record_job(POPULARITY_JOB, written, failed)
        return written
