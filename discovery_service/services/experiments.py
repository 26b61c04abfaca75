"""
A/B experiment assignment.

Assignment is a pure function of (user_id, experiment_name):

  bucket  = int(md5(f"{user_id}:{experiment_name}").hex[:8], 16)
  variant = variants[bucket % len(variants)]

so any process, before or after a restart, hands out the same variant with no
stored state. Exposure tracking is a separate, best-effort step that runs as a
detached task and never affects the decision.

Redis keys (all under the configured prefix):
  experiment:exposure:{exp}:{user}                 STRING  variant seen by user
  experiment:count:{exp}:{variant}                 INT     exposures
  experiment:log:{exp}                             LIST    recent exposures (capped)
  experiment:conversion:{exp}:{variant}:{type}     INT     conversions
  experiment:conversion:log:{exp}                  LIST    recent conversions (capped)
  experiment:start:{exp}                           STRING  ISO start date
"""
import asyncio
import hashlib
import json
import logging
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Mapping, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from discovery_service.errors import CacheUnavailable
from discovery_service.schemas import ExperimentMetrics, VariantMetrics
from discovery_service.telemetry import EXPERIMENT_EXPOSURES_TOTAL

logger = logging.getLogger(__name__)

RECOMMENDATION_EXPERIMENT = "recommendation_algorithm"
DEFAULT_ALGORITHM = "hybrid"

DEFAULT_EXPERIMENTS: dict[str, tuple[str, ...]] = {
    RECOMMENDATION_EXPERIMENT: ("collaborative-filtering", "content-based", "hybrid"),
}

_STORE_ERRORS = (RedisError, CacheUnavailable, OSError)


class ExperimentRegistry:
    """Read-only experiment → variants table, built once at startup."""

    def __init__(self, experiments: Mapping[str, tuple[str, ...]]) -> None:
        self._experiments = MappingProxyType(
            {name: tuple(variants) for name, variants in experiments.items()}
        )

    @classmethod
    def from_config(cls, raw_json: str = "") -> "ExperimentRegistry":
        """Merge the JSON-configured experiments over the defaults."""
        experiments = dict(DEFAULT_EXPERIMENTS)
        if raw_json:
            try:
                parsed = json.loads(raw_json)
                if not isinstance(parsed, dict):
                    raise ValueError("expected a JSON object")
                configured = {}
                for name, variants in parsed.items():
                    if not isinstance(variants, list) or not all(
                        isinstance(v, str) for v in variants
                    ):
                        raise ValueError(f"variants for {name!r} must be a list of strings")
                    configured[name] = tuple(variants)
                # All or nothing: one bad entry discards the whole setting
                experiments.update(configured)
                logger.info("Loaded %d experiments from config", len(parsed))
            except ValueError as exc:
                logger.error("Error parsing AB testing experiments: %s", exc)
        return cls(experiments)

    def variants(self, experiment_name: str) -> tuple[str, ...]:
        return self._experiments.get(experiment_name, ())

    @property
    def names(self) -> list[str]:
        return list(self._experiments)

    def __contains__(self, experiment_name: str) -> bool:
        return experiment_name in self._experiments


def bucket_for(user_id: str, experiment_name: str) -> int:
    digest = hashlib.md5(f"{user_id}:{experiment_name}".encode("utf-8")).hexdigest()
    return int(digest[:8], 16)


class ExperimentService:
    def __init__(
        self,
        registry: ExperimentRegistry,
        redis_provider: Callable[[], aioredis.Redis],
        key_prefix: str = "",
        log_size: int = 1000,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.registry = registry
        self._redis = redis_provider
        self._prefix = key_prefix
        self._log_size = log_size
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    def _key(self, *parts: str) -> str:
        return self._prefix + "experiment:" + ":".join(parts)

    # ── Decision ──────────────────────────────────────────────────────────

    def decide(self, user_id: str, experiment_name: str) -> Optional[str]:
        """Pure variant assignment; touches no store."""
        variants = self.registry.variants(experiment_name)
        if not variants:
            return DEFAULT_ALGORITHM if experiment_name == RECOMMENDATION_EXPERIMENT else None
        return variants[bucket_for(user_id, experiment_name) % len(variants)]

    def get_variant(self, user_id: str, experiment_name: str) -> Optional[str]:
        """
        Assign a variant and schedule exposure recording in the background.
        Returns before the store is touched; a slow or failing store only
        loses the exposure record.
        """
        variant = self.decide(user_id, experiment_name)
        if variant is None or experiment_name not in self.registry:
            return variant

        EXPERIMENT_EXPOSURES_TOTAL.labels(experiment=experiment_name, variant=variant).inc()
        try:
            task = asyncio.get_running_loop().create_task(
                self.record_exposure(user_id, experiment_name, variant)
            )
        except RuntimeError:
            logger.debug("No running event loop; exposure for %s not recorded", user_id)
            return variant
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return variant

    def get_recommendation_algorithm(self, user_id: str) -> str:
        return self.get_variant(user_id, RECOMMENDATION_EXPERIMENT) or DEFAULT_ALGORITHM

    async def wait_for_pending(self) -> None:
        """Wait for in-flight exposure writes (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Tracking ──────────────────────────────────────────────────────────

    async def _push_capped(self, r: aioredis.Redis, log_key: str, entry: dict) -> None:
        pipe = r.pipeline()
        pipe.lpush(log_key, json.dumps(entry))
        pipe.ltrim(log_key, 0, self._log_size - 1)
        await pipe.execute()

    async def record_exposure(self, user_id: str, experiment_name: str, variant: str) -> None:
        try:
            r = self._redis()
            await r.set(self._key("exposure", experiment_name, user_id), variant)
            await r.incr(self._key("count", experiment_name, variant))
            await self._push_capped(
                r,
                self._key("log", experiment_name),
                {
                    "userId": user_id,
                    "variant": variant,
                    "timestamp": self._clock().isoformat(),
                },
            )
        except _STORE_ERRORS as exc:
            logger.error("Error recording experiment exposure: %s", exc)

    async def record_conversion(
        self, user_id: str, experiment_name: str, conversion_type: str
    ) -> None:
        try:
            r = self._redis()
            variant = await r.get(self._key("exposure", experiment_name, user_id))
            if not variant:
                logger.warning(
                    "No exposure found for user %s in experiment %s", user_id, experiment_name
                )
                return

            await r.incr(self._key("conversion", experiment_name, variant, conversion_type))
            await self._push_capped(
                r,
                self._key("conversion", "log", experiment_name),
                {
                    "userId": user_id,
                    "variant": variant,
                    "conversionType": conversion_type,
                    "timestamp": self._clock().isoformat(),
                },
            )
        except _STORE_ERRORS as exc:
            logger.error("Error recording experiment conversion: %s", exc)

    async def mark_started(self) -> None:
        """Record a start date for every known experiment that lacks one."""
        now = self._clock().isoformat()
        try:
            r = self._redis()
            for name in self.registry.names:
                await r.set(self._key("start", name), now, nx=True)
        except _STORE_ERRORS as exc:
            logger.warning("Could not record experiment start dates: %s", exc)

    # ── Reporting ─────────────────────────────────────────────────────────

    async def _counter(self, r: aioredis.Redis, key: str) -> int:
        raw = await r.get(key)
        try:
            return int(raw or 0)
        except ValueError:
            logger.warning("Ignoring non-integer experiment counter %s=%r", key, raw)
            return 0

    async def get_experiment_metrics(self, experiment_name: str) -> Optional[ExperimentMetrics]:
        """
        Aggregate exposures and conversions per variant. Returns None for an
        unknown experiment. Counters that are missing, or that cannot be read,
        count as 0.
        """
        variants = self.registry.variants(experiment_name)
        if not variants:
            return None

        metrics: dict[str, VariantMetrics] = {}
        start_date = "unknown"
        try:
            r = self._redis()
            for variant in variants:
                exposures = await self._counter(r, self._key("count", experiment_name, variant))

                prefix = self._key("conversion", experiment_name, variant) + ":"
                conversions: dict[str, int] = {}
                async for key in r.scan_iter(match=prefix + "*"):
                    conversion_type = key.rsplit(":", 1)[-1]
                    conversions[conversion_type] = await self._counter(r, key)

                metrics[variant] = VariantMetrics(
                    exposures=exposures,
                    conversions=conversions,
                    conversion_rates={
                        t: (n / exposures if exposures > 0 else 0.0)
                        for t, n in conversions.items()
                    },
                )
            start_date = await r.get(self._key("start", experiment_name)) or "unknown"
        except _STORE_ERRORS as exc:
            logger.error("Error getting experiment metrics for %s: %s", experiment_name, exc)

        for variant in variants:
            metrics.setdefault(variant, VariantMetrics())

        return ExperimentMetrics(
            experiment_name=experiment_name,
            variants=list(variants),
            metrics=metrics,
            start_date=start_date,
        )
