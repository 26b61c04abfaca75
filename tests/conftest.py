import os

# Must be set before discovery_service.config is imported anywhere
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("JOBS_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest

from discovery_service.services.cache import RecommendationCache
from discovery_service.services.discovery import ContentDiscoveryService
from discovery_service.services.experiments import ExperimentRegistry, ExperimentService
from fakes import (
    NOW,
    FakeRedis,
    InMemoryConnectionRepository,
    InMemoryContentRepository,
    InMemoryInteractionRepository,
    InMemoryStore,
    InMemoryUserRepository,
)

PREFIX = "discovery:"


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache(fake_redis):
    return RecommendationCache(lambda: fake_redis, key_prefix=PREFIX)


@pytest.fixture
def registry():
    return ExperimentRegistry.from_config()


@pytest.fixture
def experiments(registry, fake_redis):
    return ExperimentService(registry, lambda: fake_redis, key_prefix=PREFIX, clock=lambda: NOW)


@pytest.fixture
def make_service(store, cache, fake_redis):
    """Build a discovery service; `algorithm` pins every user to one variant."""

    def _make(algorithm: str = "hybrid", **kwargs) -> ContentDiscoveryService:
        registry = ExperimentRegistry({"recommendation_algorithm": (algorithm,)})
        experiments = ExperimentService(
            registry, lambda: fake_redis, key_prefix=PREFIX, clock=lambda: NOW
        )
        return ContentDiscoveryService(
            content=InMemoryContentRepository(store),
            interactions=InMemoryInteractionRepository(store),
            connections=InMemoryConnectionRepository(store),
            users=InMemoryUserRepository(store),
            cache=cache,
            experiments=experiments,
            clock=lambda: NOW,
            **kwargs,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()
