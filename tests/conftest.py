"""
Shared test configuration for SiteForge.

Fixtures build isolated pipeline state under ``tmp_path`` with a fake
clock and zero-delay retry policies, so no test sleeps for real backoff.
"""

from typing import Dict

import pytest
import pytest_asyncio

from siteforge.protocols import Collaborators
from siteforge.recovery import CircuitBreakerRegistry, RetryPolicy
from siteforge.storage import CheckpointStore, ScrapeCache
from tests.helpers import (
    FakeAssessor,
    FakeClock,
    FakeExtractor,
    FakeGenerator,
    FakeImageSelector,
    FakePolisher,
    FakeStore,
    FakeTemplates,
    FakeValidator,
    no_sleep,
)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_policies() -> Dict[str, RetryPolicy]:
    return {
        name: RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, max_jitter=0.0, sleep=no_sleep)
        for name in ("extraction", "ai", "image")
    }


@pytest_asyncio.fixture
async def scrape_cache(tmp_path, clock):
    cache = ScrapeCache(tmp_path / "scrapes.db", ttl_seconds=3600, max_entries=10, clock=clock)
    await cache.initialize()
    yield cache
    await cache.close()


@pytest.fixture
def checkpoints(tmp_path, clock) -> CheckpointStore:
    return CheckpointStore(tmp_path / "checkpoints", ttl_seconds=3600, clock=clock)


@pytest.fixture
def breakers(clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators(
        extractor=FakeExtractor(),
        templates=FakeTemplates(),
        store=FakeStore(),
        image_selector=FakeImageSelector(),
        generator=FakeGenerator(),
        polisher=FakePolisher(),
        assessor=FakeAssessor(),
        validator=FakeValidator(),
    )
