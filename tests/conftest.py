"""Shared fixtures."""

from datetime import datetime, timedelta

import pytest

from memblocks.core.config import Settings
from memblocks.core.events import EventBus
from memblocks.memory.base import InMemoryBackend
from memblocks.memory.persistence import PersistenceAdapter


class FakeClock:
    """Manually advanced clock for session and timestamp tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def persistence(backend: InMemoryBackend) -> PersistenceAdapter:
    return PersistenceAdapter(backend, "tester")
