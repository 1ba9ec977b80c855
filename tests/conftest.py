"""
Pytest Configuration and Fixtures
"""
import pytest
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from socialsync.database import Base  # noqa: E402
from socialsync.gateway import InMemoryGateway  # noqa: E402
from socialsync.services import (  # noqa: E402
    EventBus,
    MessageStore,
    RealtimeSubscriber,
    SocialStore,
    WatermarkStore,
)

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest"""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeClock:
    """Deterministic clock; every reading moves forward by ``step``."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(milliseconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value

    def advance(self, seconds: float):
        self.current = self.current + timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway(clock):
    """In-memory backend seeded with three profiles"""
    gw = InMemoryGateway(clock=clock)
    gw.seed(
        "profiles",
        {"id": "alice", "username": "alice", "full_name": "Alice Liddell"},
        {"id": "bob", "username": "bob", "full_name": "Bob Builder"},
        {"id": "carol", "username": "carol", "full_name": None},
    )
    return gw


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def store(gateway):
    return MessageStore(gateway)


@pytest.fixture
def social(gateway):
    return SocialStore(gateway)


@pytest.fixture
def subscriber(gateway):
    return RealtimeSubscriber(gateway)


@pytest.fixture
async def session_maker():
    """In-memory local storage"""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def watermarks(session_maker):
    return WatermarkStore(session_maker)
