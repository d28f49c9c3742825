"""
Test Suite Configuration
"""
import pytest

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.config import Settings, get_settings
from src.database.connection import session_scope
from src.database.models import Base
from src.database.repositories import MRRHistoryRepository, SnapshotRepository, SubscriptionRepository
from src.ingestion.manual_subscriptions import ManualSubscriptionSource
from tests.factories import FakeBillingClient


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Each test sees settings built from its own environment"""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
async def test_engine():
    """In-memory SQLite shared by every session of one test"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def store(test_engine):
    """Transactional session factory over the test engine"""
    factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return session_scope(factory)


@pytest.fixture
def subscription_repo(store) -> SubscriptionRepository:
    return SubscriptionRepository(store)


@pytest.fixture
def snapshot_repo(store) -> SnapshotRepository:
    return SnapshotRepository(store)


@pytest.fixture
def mrr_repo(store) -> MRRHistoryRepository:
    return MRRHistoryRepository(store)


@pytest.fixture
def no_manual() -> ManualSubscriptionSource:
    return ManualSubscriptionSource(entries=[])


@pytest.fixture
def billing_client() -> FakeBillingClient:
    return FakeBillingClient()
