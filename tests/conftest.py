import os
from datetime import datetime, timedelta, timezone

# settings are read at import time
os.environ.setdefault("TELEMETRY_ENABLED", "false")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ADMIN_USER_IDS", '["admin-1"]')

import pytest
import pytest_asyncio
import httpx

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

# Import Base + all models so metadata is complete
from app.models.base import Base
from app.models.listing import Listing  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401

from app.main import app
from app.services.auth import Actor, RoleCapabilities, get_capabilities
from app.services.listing_store import SqlListingStore, get_listing_store
from app.services.listings import ListingLifecycleService
from app.services.reservation_expiry import ReservationExpirySweeper


ADMIN_ID = "admin-1"
OWNER_ID = "seller-1"
OTHER_ID = "stranger-1"


def _test_db_url() -> str:
    return os.getenv("DATABASE_URL_TEST", "sqlite+aiosqlite://")


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest_asyncio.fixture
async def async_engine():
    url = _test_db_url()
    kwargs = {"poolclass": StaticPool} if url.startswith("sqlite") else {"pool_pre_ping": True}
    engine = create_async_engine(url, **kwargs)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def sessions(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def store(sessions) -> SqlListingStore:
    return SqlListingStore(sessions)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def capabilities() -> RoleCapabilities:
    return RoleCapabilities({ADMIN_ID})


@pytest.fixture
def service(store, capabilities, clock) -> ListingLifecycleService:
    return ListingLifecycleService(store, capabilities, clock=clock)


@pytest.fixture
def sweeper(store, clock) -> ReservationExpirySweeper:
    return ReservationExpirySweeper(store, batch_size=2, clock=clock)


@pytest.fixture
def owner() -> Actor:
    return Actor(user_id=OWNER_ID)


@pytest.fixture
def admin() -> Actor:
    return Actor(user_id=ADMIN_ID)


@pytest.fixture
def stranger() -> Actor:
    return Actor(user_id=OTHER_ID)


@pytest_asyncio.fixture
async def client(store, capabilities):
    """
    HTTP client wired to the test store via dependency overrides.
    """
    app.dependency_overrides[get_listing_store] = lambda: store
    app.dependency_overrides[get_capabilities] = lambda: capabilities

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
