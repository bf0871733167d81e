"""Shared test configuration and fixtures.

Each test runs against its own in-memory SQLite database (aiosqlite), so no
external PostgreSQL instance is needed and tests are fully isolated.
Environment variables are set before any ``launchkit`` import because
``launchkit.config.settings`` and the module-level engine read them once.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-for-launchkit"
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_PREMIUM_PRICE_ID", "price_test_premium")

import uuid  # noqa: E402
from collections.abc import AsyncGenerator  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import launchkit.models  # noqa: E402, F401
from launchkit.auth.jwt import create_access_token  # noqa: E402
from launchkit.database import Base, get_db, utcnow  # noqa: E402, F401
from launchkit.main import app  # noqa: E402
from launchkit.models.subscription import Subscription  # noqa: E402

# ---------------------------------------------------------------------------
# Per-test database: fresh in-memory SQLite with all tables created
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Create an in-memory engine; StaticPool keeps the single connection alive."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session bound to the per-test database."""
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to use the test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_auth_headers(user_id: uuid.UUID, email: str | None = None) -> dict[str, str]:
    """Authorization headers carrying a Supabase-style access token for ``user_id``."""
    token = create_access_token(str(user_id), email=email)
    return {"Authorization": f"Bearer {token}"}


async def create_subscription_row(
    db_session: AsyncSession,
    user_id: uuid.UUID | None = None,
    **values,
) -> Subscription:
    """Insert a subscription row (free/active unless overridden) and return it loaded."""
    subscription = Subscription(user_id=user_id or uuid.uuid4(), **values)
    db_session.add(subscription)
    await db_session.flush()
    await db_session.refresh(subscription)
    return subscription


async def reload_subscription(db_session: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    """Re-read the user's row from the database, discarding cached state."""
    from launchkit.services.subscription_service import get_subscription_for_user

    db_session.expire_all()
    return await get_subscription_for_user(db_session, user_id)


# ---------------------------------------------------------------------------
# Convenience fixtures: authenticated user
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture
async def auth_headers(user_id: uuid.UUID) -> dict[str, str]:
    """Return Authorization headers for the test user."""
    return make_auth_headers(user_id, email="testuser@launchkit.test")


# ---------------------------------------------------------------------------
# Fake Stripe objects
# ---------------------------------------------------------------------------


class StripeObj(SimpleNamespace):
    """SimpleNamespace with bracket notation support (like Stripe API objects).

    Stripe API 2025-08-27 (basil) changed subscription.items to require
    bracket notation to avoid collision with Python dict .items().
    """

    def __getitem__(self, key: str):
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None


def make_event(event_type: str, data_object: dict) -> StripeObj:
    """Create a fake Stripe Event-like object."""
    return StripeObj(
        type=event_type,
        id=f"evt_test_{uuid.uuid4().hex[:8]}",
        data=StripeObj(object=StripeObj(**data_object)),
    )
