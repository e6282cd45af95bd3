"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import AsyncGenerator

# Settings are read at import time, so the environment must be in place first.
_DB_DIR = tempfile.mkdtemp(prefix="navigator_test_")
os.environ.update(
    {
        "ENVIRONMENT": "development",
        "DATABASE_URL_OVERRIDE": f"sqlite+aiosqlite:///{_DB_DIR}/unused.db",
        "JWT_SIGNING_SECRET": "test-signing-secret",
        "MEMBERSTACK_SECRET_KEY": "sk_sb_test",
        "OPENAI_API_KEY": "sk-test",
        "STRIPE_SECRET_KEY": "sk_test_123",
        "STRIPE_WEBHOOK_SECRET": "whsec_test_secret",
        "STRIPE_PRICE_ID": "price_test",
        "CHECKOUT_SUCCESS_URL": "https://app.example.com/success",
        "CHECKOUT_CANCEL_URL": "https://app.example.com/cancel",
        "ADMIN_MEMBER_IDS": '["mem_admin"]',
        "PAID_ADMIN_TOKEN": "admin-token",
        "ALLOWED_ORIGINS": '["https://app.example.com"]',
    }
)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from navigator.api.deps import create_access_token  # noqa: E402
from navigator.db import models  # noqa: E402, F401 - Import models to register them
from navigator.db.base import Base  # noqa: E402
from navigator.db.session import get_db  # noqa: E402
from navigator.main import app  # noqa: E402
from navigator.services.entitlement import set_user_paid  # noqa: E402

PAID_MEMBER = "mem_paid"
UNPAID_MEMBER = "mem_unpaid"


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test, schema created from the models."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'navigator.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""

    async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(member_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(member_id)}"}


@pytest.fixture
def make_headers():
    """Factory for Bearer headers of an arbitrary member id."""
    return auth_headers


@pytest.fixture
async def paid_headers(db) -> dict[str, str]:
    """Bearer headers for a member whose paid flag is set."""
    await set_user_paid(db, PAID_MEMBER, True)
    return auth_headers(PAID_MEMBER)


@pytest.fixture
def unpaid_headers() -> dict[str, str]:
    return auth_headers(UNPAID_MEMBER)
