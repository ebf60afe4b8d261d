from collections.abc import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sitehooks.database import get_db
from sitehooks.dependencies import AdminPrincipal, get_current_admin
from sitehooks.main import app
from sitehooks.models import Base
from sitehooks.services.dispatcher import WebhookDispatcher
from sitehooks.services.retry_policy import RetryPolicy
from tests.helpers import SITE_ID, FakeEndpoint, FakeRedis

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def endpoint() -> FakeEndpoint:
    return FakeEndpoint()


@pytest.fixture
async def http_client(endpoint) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(endpoint)) as client:
        yield client


@pytest.fixture
def retry_policy() -> RetryPolicy:
    # No backoff delay, so tests can retry right away.
    return RetryPolicy(max_attempts=3, base_seconds=0, max_seconds=0)


@pytest.fixture
def dispatcher(session_factory, http_client, retry_policy) -> WebhookDispatcher:
    return WebhookDispatcher(session_factory, http_client, retry_policy=retry_policy)


@pytest.fixture
def admin() -> AdminPrincipal:
    return AdminPrincipal(user_id=100, site_id=SITE_ID)


@pytest.fixture
async def client(session_factory, admin) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_get_current_admin():
        return admin

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_admin] = override_get_current_admin
    app.state.redis = FakeRedis()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.scheduler = None
