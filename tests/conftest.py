"""
TaskFlow - Test Fixtures
========================

Shared pytest fixtures for all tests.
"""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from taskflow.api.main import app
from taskflow.core.database import Base, enable_sqlite_foreign_keys, get_db
from taskflow.core.models import Application, Feature, SessionTaskType, Task, WorkSession
from taskflow.core.workflow import (
    HierarchyService,
    SessionComplianceTracker,
    StatusTransitionEngine,
)


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
event.listen(test_engine.sync_engine, "connect", enable_sqlite_foreign_keys)

TestingSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a clean database session for each test.

    Creates all tables before test, drops after.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database override.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ==========================================================================
# Service Fixtures
# ==========================================================================

@pytest_asyncio.fixture
async def hierarchy(db_session: AsyncSession) -> HierarchyService:
    return HierarchyService(db_session)


@pytest_asyncio.fixture
async def engine(db_session: AsyncSession) -> StatusTransitionEngine:
    return StatusTransitionEngine(db_session, actor="tester")


@pytest_asyncio.fixture
async def tracker(db_session: AsyncSession) -> SessionComplianceTracker:
    return SessionComplianceTracker(db_session)


# ==========================================================================
# Hierarchy Fixtures
# ==========================================================================

@pytest_asyncio.fixture
async def application(hierarchy: HierarchyService) -> Application:
    """The "Shop" application."""
    return await hierarchy.create_application(
        "Shop",
        description="Online shop",
        repository_url="https://example.com/shop.git",
    )


@pytest_asyncio.fixture
async def feature(hierarchy: HierarchyService, application: Application) -> Feature:
    """The "Checkout" feature, planned."""
    return await hierarchy.create_feature(application.id, "Checkout")


@pytest_asyncio.fixture
async def task(hierarchy: HierarchyService, feature: Feature) -> Task:
    """The "Add coupon field" task, in backlog."""
    return await hierarchy.create_task(
        feature.id,
        "Add coupon field",
        description="Coupon input on the checkout page",
        acceptance_criteria="A valid coupon reduces the total",
    )


@pytest_asyncio.fixture
async def active_session(tracker: SessionComplianceTracker, task: Task) -> WorkSession:
    """An active code-editing session scoped to the task."""
    result = await tracker.initialize_session(
        SessionTaskType.CODE_EDITING,
        context_description="Add the coupon field",
        task_id=task.id,
    )
    return result.session
