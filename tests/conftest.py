"""
Test fixtures for the civic SLA service.

Provides:
- Async DB session fixture (SQLite in-memory, one database per test)
- Fixed clock
- Issue factory writing straight through the repository
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from civic_sla.infrastructure.database import Base
from civic_sla.sla.application import IssueCreateDTO
from civic_sla.sla.domain import SLAPolicy, SLAPolicyConfig
from civic_sla.sla.infrastructure import (  # noqa: F401 - register all models
    EscalationEventModel,
    IssueModel,
    SQLAlchemyIssueRepository,
    StaticConfigProvider,
)

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable clock passed to services instead of utc_now."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def engine():
    """Test database engine with all tables."""
    eng = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session per test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def sla_config() -> SLAPolicyConfig:
    return SLAPolicyConfig()


@pytest.fixture
def config_provider(sla_config) -> StaticConfigProvider:
    return StaticConfigProvider(sla_config)


@pytest.fixture
def repo(db) -> SQLAlchemyIssueRepository:
    return SQLAlchemyIssueRepository(db)


@pytest.fixture
def make_issue(repo, sla_config):
    """
    Factory storing an issue reported at ``created_at``.

    ``checked_at`` sets last_escalation_check; defaults to the report time.
    """
    policy = SLAPolicy(sla_config)

    async def _make(
        priority: str = "urgent",
        created_at: datetime = T0,
        status: str = "reported",
        assigned_to: str = "Water Department",
        title: str = "Burst water main",
        checked_at: datetime = None,
    ):
        dto = IssueCreateDTO(
            title=title,
            category="water",
            priority=priority,
            status=status,
            city="Bengaluru",
            assigned_to=assigned_to,
            created_at=created_at,
        )
        issue = await repo.create(
            dto,
            sla_deadline=policy.compute_deadline(priority, created_at),
            now=checked_at or created_at,
        )
        await repo.commit()
        return issue

    return _make
