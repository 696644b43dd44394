"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- In-memory SQLite database with all tables created
- Seeded principals (customer, sourcing agents, admin)
- Default configuration and platform settings
"""

import os

# Keep the application engine off the working directory before any
# linescout module reads DATABASE_URL at import time.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from linescout.config import LineScoutConfig, set_config
from linescout.db.models import Agent, AgentRole, Base, User
from linescout.services.settings_service import PlatformSettings
from tests.factories import add

# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def default_config() -> Generator[LineScoutConfig, None, None]:
    """Pin the process-wide config to defaults for every test."""
    config = LineScoutConfig()
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def settings() -> PlatformSettings:
    return PlatformSettings(agent_percent=5.0, min_agent_payout_minor=10000)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def test_db() -> Generator[Session, None, None]:
    """Create an in-memory SQLite database for testing.

    Creates all tables, yields a session, and cleans up after test.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


# ============================================================================
# Principals
# ============================================================================


@pytest.fixture
def user(test_db: Session) -> User:
    return add(test_db, User(email="ada@example.com", display_name="Ada"))


@pytest.fixture
def other_user(test_db: Session) -> User:
    return add(test_db, User(email="bola@example.com", display_name="Bola"))


@pytest.fixture
def agent(test_db: Session) -> Agent:
    return add(
        test_db,
        Agent(username="chidi", email="chidi@linescout.app", role=AgentRole.agent.value),
    )


@pytest.fixture
def other_agent(test_db: Session) -> Agent:
    return add(
        test_db,
        Agent(username="dayo", email="dayo@linescout.app", role=AgentRole.agent.value),
    )


@pytest.fixture
def admin(test_db: Session) -> Agent:
    return add(
        test_db,
        Agent(username="root", email="ops@linescout.app", role=AgentRole.admin.value),
    )
