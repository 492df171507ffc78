"""
Shared fixtures for the moderation engine tests.

Each test gets its own SQLite database file, so concurrent sessions behave
like separate staff members hitting the same store.
"""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from moderation_engine.core.config import Settings
from moderation_engine.core.positions import get_position
from moderation_engine.core.security import Actor, StaffLevel
from moderation_engine.models import Base, Case
from moderation_engine.services import ModerationService


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def db_engine(tmp_path):
    """Fresh database with the full schema."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'moderation.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    """A session for exercising components directly."""
    async with session_factory() as session:
        yield session


# =============================================================================
# SERVICE
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def service(session_factory, settings) -> ModerationService:
    return ModerationService(session_factory=session_factory, settings=settings)


# =============================================================================
# ACTORS
# =============================================================================


@pytest.fixture
def regular_user() -> Actor:
    return Actor(id=uuid4(), level=StaffLevel.USER)


@pytest.fixture
def trial_mod() -> Actor:
    return Actor(id=uuid4(), level=StaffLevel.TRIAL_MOD)


@pytest.fixture
def moderator() -> Actor:
    return Actor(id=uuid4(), level=StaffLevel.MODERATOR)


@pytest.fixture
def other_moderator() -> Actor:
    return Actor(id=uuid4(), level=StaffLevel.MODERATOR)


@pytest.fixture
def head_mod() -> Actor:
    return Actor(id=uuid4(), level=StaffLevel.HEAD_MOD)


@pytest.fixture
def subject_id() -> UUID:
    return uuid4()


# =============================================================================
# CASES
# =============================================================================


def position_answers(position_id: str = "moderator", seconds: int = 30) -> list[dict]:
    """An answer to every question of a position."""
    position = get_position(position_id)
    return [
        {"question_id": q.id, "answer": f"Answer to {q.title}", "time_to_answer": seconds}
        for q in position.questions
    ]


@pytest.fixture
async def report(service, subject_id):
    """An open report against ``subject_id``."""
    result = await service.submit_report(
        subject_user_id=subject_id,
        reason="Harassment",
        details="Sends abusive messages to new members",
        reporter_id=uuid4(),
    )
    assert result.ok
    return result.value


@pytest.fixture
async def application(service, subject_id):
    """A submitted moderator application from ``subject_id``."""
    result = await service.submit_application(
        user_id=subject_id,
        position_id="moderator",
        responses=position_answers(),
    )
    assert result.ok
    return result.value


async def set_case_fields(session_factory, case_id: UUID, **values) -> None:
    """Rewrite case columns directly, bypassing the version check."""
    async with session_factory() as session, session.begin():
        await session.execute(update(Case.__table__).where(Case.__table__.c.id == case_id).values(**values))
