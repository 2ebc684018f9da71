"""Shared fixtures: a throwaway SQLite database per test and seeding helpers."""
from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from mentor_match import models
from mentor_match.auth import AdminSession
from mentor_match.db import enable_sqlite_foreign_keys
from mentor_match.directory import Person
from mentor_match.models import MentorshipStatus, MentorshipType, RoleType


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = enable_sqlite_foreign_keys(
        create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mentor_match.db'}")
    )
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def unreachable_engine(tmp_path):
    # The parent directory does not exist, so SQLite cannot open the file.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'mentor_match.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
def unreachable_session_maker(unreachable_engine):
    return async_sessionmaker(bind=unreachable_engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def admin():
    return AdminSession(user_id="admin-1", roles=frozenset({"ADMIN"}))


async def add_user(
    session: AsyncSession,
    user_id: str,
    roles: list[RoleType],
    *,
    chapter: models.Chapter | None = None,
    interests: list[str] | None = None,
    bio: str | None = None,
) -> models.User:
    user = models.User(
        id=user_id,
        name=user_id.replace("-", " ").title(),
        email=f"{user_id}@example.org",
        chapter=chapter,
        roles=[models.UserRole(role=r) for r in roles],
    )
    if interests is not None or bio is not None:
        user.profile = models.UserProfile(interests=interests or [], bio=bio)
    session.add(user)
    await session.commit()
    return user


async def add_chapter(session: AsyncSession, chapter_id: str, name: str) -> models.Chapter:
    chapter = models.Chapter(id=chapter_id, name=name)
    session.add(chapter)
    await session.commit()
    return chapter


async def add_pairing(
    session: AsyncSession,
    mentor_id: str,
    mentee_id: str,
    type: MentorshipType,
    status: MentorshipStatus = MentorshipStatus.ACTIVE,
) -> models.Mentorship:
    pairing = models.Mentorship(mentor_id=mentor_id, mentee_id=mentee_id, type=type, status=status)
    session.add(pairing)
    await session.commit()
    return pairing


def person(
    person_id: str,
    *roles: str,
    interests: list[str] | None = None,
    chapter_id: str | None = None,
    chapter_name: str | None = None,
    bio: str | None = None,
    active: int = 0,
) -> Person:
    return Person(
        id=person_id,
        name=person_id.title(),
        email=f"{person_id}@example.org",
        capabilities=frozenset(roles),
        chapter_id=chapter_id,
        chapter_name=chapter_name,
        interests=interests or [],
        bio=bio,
        active_mentee_count=active,
    )
