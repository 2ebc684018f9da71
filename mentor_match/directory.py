"""Read-only user directory: Person snapshots for the matcher.

Mentors and mentees are returned ordered by id so that scoring ties resolve
the same way on every database.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import models
from .db import StoreUnavailableError, store_errors
from .models import MentorshipStatus, MentorshipType, RoleType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Person:
    """Snapshot of a user as seen by the matcher."""
    id: str
    name: str
    email: str
    capabilities: frozenset[str] = frozenset()
    chapter_id: str | None = None
    chapter_name: str | None = None
    interests: list[str] = field(default_factory=list)
    bio: str | None = None
    active_mentee_count: int = 0

    def has(self, role: RoleType | str) -> bool:
        return RoleType(role).value in self.capabilities


def person_from_user(user: models.User, active_mentee_count: int = 0) -> Person:
    """Build a Person from a User loaded with roles, profile and chapter."""
    profile = user.profile
    return Person(
        id=user.id,
        name=user.name,
        email=user.email,
        capabilities=frozenset(r.role.value for r in user.roles),
        chapter_id=user.chapter_id,
        chapter_name=user.chapter.name if user.chapter else None,
        interests=list(profile.interests or []) if profile else [],
        bio=profile.bio if profile else None,
        active_mentee_count=active_mentee_count,
    )


def _users_with_role(role: RoleType):
    return (
        select(models.User)
        .where(models.User.roles.any(models.UserRole.role == role))
        .options(
            selectinload(models.User.roles),
            selectinload(models.User.profile),
            selectinload(models.User.chapter),
        )
        .order_by(models.User.id)
    )


class UserDirectory:
    """SQLAlchemy-backed directory of program participants."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _execute(self, query, operation: str):
        try:
            with store_errors(operation):
                return await self.session.execute(query)
        except StoreUnavailableError:
            # Leave the session usable for a retried read.
            await self.session.rollback()
            raise

    async def find_mentors(self) -> list[Person]:
        """All users holding MENTOR, each with their ACTIVE mentee count.

        The count spans every mentorship type.
        """
        result = await self._execute(_users_with_role(RoleType.MENTOR), "mentor lookup")
        mentors = result.scalars().all()
        if not mentors:
            return []

        counts_query = (
            select(models.Mentorship.mentor_id, func.count(models.Mentorship.id))
            .where(
                models.Mentorship.status == MentorshipStatus.ACTIVE,
                models.Mentorship.mentor_id.in_([m.id for m in mentors]),
            )
            .group_by(models.Mentorship.mentor_id)
        )
        counts_result = await self._execute(counts_query, "mentor workload count")
        counts = {mentor_id: count for mentor_id, count in counts_result.all()}

        logger.debug(f"Loaded {len(mentors)} mentors")
        return [person_from_user(m, counts.get(m.id, 0)) for m in mentors]

    async def find_mentees(
        self,
        capability: RoleType,
        exclude_active_type: MentorshipType,
    ) -> list[Person]:
        """Users holding `capability` with no ACTIVE mentee pairing of `exclude_active_type`."""
        already_paired = select(models.Mentorship.mentee_id).where(
            models.Mentorship.status == MentorshipStatus.ACTIVE,
            models.Mentorship.type == exclude_active_type,
        )
        query = _users_with_role(capability).where(models.User.id.not_in(already_paired))

        result = await self._execute(query, "mentee lookup")
        mentees = result.scalars().all()

        logger.debug(f"Loaded {len(mentees)} unmatched {capability.value} mentees")
        return [person_from_user(m) for m in mentees]

    async def count_with_role(self, role: RoleType) -> int:
        query = select(func.count(models.UserRole.id)).where(models.UserRole.role == role)
        return (await self._execute(query, "role count")).scalar_one()
