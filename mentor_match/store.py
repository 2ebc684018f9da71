"""Mentorship pairing persistence.

The at-most-one-ACTIVE rule for a (mentor, mentee, type) triple is held by
the `uq_mentorships_active_pairing` partial index; `insert` turns a violation
of that index into DuplicatePairingError.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import models
from .db import store_errors
from .models import MentorshipStatus, MentorshipType

logger = logging.getLogger(__name__)


class MentorshipStoreError(Exception):
    """Raised when a pairing write is rejected by the database."""
    pass


class DuplicatePairingError(MentorshipStoreError):
    """Raised when an ACTIVE pairing already exists for the triple."""

    def __init__(self, message: str = "This mentorship pairing already exists"):
        super().__init__(message)


class PairingNotFoundError(MentorshipStoreError):
    """Raised when no ACTIVE pairing has the requested id."""
    pass


class MentorshipStore:
    """Queries and writes `mentorships` rows through one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_active(
        self,
        mentor_id: str,
        mentee_id: str,
        type: MentorshipType,
    ) -> models.Mentorship | None:
        query = select(models.Mentorship).where(
            models.Mentorship.mentor_id == mentor_id,
            models.Mentorship.mentee_id == mentee_id,
            models.Mentorship.type == type,
            models.Mentorship.status == MentorshipStatus.ACTIVE,
        )
        with store_errors("pairing lookup"):
            result = await self.session.execute(query)
            return result.scalars().first()

    async def insert(
        self,
        mentor_id: str,
        mentee_id: str,
        type: MentorshipType,
        *,
        notes: str | None = None,
    ) -> models.Mentorship:
        """Insert and commit an ACTIVE pairing.

        Raises:
            DuplicatePairingError: If another ACTIVE pairing for the triple
                was committed first
            MentorshipStoreError: If the row is rejected for another reason
        """
        pairing = models.Mentorship(
            mentor_id=mentor_id,
            mentee_id=mentee_id,
            type=type,
            status=MentorshipStatus.ACTIVE,
            notes=notes,
        )
        self.session.add(pairing)

        with store_errors("pairing insert"):
            try:
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                if await self.find_active(mentor_id, mentee_id, type) is not None:
                    logger.warning(
                        f"Concurrent approval lost for mentor={mentor_id} mentee={mentee_id} type={type.value}"
                    )
                    raise DuplicatePairingError() from e
                logger.error(f"Pairing insert rejected: {e}")
                raise MentorshipStoreError(f"Pairing rejected by database: {e.orig}") from e

        logger.info(f"Created {type.value} mentorship {pairing.id}: mentor={mentor_id} mentee={mentee_id}")
        return pairing

    async def end(self, pairing_id: str) -> models.Mentorship:
        """Mark an ACTIVE pairing as ENDED, freeing its triple."""
        query = select(models.Mentorship).where(
            models.Mentorship.id == pairing_id,
            models.Mentorship.status == MentorshipStatus.ACTIVE,
        )
        with store_errors("pairing end"):
            pairing = (await self.session.execute(query)).scalar_one_or_none()
            if pairing is None:
                raise PairingNotFoundError(f"No active mentorship with id {pairing_id}")

            pairing.status = MentorshipStatus.ENDED
            pairing.ended_at = datetime.utcnow()
            await self.session.commit()

        logger.info(f"Ended mentorship {pairing_id}")
        return pairing

    async def list_active(self) -> list[models.Mentorship]:
        """ACTIVE pairings with mentor and mentee loaded, newest first."""
        query = (
            select(models.Mentorship)
            .where(models.Mentorship.status == MentorshipStatus.ACTIVE)
            .options(
                selectinload(models.Mentorship.mentor),
                selectinload(models.Mentorship.mentee),
            )
            .order_by(models.Mentorship.created_at.desc(), models.Mentorship.id)
        )
        with store_errors("active pairing listing"):
            result = await self.session.execute(query)
            return list(result.scalars().all())

    async def count(self, status: MentorshipStatus | None = None) -> int:
        query = select(func.count(models.Mentorship.id))
        if status is not None:
            query = query.where(models.Mentorship.status == status)
        with store_errors("pairing count"):
            return (await self.session.execute(query)).scalar_one()
