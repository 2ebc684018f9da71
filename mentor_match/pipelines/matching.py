"""Mentor matching pipeline: one best mentor per unmatched mentee, plus approval.

Workflow for a matching run:
1. Load mentors (with their ACTIVE mentee counts) and unmatched mentees
2. Score every mentor against every mentee
3. Keep the strictly best mentor per mentee
4. Sort the suggestions by score, highest first

Nothing is cached: each run reads a fresh snapshot.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from mentor_match.auth import AdminSession, UnauthorizedError
from mentor_match.db import StoreUnavailableError
from mentor_match.directory import Person, UserDirectory
from mentor_match.models import MentorshipType
from mentor_match.scoring import FactorTrace, MatchScorer, MatchStrength
from mentor_match.store import DuplicatePairingError, MentorshipStore

logger = logging.getLogger(__name__)


@dataclass
class MatchSuggestion:
    """Best available mentor for one mentee. Never persisted."""
    mentor_id: str
    mentor_name: str
    mentor_email: str
    mentor_chapter: str | None
    mentor_interests: list[str]
    mentor_current_mentees: int
    mentee_id: str
    mentee_name: str
    mentee_email: str
    mentee_chapter: str | None
    mentee_interests: list[str]
    match_score: int
    match_reasons: list[str]
    type: MentorshipType
    strength: MatchStrength
    factor_trace: list[FactorTrace] = field(default_factory=list)


class MatchingError(Exception):
    """Raised when a matching run fails unexpectedly."""
    pass


class ValidationError(Exception):
    """Raised when approval input is incomplete or malformed."""
    pass


def parse_mentorship_type(value: MentorshipType | str | None) -> MentorshipType:
    if not value:
        raise ValidationError("Missing required fields")
    try:
        return MentorshipType(value)
    except ValueError as e:
        raise ValidationError(f"Invalid mentorship type: {value}") from e


def best_match(
    mentee: Person,
    mentors: list[Person],
    type: MentorshipType,
    scorer: MatchScorer,
) -> MatchSuggestion | None:
    """Pick the strictly highest-scoring mentor; the earliest mentor wins ties."""
    best: MatchSuggestion | None = None
    best_score = -1

    for mentor in mentors:
        if mentor.id == mentee.id:
            continue

        score, traces = scorer.evaluate(mentor, mentee)
        if score > best_score:
            best_score = score
            best = MatchSuggestion(
                mentor_id=mentor.id,
                mentor_name=mentor.name,
                mentor_email=mentor.email,
                mentor_chapter=mentor.chapter_name,
                mentor_interests=list(mentor.interests),
                mentor_current_mentees=mentor.active_mentee_count,
                mentee_id=mentee.id,
                mentee_name=mentee.name,
                mentee_email=mentee.email,
                mentee_chapter=mentee.chapter_name,
                mentee_interests=list(mentee.interests),
                match_score=score,
                match_reasons=scorer.reasons(traces),
                type=type,
                strength=scorer.strength(score),
                factor_trace=traces,
            )

    return best


def rank_suggestions(
    mentors: list[Person],
    mentees: list[Person],
    type: MentorshipType,
    scorer: MatchScorer | None = None,
) -> list[MatchSuggestion]:
    """Score all pairs and return one suggestion per mentee, best first.

    Mentors and mentees are ordered by id first, so equal scores always
    resolve the same way regardless of how the directory returned them.
    """
    scorer = scorer or MatchScorer()
    if not mentors or not mentees:
        return []

    ordered_mentors = sorted(mentors, key=lambda p: p.id)
    suggestions = []
    for mentee in sorted(mentees, key=lambda p: p.id):
        suggestion = best_match(mentee, ordered_mentors, type, scorer)
        if suggestion is not None:
            suggestions.append(suggestion)

    suggestions.sort(key=lambda s: (-s.match_score, s.mentee_id))
    return suggestions


class MentorMatcher:
    """Computes match suggestions and approves them as ACTIVE mentorships."""

    def __init__(
        self,
        directory: UserDirectory,
        store: MentorshipStore,
        *,
        scorer: MatchScorer | None = None,
        read_attempts: int | None = None,
    ):
        self.directory = directory
        self.store = store
        self.scorer = scorer or MatchScorer()
        self.config = self.scorer.config
        self.read_attempts = read_attempts or self.config.read_attempts

    @classmethod
    def from_session(cls, session: AsyncSession) -> MentorMatcher:
        return cls(UserDirectory(session), MentorshipStore(session))

    @staticmethod
    def _check_admin(admin: AdminSession) -> None:
        if not isinstance(admin, AdminSession) or not admin.is_admin:
            raise UnauthorizedError("Unauthorized")

    async def _load_pools(self, type: MentorshipType) -> tuple[list[Person], list[Person]]:
        # Reads are idempotent, so a dropped connection is retried.
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.read_attempts),
            wait=wait_exponential(multiplier=0.1, max=1),
            retry=retry_if_exception_type(StoreUnavailableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                mentors = await self.directory.find_mentors()
                mentees = await self.directory.find_mentees(type.mentee_role, type) if mentors else []
        return mentors, mentees

    async def compute_matches(
        self,
        admin: AdminSession,
        type: MentorshipType | str,
    ) -> list[MatchSuggestion]:
        """Suggest the best mentor for every mentee without an ACTIVE pairing of `type`.

        Args:
            admin: Validated admin session for the request
            type: INSTRUCTOR or STUDENT; selects the mentee capability

        Returns:
            Suggestions sorted by match_score descending (empty if either pool is empty)

        Raises:
            UnauthorizedError: If `admin` is not an admin session
            ValidationError: If `type` is not a mentorship type
            StoreUnavailableError: If the directory stays unreachable after retrying
            MatchingError: On any other failure
        """
        self._check_admin(admin)
        mentorship_type = parse_mentorship_type(type)

        try:
            logger.info(f"Computing {mentorship_type.value} mentor matches for admin {admin.user_id}")
            mentors, mentees = await self._load_pools(mentorship_type)

            if not mentors or not mentees:
                logger.info(
                    f"Nothing to match: {len(mentors)} mentors, {len(mentees)} unmatched mentees"
                )
                return []

            suggestions = rank_suggestions(mentors, mentees, mentorship_type, self.scorer)
            logger.info(
                f"Scored {len(mentors)} mentors x {len(mentees)} mentees, "
                f"returning {len(suggestions)} suggestions"
            )
            return suggestions

        except StoreUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Mentor matching failed: {e}", exc_info=True)
            raise MatchingError(f"Mentor matching failed: {e}") from e

    async def approve_match(
        self,
        admin: AdminSession,
        mentor_id: str | None,
        mentee_id: str | None,
        type: MentorshipType | str | None,
    ) -> None:
        """Persist a suggestion as an ACTIVE mentorship.

        Never retried: after an ambiguous failure the caller re-fetches state.

        Raises:
            UnauthorizedError: If `admin` is not an admin session
            ValidationError: If a field is missing or `type` is unknown
            DuplicatePairingError: If the pairing is already ACTIVE
        """
        self._check_admin(admin)
        if not mentor_id or not mentee_id or not type:
            raise ValidationError("Missing required fields")
        mentorship_type = parse_mentorship_type(type)

        existing = await self.store.find_active(mentor_id, mentee_id, mentorship_type)
        if existing is not None:
            logger.info(f"Rejected duplicate approval: mentor={mentor_id} mentee={mentee_id}")
            raise DuplicatePairingError()

        await self.store.insert(
            mentor_id,
            mentee_id,
            mentorship_type,
            notes=self.config.approval_note,
        )
