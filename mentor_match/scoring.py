"""Factor-based scoring for mentor/mentee pairs.

Every factor produces a trace with its score delta and an optional
human-readable reason. Factors always run in the same order so the reasons
list shown to admins is stable between runs.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .config import MatchingSettings, settings

if TYPE_CHECKING:
    from .directory import Person

logger = logging.getLogger(__name__)


class FactorType(str, Enum):
    """Scoring factors, in evaluation order."""
    SHARED_INTERESTS = "shared_interests"
    SAME_CHAPTER = "same_chapter"
    WORKLOAD = "workload"
    PROFILE_COMPLETE = "profile_complete"


FACTOR_ORDER: tuple[FactorType, ...] = (
    FactorType.SHARED_INTERESTS,
    FactorType.SAME_CHAPTER,
    FactorType.WORKLOAD,
    FactorType.PROFILE_COMPLETE,
)


class FactorStatus(str, Enum):
    """Factor evaluation status."""
    PASS = "PASS"
    FAIL = "FAIL"


class MatchStrength(str, Enum):
    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"


@dataclass
class FactorTrace:
    """Audit trace for a single factor evaluation."""
    factor: FactorType
    status: FactorStatus
    score_delta: int = 0
    reason: str | None = None


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def shared_interests(mentor_interests: list[str], mentee_interests: list[str]) -> list[str]:
    """Case-insensitive intersection, in the mentee's order and spelling."""
    mentor_keys = {i.lower() for i in mentor_interests}
    return [i for i in mentee_interests if i.lower() in mentor_keys]


class MatchScorer:
    """Additive scorer over the four matching factors.

    With default settings the maximum is 40 + 20 + 30 + 10 = 100.
    """

    def __init__(self, config: MatchingSettings | None = None):
        self.config = config or settings.matching
        self._evaluators = {
            FactorType.SHARED_INTERESTS: self._eval_shared_interests,
            FactorType.SAME_CHAPTER: self._eval_same_chapter,
            FactorType.WORKLOAD: self._eval_workload,
            FactorType.PROFILE_COMPLETE: self._eval_profile_complete,
        }

    @property
    def max_score(self) -> int:
        return (
            self.config.max_interest_points
            + self.config.same_chapter_points
            + self.config.max_workload_points
            + self.config.complete_profile_points
        )

    def evaluate(self, mentor: Person, mentee: Person) -> tuple[int, list[FactorTrace]]:
        """Score one mentor against one mentee.

        Returns:
            Tuple of (total_score, factor_traces) with traces in FACTOR_ORDER
        """
        traces = [self._evaluators[factor](mentor, mentee) for factor in FACTOR_ORDER]
        total = sum(t.score_delta for t in traces)
        return total, traces

    @staticmethod
    def reasons(traces: list[FactorTrace]) -> list[str]:
        return [t.reason for t in traces if t.reason]

    def strength(self, score: int) -> MatchStrength:
        if score >= self.config.strong_match_threshold:
            return MatchStrength.STRONG
        if score >= self.config.moderate_match_threshold:
            return MatchStrength.MODERATE
        return MatchStrength.WEAK

    def _eval_shared_interests(self, mentor: Person, mentee: Person) -> FactorTrace:
        shared = shared_interests(mentor.interests, mentee.interests)
        if not shared:
            return FactorTrace(FactorType.SHARED_INTERESTS, FactorStatus.FAIL)

        points = min(len(shared) * self.config.points_per_shared_interest, self.config.max_interest_points)
        return FactorTrace(
            FactorType.SHARED_INTERESTS,
            FactorStatus.PASS,
            score_delta=points,
            reason=f"{len(shared)} shared {_plural(len(shared), 'interest')}: {', '.join(shared)}",
        )

    def _eval_same_chapter(self, mentor: Person, mentee: Person) -> FactorTrace:
        if not (mentor.chapter_id and mentee.chapter_id and mentor.chapter_id == mentee.chapter_id):
            return FactorTrace(FactorType.SAME_CHAPTER, FactorStatus.FAIL)

        return FactorTrace(
            FactorType.SAME_CHAPTER,
            FactorStatus.PASS,
            score_delta=self.config.same_chapter_points,
            reason=f"Same chapter: {mentor.chapter_name or 'Unknown'}",
        )

    def _eval_workload(self, mentor: Person, mentee: Person) -> FactorTrace:
        # Counts ACTIVE pairings of every type, not only the type being
        # matched: a mentor's load is judged across both programs.
        count = mentor.active_mentee_count
        points = max(0, self.config.max_workload_points - count * self.config.workload_penalty_per_mentee)

        if count == 0:
            reason = "Mentor has no current mentees"
        elif count <= 2:
            reason = f"Mentor has {count} current {_plural(count, 'mentee')}"
        else:
            reason = f"Mentor has {count} mentees (high load)"

        return FactorTrace(
            FactorType.WORKLOAD,
            FactorStatus.PASS if points > 0 else FactorStatus.FAIL,
            score_delta=points,
            reason=reason,
        )

    def _eval_profile_complete(self, mentor: Person, mentee: Person) -> FactorTrace:
        if not mentor.bio:
            return FactorTrace(FactorType.PROFILE_COMPLETE, FactorStatus.FAIL)

        return FactorTrace(
            FactorType.PROFILE_COMPLETE,
            FactorStatus.PASS,
            score_delta=self.config.complete_profile_points,
            reason="Mentor has a complete profile",
        )
