"""FastAPI app for the admin mentor-match tooling.

Every /admin route depends on `require_admin`; the resulting AdminSession is
passed down into the matcher.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Form, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import AdminSession, UnauthorizedError, require_admin
from .config import settings
from .db import StoreUnavailableError, get_session
from .directory import UserDirectory
from .logging_config import setup_logging
from .models import MentorshipStatus, RoleType
from .pipelines.matching import MatchingError, MatchSuggestion, MentorMatcher, ValidationError
from .store import DuplicatePairingError, MentorshipStore, MentorshipStoreError, PairingNotFoundError

logger = logging.getLogger(__name__)

# Views that render mentorship data and must re-fetch after a pairing changes.
MENTORSHIP_VIEWS = ["/admin/mentor-match", "/mentorship"]


# Pydantic response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class ComputeMatchesRequest(BaseModel):
    """Run the matcher for one mentorship type."""
    type: str = Field(description="INSTRUCTOR or STUDENT")


class FactorTraceDTO(BaseModel):
    """Per-factor score contribution."""
    factor: str
    status: str
    score_delta: int
    reason: str | None = None


class MatchSuggestionDTO(BaseModel):
    """Single mentor suggestion for a mentee."""
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
    type: str
    strength: str
    factor_trace: list[FactorTraceDTO] = Field(default_factory=list)

    @classmethod
    def from_suggestion(cls, s: MatchSuggestion) -> MatchSuggestionDTO:
        return cls(
            mentor_id=s.mentor_id,
            mentor_name=s.mentor_name,
            mentor_email=s.mentor_email,
            mentor_chapter=s.mentor_chapter,
            mentor_interests=s.mentor_interests,
            mentor_current_mentees=s.mentor_current_mentees,
            mentee_id=s.mentee_id,
            mentee_name=s.mentee_name,
            mentee_email=s.mentee_email,
            mentee_chapter=s.mentee_chapter,
            mentee_interests=s.mentee_interests,
            match_score=s.match_score,
            match_reasons=s.match_reasons,
            type=s.type.value,
            strength=s.strength.value,
            factor_trace=[
                FactorTraceDTO(
                    factor=t.factor.value,
                    status=t.status.value,
                    score_delta=t.score_delta,
                    reason=t.reason,
                )
                for t in s.factor_trace
            ],
        )


class ComputeMatchesResponse(BaseModel):
    """Matcher run response."""
    status: str
    type: str
    count: int
    suggestions: list[MatchSuggestionDTO]
    computed_at: str


class ApproveMatchResponse(BaseModel):
    """Approval response."""
    status: str
    message: str
    invalidated_views: list[str]


class ActiveMentorshipDTO(BaseModel):
    """ACTIVE pairing row for the admin overview."""
    id: str
    mentor_name: str
    mentor_email: str
    mentee_name: str
    mentee_email: str
    type: str
    start_date: str


class OverviewResponse(BaseModel):
    """Mentor-match admin page data."""
    mentor_count: int
    instructor_count: int
    student_count: int
    active_mentorships: list[ActiveMentorshipDTO]


class StatsResponse(BaseModel):
    """Mentorship totals."""
    total_mentorships: int
    active_mentorships: int


class EndMentorshipResponse(BaseModel):
    """Ended pairing."""
    status: str
    id: str
    ended_at: str
    invalidated_views: list[str]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    description="Admin tooling for pairing mentors with instructors and students",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],  # Frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, detail: str | None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


# Exception handlers
@app.exception_handler(UnauthorizedError)
async def unauthorized_handler(request, exc: UnauthorizedError):
    """Generic access-denied response; no detail about which check failed."""
    logger.warning(f"Access denied on {request.url.path}: {exc}")
    if exc.authenticated:
        return _error(status.HTTP_403_FORBIDDEN, "forbidden", "Unauthorized")
    return _error(status.HTTP_401_UNAUTHORIZED, "unauthorized", "Unauthorized")


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    logger.warning(f"Validation error: {exc}")
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_error", str(exc))


@app.exception_handler(DuplicatePairingError)
async def duplicate_pairing_handler(request, exc: DuplicatePairingError):
    logger.warning(f"Duplicate pairing: {exc}")
    return _error(status.HTTP_409_CONFLICT, "duplicate_pairing", str(exc))


@app.exception_handler(PairingNotFoundError)
async def pairing_not_found_handler(request, exc: PairingNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, "not_found", str(exc))


@app.exception_handler(MentorshipStoreError)
async def store_error_handler(request, exc: MentorshipStoreError):
    logger.error(f"Pairing rejected: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, "pairing_rejected", str(exc))


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request, exc: StoreUnavailableError):
    logger.error(f"Store unavailable: {exc}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "store_unavailable", str(exc))


@app.exception_handler(MatchingError)
async def matching_error_handler(request, exc: MatchingError):
    """Handle matching pipeline errors."""
    logger.error(f"Matching error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "matching_error", str(exc))


def get_matcher(session: AsyncSession = Depends(get_session)) -> MentorMatcher:
    return MentorMatcher.from_session(session)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        version=settings.version,
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "compute_matches": "/admin/mentor-match/compute",
            "approve_match": "/admin/mentor-match/approve",
            "overview": "/admin/mentor-match/overview",
            "stats": "/admin/mentorships/stats",
            "end_mentorship": "/admin/mentorships/{mentorship_id}/end",
            "docs": "/docs",
        },
    }


@app.post(
    "/admin/mentor-match/compute",
    response_model=ComputeMatchesResponse,
    status_code=status.HTTP_200_OK,
)
async def compute_matches(
    request: ComputeMatchesRequest,
    admin: AdminSession = Depends(require_admin),
    matcher: MentorMatcher = Depends(get_matcher),
) -> ComputeMatchesResponse:
    """Run the matching algorithm for unmatched instructor or student mentees.

    Suggestions are computed fresh on every call and are not stored.
    """
    suggestions = await matcher.compute_matches(admin, request.type)

    return ComputeMatchesResponse(
        status="success",
        type=request.type,
        count=len(suggestions),
        suggestions=[MatchSuggestionDTO.from_suggestion(s) for s in suggestions],
        computed_at=datetime.utcnow().isoformat(),
    )


@app.post(
    "/admin/mentor-match/approve",
    response_model=ApproveMatchResponse,
    status_code=status.HTTP_201_CREATED,
)
async def approve_match(
    mentor_id: str = Form(default="", alias="mentorId"),
    mentee_id: str = Form(default="", alias="menteeId"),
    type: str = Form(default=""),
    admin: AdminSession = Depends(require_admin),
    matcher: MentorMatcher = Depends(get_matcher),
) -> ApproveMatchResponse:
    """Approve a suggested pairing as an ACTIVE mentorship.

    Form fields: mentorId, menteeId, type. Field presence is checked by the
    matcher so a missing field surfaces as a validation_error.
    """
    await matcher.approve_match(admin, mentor_id, mentee_id, type)

    logger.info(f"Invalidating views after approval: {', '.join(MENTORSHIP_VIEWS)}")
    return ApproveMatchResponse(
        status="success",
        message="Mentorship pairing created",
        invalidated_views=MENTORSHIP_VIEWS,
    )


@app.get("/admin/mentor-match/overview", response_model=OverviewResponse)
async def overview(
    admin: AdminSession = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> OverviewResponse:
    """Participant counts and current ACTIVE pairings."""
    directory = UserDirectory(session)
    store = MentorshipStore(session)

    active = await store.list_active()

    return OverviewResponse(
        mentor_count=await directory.count_with_role(RoleType.MENTOR),
        instructor_count=await directory.count_with_role(RoleType.INSTRUCTOR),
        student_count=await directory.count_with_role(RoleType.STUDENT),
        active_mentorships=[
            ActiveMentorshipDTO(
                id=m.id,
                mentor_name=m.mentor.name,
                mentor_email=m.mentor.email,
                mentee_name=m.mentee.name,
                mentee_email=m.mentee.email,
                type=m.type.value,
                start_date=m.created_at.isoformat(),
            )
            for m in active
        ],
    )


@app.get("/admin/mentorships/stats", response_model=StatsResponse)
async def mentorship_stats(
    admin: AdminSession = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> StatsResponse:
    store = MentorshipStore(session)
    return StatsResponse(
        total_mentorships=await store.count(),
        active_mentorships=await store.count(MentorshipStatus.ACTIVE),
    )


@app.post("/admin/mentorships/{mentorship_id}/end", response_model=EndMentorshipResponse)
async def end_mentorship(
    mentorship_id: str,
    admin: AdminSession = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> EndMentorshipResponse:
    """End an ACTIVE pairing; the mentee becomes matchable again for that type."""
    pairing = await MentorshipStore(session).end(mentorship_id)
    logger.info(f"Mentorship {mentorship_id} ended by admin {admin.user_id}")

    return EndMentorshipResponse(
        status="success",
        id=pairing.id,
        ended_at=pairing.ended_at.isoformat(),
        invalidated_views=MENTORSHIP_VIEWS,
    )
