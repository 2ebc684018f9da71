"""Directory, store and matcher against a real (SQLite) database."""
import asyncio

import pytest
from conftest import add_chapter, add_pairing, add_user

from mentor_match import models
from mentor_match.db import StoreUnavailableError
from mentor_match.directory import UserDirectory
from mentor_match.models import MentorshipStatus, MentorshipType, RoleType
from mentor_match.pipelines.matching import MentorMatcher, ValidationError
from mentor_match.store import (
    DuplicatePairingError,
    MentorshipStore,
    MentorshipStoreError,
    PairingNotFoundError,
)

MENTOR = RoleType.MENTOR
STUDENT = RoleType.STUDENT
INSTRUCTOR = RoleType.INSTRUCTOR


async def test_mentor_workload_counts_every_type(session):
    await add_user(session, "mentor-a", [MENTOR])
    await add_user(session, "student-1", [STUDENT])
    await add_user(session, "instructor-1", [INSTRUCTOR])
    await add_user(session, "student-2", [STUDENT])
    await add_pairing(session, "mentor-a", "student-1", MentorshipType.STUDENT)
    await add_pairing(session, "mentor-a", "instructor-1", MentorshipType.INSTRUCTOR)
    await add_pairing(session, "mentor-a", "student-2", MentorshipType.STUDENT, MentorshipStatus.ENDED)

    [mentor] = await UserDirectory(session).find_mentors()

    assert mentor.active_mentee_count == 2


async def test_person_snapshot_carries_profile_and_chapter(session):
    chapter = await add_chapter(session, "ch-1", "Lincoln HS")
    await add_user(session, "mentor-a", [MENTOR, INSTRUCTOR], chapter=chapter, interests=["Music"], bio="Hi")
    await add_user(session, "mentor-b", [MENTOR])

    mentors = await UserDirectory(session).find_mentors()

    assert [m.id for m in mentors] == ["mentor-a", "mentor-b"]
    assert mentors[0].chapter_name == "Lincoln HS"
    assert mentors[0].interests == ["Music"]
    assert mentors[0].has(INSTRUCTOR)
    assert mentors[1].interests == [] and mentors[1].bio is None


async def test_mentees_exclude_only_active_pairing_of_type(session):
    await add_user(session, "mentor-a", [MENTOR])
    await add_user(session, "dual", [STUDENT, INSTRUCTOR])
    await add_user(session, "student-2", [STUDENT])
    await add_user(session, "student-3", [STUDENT])
    await add_pairing(session, "mentor-a", "dual", MentorshipType.STUDENT)
    await add_pairing(session, "mentor-a", "student-3", MentorshipType.STUDENT, MentorshipStatus.ENDED)
    directory = UserDirectory(session)

    students = await directory.find_mentees(STUDENT, MentorshipType.STUDENT)
    instructors = await directory.find_mentees(INSTRUCTOR, MentorshipType.INSTRUCTOR)

    assert [p.id for p in students] == ["student-2", "student-3"]
    assert [p.id for p in instructors] == ["dual"]


async def test_compute_matches_end_to_end(session, admin):
    chapter = await add_chapter(session, "ch-x", "Lincoln HS")
    other = await add_chapter(session, "ch-y", "Roosevelt")
    await add_user(session, "mentor-a", [MENTOR], chapter=chapter, interests=["music", "art"], bio="set")
    await add_user(session, "mentor-b", [MENTOR], chapter=other)
    await add_user(session, "mentee-m", [STUDENT], chapter=chapter, interests=["music"])
    await add_user(session, "mentee-paired", [STUDENT])
    await add_pairing(session, "mentor-b", "mentee-paired", MentorshipType.STUDENT)

    suggestions = await MentorMatcher.from_session(session).compute_matches(admin, "STUDENT")

    assert len(suggestions) == 1
    [s] = suggestions
    assert (s.mentor_id, s.mentee_id, s.match_score) == ("mentor-a", "mentee-m", 70)
    assert s.mentor_chapter == "Lincoln HS"
    assert s.match_reasons[0] == "1 shared interest: music"


async def test_compute_matches_without_mentors(session, admin):
    await add_user(session, "mentee-m", [STUDENT])

    assert await MentorMatcher.from_session(session).compute_matches(admin, "STUDENT") == []


async def test_approve_creates_active_pairing(session, admin):
    await add_user(session, "mentor-a", [MENTOR])
    await add_user(session, "mentee-m", [STUDENT])
    store = MentorshipStore(session)

    await MentorMatcher.from_session(session).approve_match(admin, "mentor-a", "mentee-m", "STUDENT")

    pairing = await store.find_active("mentor-a", "mentee-m", MentorshipType.STUDENT)
    assert pairing is not None
    assert pairing.status == MentorshipStatus.ACTIVE
    assert pairing.notes == "Created via Mentor Match Algorithm"


async def test_approve_existing_pairing_leaves_store_unchanged(session, admin):
    await add_user(session, "mentor-a", [MENTOR])
    await add_user(session, "mentee-m", [STUDENT])
    matcher = MentorMatcher.from_session(session)
    store = MentorshipStore(session)

    await matcher.approve_match(admin, "mentor-a", "mentee-m", "STUDENT")
    with pytest.raises(DuplicatePairingError):
        await matcher.approve_match(admin, "mentor-a", "mentee-m", "STUDENT")

    assert await store.count() == 1


async def test_approve_missing_field(session, admin):
    with pytest.raises(ValidationError, match="Missing required fields"):
        await MentorMatcher.from_session(session).approve_match(admin, "", "mentee-m", "STUDENT")
    assert await MentorshipStore(session).count() == 0


async def test_same_triple_other_type_is_independent(session, admin):
    await add_user(session, "mentor-a", [MENTOR])
    await add_user(session, "dual", [STUDENT, INSTRUCTOR])
    matcher = MentorMatcher.from_session(session)

    await matcher.approve_match(admin, "mentor-a", "dual", "STUDENT")
    await matcher.approve_match(admin, "mentor-a", "dual", "INSTRUCTOR")

    assert await MentorshipStore(session).count(MentorshipStatus.ACTIVE) == 2


async def test_unique_index_rejects_second_active_insert(session):
    await add_user(session, "mentor-a", [MENTOR])
    await add_user(session, "mentee-m", [STUDENT])
    store = MentorshipStore(session)

    await store.insert("mentor-a", "mentee-m", MentorshipType.STUDENT)
    with pytest.raises(DuplicatePairingError):
        await store.insert("mentor-a", "mentee-m", MentorshipType.STUDENT)

    assert await store.count() == 1


async def test_concurrent_approvals_create_one_row(session_maker, admin):
    async with session_maker() as setup:
        await add_user(setup, "mentor-a", [MENTOR])
        await add_user(setup, "mentee-m", [STUDENT])

    async def approve():
        async with session_maker() as session:
            await MentorMatcher.from_session(session).approve_match(admin, "mentor-a", "mentee-m", "STUDENT")

    results = await asyncio.gather(approve(), approve(), return_exceptions=True)

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], DuplicatePairingError)
    async with session_maker() as check:
        assert await MentorshipStore(check).count() == 1


async def test_end_pairing_frees_triple(session, admin):
    await add_user(session, "mentor-a", [MENTOR])
    await add_user(session, "mentee-m", [STUDENT])
    store = MentorshipStore(session)
    matcher = MentorMatcher.from_session(session)
    await matcher.approve_match(admin, "mentor-a", "mentee-m", "STUDENT")
    pairing = await store.find_active("mentor-a", "mentee-m", MentorshipType.STUDENT)

    ended = await store.end(pairing.id)
    assert ended.status == MentorshipStatus.ENDED
    assert ended.ended_at is not None

    suggestions = await matcher.compute_matches(admin, "STUDENT")
    assert [s.mentee_id for s in suggestions] == ["mentee-m"]

    await matcher.approve_match(admin, "mentor-a", "mentee-m", "STUDENT")
    assert await store.count() == 2
    assert await store.count(MentorshipStatus.ACTIVE) == 1


async def test_end_unknown_pairing(session):
    with pytest.raises(PairingNotFoundError):
        await MentorshipStore(session).end("missing")


async def test_list_active_loads_people(session):
    await add_user(session, "mentor-a", [MENTOR])
    await add_user(session, "mentee-m", [STUDENT])
    await add_pairing(session, "mentor-a", "mentee-m", MentorshipType.STUDENT)

    [pairing] = await MentorshipStore(session).list_active()

    assert pairing.mentor.email == "mentor-a@example.org"
    assert pairing.mentee.name == "Mentee M"


async def test_pairing_with_unknown_users_is_rejected(session):
    await add_user(session, "mentor-a", [MENTOR])
    store = MentorshipStore(session)

    with pytest.raises(MentorshipStoreError) as excinfo:
        await store.insert("mentor-a", "nobody", MentorshipType.STUDENT)

    assert not isinstance(excinfo.value, DuplicatePairingError)
    assert await store.count() == 0


async def test_unreachable_database_reads(unreachable_session_maker):
    async with unreachable_session_maker() as session:
        with pytest.raises(StoreUnavailableError, match="mentor lookup"):
            await UserDirectory(session).find_mentors()
        with pytest.raises(StoreUnavailableError, match="pairing lookup"):
            await MentorshipStore(session).find_active("mentor-a", "mentee-m", MentorshipType.STUDENT)


async def test_compute_matches_recovers_once_database_is_back(
    tmp_path, unreachable_engine, unreachable_session_maker, admin
):
    async with unreachable_session_maker() as session:
        matcher = MentorMatcher.from_session(session)
        with pytest.raises(StoreUnavailableError):
            await matcher.compute_matches(admin, "STUDENT")

        (tmp_path / "missing").mkdir()
        async with unreachable_engine.begin() as conn:
            await conn.run_sync(models.Base.metadata.create_all)

        # The failed read was rolled back, so the same session serves the retry.
        assert await matcher.compute_matches(admin, "STUDENT") == []
