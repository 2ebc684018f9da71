"""Core SQLAlchemy models (2.x style) for users, chapters and mentorships.

Only the slice of the program schema the matcher reads or writes lives here.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class RoleType(str, Enum):
    """Capabilities a user may hold (several at once)."""
    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"
    MENTOR = "MENTOR"
    CHAPTER_LEAD = "CHAPTER_LEAD"
    PARENT = "PARENT"
    STAFF = "STAFF"


class MentorshipType(str, Enum):
    """Mentorship category; the value is also the mentee capability it selects."""
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"

    @property
    def mentee_role(self) -> RoleType:
        return RoleType(self.value)


class MentorshipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


class Chapter(Base):
    """Local program chapters (e.g. a school site)."""
    __tablename__ = "chapters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)

    members: Mapped[list[User]] = relationship("User", back_populates="chapter")


class User(Base):
    """Program participants."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    chapter_id: Mapped[str | None] = mapped_column(
        ForeignKey("chapters.id", ondelete="SET NULL"),
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)

    # Relationships
    chapter: Mapped[Chapter | None] = relationship("Chapter", back_populates="members")
    roles: Mapped[list[UserRole]] = relationship(
        "UserRole",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    profile: Mapped[UserProfile | None] = relationship(
        "UserProfile",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )


class UserRole(Base):
    """Capability assignments; one row per (user, role)."""
    __tablename__ = "user_roles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[RoleType] = mapped_column(SAEnum(RoleType, name="role_type"), nullable=False)

    user: Mapped[User] = relationship("User", back_populates="roles")

    __table_args__ = (
        Index("ix_user_roles_user_role", "user_id", "role", unique=True),
        Index("ix_user_roles_role", "role"),
    )


class UserProfile(Base):
    """Optional profile with interest tags and biography."""
    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    interests: Mapped[list[str] | None] = mapped_column(JSON)  # Array of free-text tags
    bio: Mapped[str | None] = mapped_column(Text)

    user: Mapped[User] = relationship("User", back_populates="profile")


class Mentorship(Base):
    """Mentor/mentee pairings.

    The partial unique index allows at most one ACTIVE row per
    (mentor, mentee, type); ENDED rows are kept as history.
    """
    __tablename__ = "mentorships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    mentor_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mentee_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[MentorshipType] = mapped_column(
        SAEnum(MentorshipType, name="mentorship_type"),
        nullable=False,
    )
    status: Mapped[MentorshipStatus] = mapped_column(
        SAEnum(MentorshipStatus, name="mentorship_status"),
        default=MentorshipStatus.ACTIVE,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=datetime.utcnow, nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Relationships
    mentor: Mapped[User] = relationship("User", foreign_keys=[mentor_id])
    mentee: Mapped[User] = relationship("User", foreign_keys=[mentee_id])

    __table_args__ = (
        Index("ix_mentorships_mentor_status", "mentor_id", "status"),
        Index("ix_mentorships_mentee_status_type", "mentee_id", "status", "type"),
        Index(
            "uq_mentorships_active_pairing",
            "mentor_id",
            "mentee_id",
            "type",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )
