from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.redline.models import Base, User, new_id, utcnow


class Challenge(Base):
    __tablename__ = "challenges"
    __table_args__ = (
        Index("idx_challenges_club", "club_id"),
        Index("idx_challenges_premade", "is_pre_made", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)  # TIME_TRIAL, DISTANCE, ...
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)  # EASY, MEDIUM, HARD, EXPERT
    is_pre_made: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parameters: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    club_id: Mapped[str | None] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), nullable=True)
    creator_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    participants: Mapped[list["ChallengeParticipant"]] = relationship(
        back_populates="challenge",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    leaderboard_entries: Mapped[list["LeaderboardEntry"]] = relationship(
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "difficulty": self.difficulty,
            "is_pre_made": self.is_pre_made,
            "city": self.city,
            "territory": self.territory,
            "is_global": self.is_global,
            "parameters": self.parameters,
            "club_id": self.club_id,
            "creator_id": self.creator_id,
            "is_active": self.is_active,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "created_at": self.created_at.isoformat(),
        }


class ChallengeParticipant(Base):
    __tablename__ = "challenge_participants"
    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_challenge_participants_user_challenge"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    challenge_id: Mapped[str] = mapped_column(ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    evidence: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user: Mapped[User] = relationship(lazy="selectin")
    challenge: Mapped[Challenge] = relationship(back_populates="participants", lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "challenge_id": self.challenge_id,
            "score": self.score,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "evidence": self.evidence,
            "created_at": self.created_at.isoformat(),
            "user": self.user.to_public_dict() if self.user else None,
        }


class LeaderboardEntry(Base):
    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", "scope", "scope_value", name="uq_leaderboard_entry"),
        Index("idx_leaderboard_scope", "challenge_id", "scope", "scope_value", "rank"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    challenge_id: Mapped[str] = mapped_column(ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)  # GLOBAL, CITY, TERRITORY, CLUB
    # "" for GLOBAL so the unique constraint holds (NULLs never collide).
    scope_value: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    score: Mapped[float] = mapped_column(Float, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user: Mapped[User] = relationship(lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "challenge_id": self.challenge_id,
            "scope": self.scope,
            "scope_value": self.scope_value or None,
            "score": self.score,
            "rank": self.rank,
            "updated_at": self.updated_at.isoformat(),
            "user": self.user.to_public_dict() if self.user else None,
        }
