from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.redline.models import Base, User, new_id, utcnow


class Club(Base):
    __tablename__ = "clubs"
    __table_args__ = (
        Index("idx_clubs_name", "name"),
        Index("idx_clubs_city", "city"),
        Index("idx_clubs_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invite_code: Mapped[str | None] = mapped_column(String(8), nullable=True, unique=True)

    # Location
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    territory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Invite settings
    max_members: Mapped[int | None] = mapped_column(Integer, nullable=True)
    invite_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    allow_member_invites: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    creator_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    creator: Mapped[User] = relationship(foreign_keys=[creator_id], lazy="selectin")
    members: Mapped[list["ClubMember"]] = relationship(
        back_populates="club",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def to_dict(self, *, include_invite_code: bool = False) -> dict:
        out = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "is_private": self.is_private,
            "city": self.city,
            "territory": self.territory,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "creator_id": self.creator_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_invite_code:
            out["invite_code"] = self.invite_code
        return out


class ClubMember(Base):
    __tablename__ = "club_members"
    __table_args__ = (
        UniqueConstraint("user_id", "club_id", name="uq_club_members_user_club"),
        Index("idx_club_members_club", "club_id"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    club_id: Mapped[str] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="MEMBER")  # ADMIN, MODERATOR, MEMBER
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user: Mapped[User] = relationship(lazy="selectin")
    club: Mapped[Club] = relationship(back_populates="members", lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "club_id": self.club_id,
            "role": self.role,
            "joined_at": self.joined_at.isoformat(),
            "user": self.user.to_public_dict() if self.user else None,
        }


class ClubJoinRequest(Base):
    __tablename__ = "club_join_requests"
    __table_args__ = (
        UniqueConstraint("user_id", "club_id", name="uq_club_join_requests_user_club"),
        Index("idx_club_join_requests_club_status", "club_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    club_id: Mapped[str] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")  # PENDING, APPROVED, REJECTED
    message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reviewed_by_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user: Mapped[User] = relationship(foreign_keys=[user_id], lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "club_id": self.club_id,
            "status": self.status,
            "message": self.message,
            "reviewed_by_id": self.reviewed_by_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat(),
            "user": self.user.to_public_dict() if self.user else None,
        }


class ClubBan(Base):
    __tablename__ = "club_bans"
    __table_args__ = (UniqueConstraint("user_id", "club_id", name="uq_club_bans_user_club"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    club_id: Mapped[str] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False)
    banned_by_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_permanent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    user: Mapped[User] = relationship(foreign_keys=[user_id], lazy="selectin")

    def is_in_effect(self, now: datetime) -> bool:
        return self.is_permanent or (self.expires_at is not None and self.expires_at > now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "club_id": self.club_id,
            "banned_by_id": self.banned_by_id,
            "reason": self.reason,
            "is_permanent": self.is_permanent,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat(),
            "user": self.user.to_public_dict() if self.user else None,
        }


class AdminMessage(Base):
    __tablename__ = "club_admin_messages"
    __table_args__ = (Index("idx_club_admin_messages_club", "club_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    club_id: Mapped[str] = mapped_column(ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False)
    sender_id: Mapped[str | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    message: Mapped[str] = mapped_column(String(500), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="info")  # announcement, warning, info
    target_user_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    sender: Mapped[User | None] = relationship(lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "club_id": self.club_id,
            "message": self.message,
            "type": self.type,
            "target_user_ids": list(self.target_user_ids or []),
            "created_at": self.created_at.isoformat(),
            "sender": self.sender.to_public_dict() if self.sender else None,
        }
