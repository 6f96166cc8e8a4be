"""
Permission resolution.

Two layers:
- site roles (USER, ADMIN, SUPER_ADMIN) grant site permissions;
- club membership roles (ADMIN, MODERATOR, MEMBER) grant club permissions.

Site ADMIN and SUPER_ADMIN hold every club permission in every club. The
resolution functions are pure; the guards at the bottom of the module load
the current user and membership and raise API errors.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING, Any

from flask import current_app, g

from app.redline.errors import Forbidden, NotFound, Unauthorized

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.redline.models import User
    from app.redline.modules.clubs.models import Club, ClubMember


SITE_ROLES = ("USER", "ADMIN", "SUPER_ADMIN")
CLUB_ROLES = ("ADMIN", "MODERATOR", "MEMBER")

SITE_PERMISSIONS = (
    "users:create",
    "users:read",
    "users:update",
    "users:delete",
    "users:ban",
    "users:promote",
    "clubs:create",
    "clubs:read_all",
    "clubs:update_any",
    "clubs:delete_any",
    "clubs:moderate_any",
    "system:analytics",
    "system:settings",
    "system:logs",
    "system:maintenance",
    "content:moderate_all",
    "content:delete_any",
    "content:report_review",
    "billing:read",
    "billing:update",
    "billing:refund",
)

CLUB_PERMISSIONS = (
    "club:read",
    "club:update",
    "club:delete",
    "club:manage_settings",
    "members:invite",
    "members:remove",
    "members:promote",
    "members:ban",
    "members:view_list",
    "posts:create",
    "posts:update_own",
    "posts:update_any",
    "posts:delete_own",
    "posts:delete_any",
    "posts:moderate",
    "events:create",
    "events:update_own",
    "events:update_any",
    "events:delete_own",
    "events:delete_any",
    "events:manage_attendance",
    "challenges:create",
    "challenges:update_own",
    "challenges:update_any",
    "challenges:delete_own",
    "challenges:delete_any",
    "challenges:validate_submissions",
    "analytics:view",
    "analytics:export",
)

SITE_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "SUPER_ADMIN": frozenset(SITE_PERMISSIONS),
    "ADMIN": frozenset(
        {
            "users:read",
            "users:update",
            "users:ban",
            "clubs:read_all",
            "clubs:moderate_any",
            "content:moderate_all",
            "content:delete_any",
            "content:report_review",
            "billing:read",
        }
    ),
    "USER": frozenset({"clubs:create"}),
}

_MEMBER_CLUB_PERMISSIONS = frozenset(
    {
        "club:read",
        "posts:create",
        "posts:update_own",
        "posts:delete_own",
        "events:create",
        "events:update_own",
        "events:delete_own",
        "challenges:create",
        "challenges:update_own",
        "challenges:delete_own",
    }
)

CLUB_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "ADMIN": frozenset(CLUB_PERMISSIONS),
    "MODERATOR": _MEMBER_CLUB_PERMISSIONS | {"members:view_list", "posts:moderate", "analytics:view"},
    "MEMBER": _MEMBER_CLUB_PERMISSIONS,
}

CLUB_ROLE_RANK = {"MEMBER": 1, "MODERATOR": 2, "ADMIN": 3}


def is_site_admin(site_role: str | None) -> bool:
    return site_role in ("ADMIN", "SUPER_ADMIN")


def has_site_permission(site_role: str | None, permission: str) -> bool:
    return permission in SITE_ROLE_PERMISSIONS.get(site_role or "", frozenset())


def effective_club_role(site_role: str | None, membership_role: str | None) -> str | None:
    """Site admins act as club ADMIN everywhere; everyone else has their membership role (or none)."""
    if is_site_admin(site_role):
        return "ADMIN"
    return membership_role if membership_role in CLUB_ROLE_PERMISSIONS else None


def has_club_permission(site_role: str | None, membership_role: str | None, permission: str) -> bool:
    role = effective_club_role(site_role, membership_role)
    if role is None:
        return False
    return permission in CLUB_ROLE_PERMISSIONS[role]


def has_club_role(site_role: str | None, membership_role: str | None, min_role: str) -> bool:
    role = effective_club_role(site_role, membership_role)
    if role is None:
        return False
    return CLUB_ROLE_RANK[role] >= CLUB_ROLE_RANK[min_role]


def can_access_club(site_role: str | None, membership_role: str | None, is_private: bool) -> bool:
    if is_site_admin(site_role):
        return True
    if not is_private:
        return True
    return membership_role is not None


def site_permissions_for(site_role: str | None) -> list[str]:
    return sorted(SITE_ROLE_PERMISSIONS.get(site_role or "", frozenset()))


def club_permissions_for(site_role: str | None, membership_role: str | None) -> list[str]:
    role = effective_club_role(site_role, membership_role)
    if role is None:
        return []
    return sorted(CLUB_ROLE_PERMISSIONS[role])


# ---------- Request guards ----------


@dataclass
class ClubAccess:
    """What the acting user may do in one club."""

    club: "Club"
    user: "User | None"
    membership: "ClubMember | None"

    @property
    def site_role(self) -> str | None:
        return self.user.site_role if self.user else None

    @property
    def membership_role(self) -> str | None:
        return self.membership.role if self.membership else None

    @property
    def is_member(self) -> bool:
        return self.membership is not None

    @property
    def is_site_admin(self) -> bool:
        return is_site_admin(self.site_role)

    @property
    def is_creator(self) -> bool:
        return self.user is not None and self.club.creator_id == self.user.id

    @property
    def role(self) -> str | None:
        return effective_club_role(self.site_role, self.membership_role)

    def can_view(self) -> bool:
        return can_access_club(self.site_role, self.membership_role, self.club.is_private)

    def has(self, permission: str) -> bool:
        return has_club_permission(self.site_role, self.membership_role, permission)

    def at_least(self, min_role: str) -> bool:
        return has_club_role(self.site_role, self.membership_role, min_role)

    def require(self, permission: str) -> "ClubAccess":
        if not self.has(permission):
            _deny(permission)
        return self

    def require_role(self, min_role: str) -> "ClubAccess":
        if not self.at_least(min_role):
            _deny(f"club role {min_role}")
        return self

    def require_member(self, message: str = "You must be a member of this club") -> "ClubAccess":
        if not self.is_member and not self.is_site_admin:
            raise Forbidden(message)
        return self

    def require_view(self) -> "ClubAccess":
        if not self.can_view():
            raise Forbidden("This club is private")
        return self


def _deny(what: str) -> None:
    g.missing_permission = what
    raise Forbidden(f"Missing permission: {what}")


def load_club_access(s: "Session", club_id: str, user: "User | None") -> ClubAccess:
    from app.redline.modules.clubs.models import Club, ClubMember

    club = s.get(Club, club_id)
    if not club:
        raise NotFound("Club not found")
    membership = None
    if user is not None:
        membership = (
            s.query(ClubMember)
            .filter(ClubMember.club_id == club.id, ClubMember.user_id == user.id)
            .one_or_none()
        )
    return ClubAccess(club=club, user=user, membership=membership)


def current_user() -> "User | None":
    return getattr(g, "current_user", None)


def require_user() -> "User":
    user = current_user()
    if not user or not user.is_active:
        raise Unauthorized()
    return user


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        require_user()
        return fn(*args, **kwargs)

    return wrapped


def require_site_permission(permission: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = require_user()
            if not has_site_permission(user.site_role, permission):
                current_app.logger.info("Site permission denied: user=%s permission=%s", user.id, permission)
                _deny(permission)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
