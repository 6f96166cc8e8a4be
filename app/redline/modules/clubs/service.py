from __future__ import annotations

import csv
import io
import json
import secrets
from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.redline.audit import log_admin_action, log_user_action, record_event
from app.redline.db import flush_or_conflict
from app.redline.errors import ApiError, BadRequest, Conflict, Forbidden, NotFound, ValidationFailed
from app.redline.models import AuditLog, User, utcnow
from app.redline.permissions import CLUB_ROLES, ClubAccess, is_site_admin, load_club_access
from app.redline.storage import generate_file_key
from app.redline.utils import keyset_page
from app.redline.validation import (
    IMAGE_CONTENT_TYPES,
    bool_field,
    datetime_field,
    float_field,
    has_xss,
    image_url_field,
    int_field,
    is_reserved_route_word,
    location_field,
    text_field,
    validate_file_upload,
    validate_id,
    validate_invite_code,
)
from app.redline.modules.clubs.models import AdminMessage, Club, ClubBan, ClubJoinRequest, ClubMember

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.redline.storage import Storage


ROLE_ORDER = {"ADMIN": 0, "MODERATOR": 1, "MEMBER": 2}
MESSAGE_TYPES = ("announcement", "warning", "info")
BULK_ACTIONS = ("remove", "promote_moderator", "demote_member", "ban")
ANALYTICS_RANGES = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
DEFAULT_BAN_DAYS = 30
MAX_BULK_USERS = 100


def generate_invite_code(s: "Session") -> str:
    """8 uppercase hex characters, unique across clubs."""
    for _ in range(10):
        code = secrets.token_hex(4).upper()
        if not s.query(Club.id).filter(Club.invite_code == code).first():
            return code
    raise ApiError("Could not allocate a unique invite code")


def _parse_club_fields(payload: dict, errors: list[str], *, partial: bool) -> dict:
    """Normalized club fields. With ``partial`` only keys present in the payload are returned."""
    out: dict = {}

    def wanted(key: str) -> bool:
        return not partial or key in payload

    if wanted("name"):
        out["name"] = text_field(payload, "name", errors, label="Name", min_len=1, max_len=100)
    if wanted("description"):
        out["description"] = text_field(payload, "description", errors, label="Description", max_len=2000)
    if wanted("image_url"):
        out["image_url"] = image_url_field(payload, "image_url", errors)
    if wanted("is_private"):
        out["is_private"] = bool_field(payload, "is_private", errors, default=False)
    if wanted("city"):
        out["city"] = location_field(payload, "city", errors, label="City")
    if wanted("territory"):
        out["territory"] = location_field(payload, "territory", errors, label="Territory")
    if wanted("latitude"):
        out["latitude"] = float_field(payload, "latitude", errors, lo=-90, hi=90)
    if wanted("longitude"):
        out["longitude"] = float_field(payload, "longitude", errors, lo=-180, hi=180)
    return out


def _get_club(s: "Session", club_id: str) -> Club:
    club = s.get(Club, club_id)
    if not club:
        raise NotFound("Club not found")
    return club


def _membership(s: "Session", club_id: str, user_id: str) -> ClubMember | None:
    return s.query(ClubMember).filter(ClubMember.club_id == club_id, ClubMember.user_id == user_id).one_or_none()


def _join_request(s: "Session", club_id: str, user_id: str) -> ClubJoinRequest | None:
    return (
        s.query(ClubJoinRequest)
        .filter(ClubJoinRequest.club_id == club_id, ClubJoinRequest.user_id == user_id)
        .one_or_none()
    )


def active_ban(s: "Session", club_id: str, user_id: str) -> ClubBan | None:
    ban = s.query(ClubBan).filter(ClubBan.club_id == club_id, ClubBan.user_id == user_id).one_or_none()
    if ban and ban.is_in_effect(utcnow()):
        return ban
    return None


def _ensure_not_banned(s: "Session", club_id: str, user_id: str) -> None:
    if active_ban(s, club_id, user_id):
        raise Forbidden("You are banned from this club")


def member_count(s: "Session", club_id: str) -> int:
    return s.query(func.count(ClubMember.id)).filter(ClubMember.club_id == club_id).scalar() or 0


def _ensure_capacity(s: "Session", club: Club) -> None:
    if club.max_members is not None and member_count(s, club.id) >= club.max_members:
        raise BadRequest("Club has reached its member limit")


def club_counts(s: "Session", club_ids: list[str]) -> dict[str, dict[str, int]]:
    """Member, post, event and challenge counts per club id."""
    from app.redline.modules.challenges.models import Challenge
    from app.redline.modules.events.models import ClubEvent
    from app.redline.modules.posts.models import ClubPost

    out = {cid: {"members": 0, "posts": 0, "events": 0, "challenges": 0} for cid in club_ids}
    if not club_ids:
        return out
    for name, model in (("members", ClubMember), ("posts", ClubPost), ("events", ClubEvent), ("challenges", Challenge)):
        rows = s.query(model.club_id, func.count(model.id)).filter(model.club_id.in_(club_ids)).group_by(model.club_id).all()
        for cid, n in rows:
            out[cid][name] = n
    return out


def sorted_members(members: list[ClubMember]) -> list[ClubMember]:
    return sorted(members, key=lambda m: (ROLE_ORDER.get(m.role, 99), m.joined_at))


def _delete_membership(s: "Session", club: Club, membership: ClubMember) -> None:
    s.delete(membership)
    s.flush()
    s.expire(club, ["members"])


def _add_member(s: "Session", club: Club, user: User, role: str = "MEMBER") -> ClubMember:
    member = ClubMember(user_id=user.id, club_id=club.id, role=role, joined_at=utcnow())
    s.add(member)
    flush_or_conflict(s, "Already a member of this club")
    return member


# ---------- Create / read ----------


def create_club(s: "Session", payload: dict, user: User) -> Club:
    errors: list[str] = []
    fields = _parse_club_fields(payload, errors, partial=False)
    if errors:
        raise ValidationFailed(errors)

    now = utcnow()
    club = Club(**fields, creator_id=user.id, created_at=now, updated_at=now)
    if club.is_private:
        club.invite_code = generate_invite_code(s)
    club.members.append(ClubMember(user_id=user.id, role="ADMIN", joined_at=now))
    s.add(club)
    s.flush()

    log_user_action(
        s,
        "club.created",
        user,
        resource_type="club",
        resource_id=club.id,
        metadata={"name": club.name, "is_private": club.is_private},
    )
    return club


def get_club_detail(s: "Session", club_id: str, user: User | None) -> dict:
    """Club page payload: club, members, counts and what the caller may do there."""
    if is_reserved_route_word(club_id):
        raise BadRequest("ROUTE_WORD")
    if not validate_id(club_id):
        raise BadRequest("Invalid club id")
    access = load_club_access(s, club_id, user)
    club = access.club

    can_view = access.can_view()
    can_moderate = access.at_least("MODERATOR")
    can_administer = access.at_least("ADMIN")
    show_code = can_administer or (access.is_member and club.allow_member_invites)

    pending = None
    if user is not None and not access.is_member:
        jr = _join_request(s, club.id, user.id)
        if jr and jr.status == "PENDING":
            pending = jr.to_dict()

    return {
        "club": club.to_dict(include_invite_code=show_code),
        "creator": club.creator.to_public_dict() if club.creator else None,
        "members": [m.to_dict() for m in sorted_members(club.members)] if can_view else [],
        "counts": club_counts(s, [club.id])[club.id],
        "user_membership": access.membership.to_dict() if access.membership else None,
        "user_join_request": pending,
        "user_site_role": access.site_role,
        "is_site_admin": access.is_site_admin,
        "is_user_member": access.is_member,
        "can_view": can_view,
        "can_moderate": can_moderate,
        "can_administer": can_administer,
        "can_leave": access.is_member and not access.is_creator,
        "show_site_admin_controls": access.is_site_admin and not access.is_member,
    }


def get_my_clubs(s: "Session", user: User) -> list[dict]:
    memberships = (
        s.query(ClubMember)
        .filter(ClubMember.user_id == user.id)
        .order_by(ClubMember.joined_at.desc())
        .all()
    )
    counts = club_counts(s, [m.club_id for m in memberships])
    out = []
    for m in memberships:
        show_code = m.role == "ADMIN" or m.club.allow_member_invites
        out.append(
            {
                "club": m.club.to_dict(include_invite_code=show_code),
                "role": m.role,
                "joined_at": m.joined_at.isoformat(),
                "counts": counts[m.club_id],
            }
        )
    return out


def get_user_memberships(s: "Session", user: User) -> list[dict]:
    memberships = s.query(ClubMember).filter(ClubMember.user_id == user.id).all()
    return [
        {
            "club_id": m.club_id,
            "club_name": m.club.name,
            "is_private": m.club.is_private,
            "role": m.role,
            "joined_at": m.joined_at.isoformat(),
        }
        for m in memberships
    ]


def get_club_members(s: "Session", club_id: str, user: User | None) -> list[ClubMember]:
    access = load_club_access(s, club_id, user)
    if not access.can_view():
        raise Forbidden("You must be a member to view this club's members")
    return sorted_members(access.club.members)


def search_clubs(
    s: "Session",
    user: User | None,
    *,
    query: str | None = None,
    city: str | None = None,
    territory: str | None = None,
    is_private: bool | None = None,
    limit: int = 20,
    cursor: str | None = None,
) -> dict:
    if query and has_xss(query):
        raise BadRequest("Search query contains disallowed content")
    q = s.query(Club)
    if query:
        like = f"%{query.strip()}%"
        q = q.filter(or_(Club.name.ilike(like), Club.description.ilike(like)))
    if city:
        q = q.filter(func.lower(Club.city) == city.strip().lower())
    if territory:
        q = q.filter(func.lower(Club.territory) == territory.strip().lower())
    if is_private is not None:
        q = q.filter(Club.is_private == is_private)
    clubs, next_cursor = keyset_page(s, q, Club, cursor=cursor, limit=limit)

    ids = [c.id for c in clubs]
    counts = club_counts(s, ids)
    roles: dict[str, str] = {}
    pending: set[str] = set()
    if user is not None and ids:
        roles = dict(
            s.query(ClubMember.club_id, ClubMember.role)
            .filter(ClubMember.user_id == user.id, ClubMember.club_id.in_(ids))
            .all()
        )
        pending = {
            cid
            for (cid,) in s.query(ClubJoinRequest.club_id).filter(
                ClubJoinRequest.user_id == user.id,
                ClubJoinRequest.club_id.in_(ids),
                ClubJoinRequest.status == "PENDING",
            )
        }
    site_admin = is_site_admin(user.site_role if user else None)
    items = []
    for c in clubs:
        role = roles.get(c.id)
        items.append(
            {
                "club": c.to_dict(),
                "counts": counts[c.id],
                "user_access": {
                    "is_member": role is not None,
                    "role": role,
                    "has_pending_request": c.id in pending,
                    "can_view": site_admin or not c.is_private or role is not None,
                },
            }
        )
    return {"items": items, "next_cursor": next_cursor}


# ---------- Membership ----------


def join_club(s: "Session", club_id: str, user: User) -> ClubMember:
    club = _get_club(s, club_id)
    if club.is_private:
        raise Forbidden("Cannot join private club without invite")
    _ensure_not_banned(s, club.id, user.id)
    if _membership(s, club.id, user.id):
        raise Conflict("Already a member of this club")
    _ensure_capacity(s, club)

    member = _add_member(s, club, user)
    log_user_action(
        s,
        "club.joined",
        user,
        resource_type="club",
        resource_id=club.id,
        metadata={"join_method": "public"},
    )
    return member


def join_by_invite(s: "Session", invite_code: str, user: User) -> ClubMember:
    code = (invite_code or "").strip().upper()
    if not validate_invite_code(code):
        raise BadRequest("Invalid invite code format")
    club = s.query(Club).filter(Club.invite_code == code).one_or_none()
    if not club:
        raise NotFound("Invalid invite code")
    if club.invite_expiry is not None and club.invite_expiry < utcnow():
        raise BadRequest("Invite code has expired")
    _ensure_not_banned(s, club.id, user.id)
    if _membership(s, club.id, user.id):
        raise Conflict("Already a member of this club")
    _ensure_capacity(s, club)

    member = _add_member(s, club, user)
    jr = _join_request(s, club.id, user.id)
    if jr is not None:
        s.delete(jr)
    log_user_action(
        s,
        "club.joined",
        user,
        resource_type="club",
        resource_id=club.id,
        metadata={"join_method": "invite"},
    )
    return member


def leave_club(s: "Session", club_id: str, user: User) -> None:
    club = _get_club(s, club_id)
    membership = _membership(s, club.id, user.id)
    if not membership:
        raise NotFound("You are not a member of this club")
    if club.creator_id == user.id:
        raise Forbidden("Club creator cannot leave the club")

    _delete_membership(s, club, membership)
    s.query(ClubJoinRequest).filter(
        ClubJoinRequest.club_id == club.id, ClubJoinRequest.user_id == user.id
    ).delete(synchronize_session=False)
    log_user_action(s, "club.left", user, resource_type="club", resource_id=club.id)


def delete_club(s: "Session", club_id: str, confirmation: str | None, user: User) -> None:
    if confirmation != "delete":
        raise BadRequest('Type "delete" to confirm')
    club = _get_club(s, club_id)
    site_admin = is_site_admin(user.site_role)
    if club.creator_id != user.id and not site_admin:
        raise Forbidden("Only the club creator or a site admin can delete this club")

    log = log_admin_action if site_admin and club.creator_id != user.id else log_user_action
    log(
        s,
        "club.deleted",
        user,
        resource_type="club",
        resource_id=club.id,
        severity="CRITICAL",
        metadata={"name": club.name, "member_count": len(club.members)},
    )
    s.delete(club)
    s.flush()


def update_club_settings(s: "Session", access: ClubAccess, payload: dict, user: User) -> Club:
    access.require_role("ADMIN")
    club = access.club
    errors: list[str] = []
    fields = _parse_club_fields(payload, errors, partial=True)
    if "name" in fields and fields["name"] is None:
        errors.append("Name cannot be empty.")
    if errors:
        raise ValidationFailed(errors)

    changes = {}
    for key, value in fields.items():
        old = getattr(club, key)
        if value != old:
            changes[key] = {"old": old, "new": value}
            setattr(club, key, value)
    if club.is_private and not club.invite_code:
        club.invite_code = generate_invite_code(s)
    if changes:
        club.updated_at = utcnow()
        record_event(
            s,
            action="club.settings.updated",
            user=user,
            resource_type="club",
            resource_id=club.id,
            category="ADMINISTRATION",
            metadata={"changes": changes},
        )
    return club


def regenerate_invite_code(s: "Session", access: ClubAccess, user: User) -> str:
    access.require_role("ADMIN")
    club = access.club
    club.invite_code = generate_invite_code(s)
    club.updated_at = utcnow()
    record_event(
        s,
        action="club.invite_code.generated",
        user=user,
        resource_type="club",
        resource_id=club.id,
        category="ADMINISTRATION",
    )
    return club.invite_code


def get_invite_code(access: ClubAccess) -> str | None:
    if not access.at_least("ADMIN") and not (access.is_member and access.club.allow_member_invites):
        raise Forbidden("Only club admins can view the invite code")
    return access.club.invite_code


# ---------- Member management ----------


def _target_membership(s: "Session", club: Club, target_user_id: str, *, verb: str) -> ClubMember:
    if club.creator_id == target_user_id:
        raise Forbidden(f"Cannot {verb} the club creator")
    membership = _membership(s, club.id, target_user_id)
    if not membership:
        raise NotFound("User is not a member of this club")
    return membership


def update_member_role(s: "Session", access: ClubAccess, target_user_id: str, role: str, user: User) -> ClubMember:
    access.require_role("ADMIN")
    if role not in CLUB_ROLES:
        raise BadRequest(f"Invalid role. Must be one of: {', '.join(CLUB_ROLES)}")
    membership = _target_membership(s, access.club, target_user_id, verb="change the role of")
    old_role = membership.role
    membership.role = role
    record_event(
        s,
        action="club.member.role_updated",
        user=user,
        target_user_id=target_user_id,
        resource_type="club",
        resource_id=access.club.id,
        category="MODERATION",
        metadata={"old_role": old_role, "new_role": role},
    )
    return membership


def remove_member(s: "Session", access: ClubAccess, target_user_id: str, user: User) -> None:
    access.require_role("ADMIN")
    membership = _target_membership(s, access.club, target_user_id, verb="remove")
    _delete_membership(s, access.club, membership)
    s.query(ClubJoinRequest).filter(
        ClubJoinRequest.club_id == access.club.id, ClubJoinRequest.user_id == target_user_id
    ).delete(synchronize_session=False)
    record_event(
        s,
        action="club.member.removed",
        user=user,
        target_user_id=target_user_id,
        resource_type="club",
        resource_id=access.club.id,
        category="MODERATION",
        severity="HIGH",
        metadata={"role": membership.role},
    )


def ban_member(s: "Session", access: ClubAccess, target_user_id: str, payload: dict, user: User) -> ClubBan:
    access.require_role("ADMIN")
    if target_user_id == user.id:
        raise BadRequest("You cannot ban yourself")
    errors: list[str] = []
    reason = text_field(payload, "reason", errors, label="Reason", max_len=500)
    permanent = bool_field(payload, "permanent", errors, default=False)
    duration_days = int_field(payload, "duration_days", errors, lo=1, hi=3650)
    if errors:
        raise ValidationFailed(errors)
    membership = _target_membership(s, access.club, target_user_id, verb="ban")

    now = utcnow()
    expires_at = None if permanent else now + timedelta(days=duration_days or DEFAULT_BAN_DAYS)
    ban = s.query(ClubBan).filter(ClubBan.club_id == access.club.id, ClubBan.user_id == target_user_id).one_or_none()
    if ban is None:
        ban = ClubBan(user_id=target_user_id, club_id=access.club.id)
        s.add(ban)
    ban.banned_by_id = user.id
    ban.reason = reason
    ban.is_permanent = bool(permanent)
    ban.expires_at = expires_at
    ban.created_at = now

    _delete_membership(s, access.club, membership)
    s.query(ClubJoinRequest).filter(
        ClubJoinRequest.club_id == access.club.id, ClubJoinRequest.user_id == target_user_id
    ).delete(synchronize_session=False)
    s.flush()
    record_event(
        s,
        action="club.member.banned",
        user=user,
        target_user_id=target_user_id,
        resource_type="club",
        resource_id=access.club.id,
        category="MODERATION",
        severity="HIGH",
        metadata={
            "reason": reason,
            "permanent": bool(permanent),
            "expires_at": expires_at.isoformat() if expires_at else None,
        },
    )
    return ban


def unban_member(s: "Session", access: ClubAccess, target_user_id: str, user: User) -> None:
    access.require_role("ADMIN")
    ban = s.query(ClubBan).filter(ClubBan.club_id == access.club.id, ClubBan.user_id == target_user_id).one_or_none()
    if not ban:
        raise NotFound("User is not banned from this club")
    s.delete(ban)
    record_event(
        s,
        action="club.member.unbanned",
        user=user,
        target_user_id=target_user_id,
        resource_type="club",
        resource_id=access.club.id,
        category="MODERATION",
    )


def get_banned_members(s: "Session", access: ClubAccess) -> list[dict]:
    access.require_role("ADMIN")
    now = utcnow()
    bans = s.query(ClubBan).filter(ClubBan.club_id == access.club.id).order_by(ClubBan.created_at.desc()).all()
    return [{**b.to_dict(), "in_effect": b.is_in_effect(now)} for b in bans]


def bulk_member_actions(s: "Session", access: ClubAccess, payload: dict, user: User) -> dict:
    access.require_role("ADMIN")
    action = payload.get("action")
    user_ids = payload.get("user_ids")
    if action not in BULK_ACTIONS:
        raise BadRequest(f"Invalid action. Must be one of: {', '.join(BULK_ACTIONS)}")
    if not isinstance(user_ids, list) or not user_ids or len(user_ids) > MAX_BULK_USERS:
        raise BadRequest(f"user_ids must be a list of 1 to {MAX_BULK_USERS} ids")
    if not all(isinstance(u, str) for u in user_ids):
        raise BadRequest("user_ids must be strings")

    results = []
    for target_id in dict.fromkeys(user_ids):
        try:
            if action == "remove":
                remove_member(s, access, target_id, user)
            elif action == "promote_moderator":
                update_member_role(s, access, target_id, "MODERATOR", user)
            elif action == "demote_member":
                update_member_role(s, access, target_id, "MEMBER", user)
            else:
                ban_member(s, access, target_id, {"reason": payload.get("reason")}, user)
            results.append({"user_id": target_id, "success": True})
        except ApiError as e:
            results.append({"user_id": target_id, "success": False, "error": e.message})

    succeeded = sum(1 for r in results if r["success"])
    record_event(
        s,
        action="club.bulk_member_action",
        user=user,
        resource_type="club",
        resource_id=access.club.id,
        category="MODERATION",
        metadata={"action": action, "requested": len(results), "succeeded": succeeded},
    )
    return {"action": action, "results": results, "succeeded": succeeded, "failed": len(results) - succeeded}


# ---------- Join requests ----------


def request_to_join(s: "Session", club_id: str, payload: dict, user: User) -> ClubJoinRequest:
    club = _get_club(s, club_id)
    if not club.is_private:
        raise BadRequest("This club is public; join it directly")
    _ensure_not_banned(s, club.id, user.id)
    if _membership(s, club.id, user.id):
        raise Conflict("Already a member of this club")
    errors: list[str] = []
    message = text_field(payload, "message", errors, label="Message", max_len=500)
    if errors:
        raise ValidationFailed(errors)

    existing = _join_request(s, club.id, user.id)
    if existing is not None:
        if existing.status == "PENDING":
            raise Conflict("Join request already pending")
        # Processed requests are replaced, keeping one row per user and club.
        s.delete(existing)
        s.flush()

    jr = ClubJoinRequest(user_id=user.id, club_id=club.id, status="PENDING", message=message, created_at=utcnow())
    s.add(jr)
    flush_or_conflict(s, "Join request already pending")
    log_user_action(s, "club.join_request.created", user, resource_type="club", resource_id=club.id)
    return jr


def cancel_join_request(s: "Session", club_id: str, user: User) -> None:
    jr = _join_request(s, club_id, user.id)
    if jr is None:
        raise NotFound("No join request found")
    if jr.status != "PENDING":
        raise BadRequest("Only pending requests can be cancelled")
    s.delete(jr)
    log_user_action(s, "club.join_request.cancelled", user, resource_type="club", resource_id=club_id)


def get_join_requests(s: "Session", access: ClubAccess) -> list[ClubJoinRequest]:
    access.require_role("MODERATOR")
    return (
        s.query(ClubJoinRequest)
        .filter(ClubJoinRequest.club_id == access.club.id, ClubJoinRequest.status == "PENDING")
        .order_by(ClubJoinRequest.created_at.desc())
        .all()
    )


def handle_join_request(s: "Session", request_id: str, action: str, user: User) -> ClubJoinRequest:
    if action not in ("approve", "reject"):
        raise BadRequest("Action must be approve or reject")
    jr = s.get(ClubJoinRequest, request_id)
    if not jr:
        raise NotFound("Join request not found")
    access = load_club_access(s, jr.club_id, user)
    access.require_role("MODERATOR")
    if jr.status != "PENDING":
        raise BadRequest("Join request has already been processed")

    if action == "approve":
        if active_ban(s, jr.club_id, jr.user_id):
            raise BadRequest("User is banned from this club")
        if not _membership(s, jr.club_id, jr.user_id):
            _ensure_capacity(s, access.club)
            s.add(ClubMember(user_id=jr.user_id, club_id=jr.club_id, role="MEMBER", joined_at=utcnow()))
        jr.status = "APPROVED"
    else:
        jr.status = "REJECTED"
    jr.reviewed_by_id = user.id
    jr.reviewed_at = utcnow()
    flush_or_conflict(s, "Already a member of this club")

    record_event(
        s,
        action="club.join_request.approved" if action == "approve" else "club.join_request.rejected",
        user=user,
        target_user_id=jr.user_id,
        resource_type="club",
        resource_id=jr.club_id,
        category="MODERATION",
        metadata={"request_id": jr.id},
    )
    if action == "approve":
        # Counted by invite usage and analytics like any other join.
        record_event(
            s,
            action="club.joined",
            user=jr.user,
            resource_type="club",
            resource_id=jr.club_id,
            metadata={"join_method": "request"},
        )
    return jr


# ---------- Invite settings ----------


def invite_usage_count(s: "Session", club_id: str) -> int:
    return (
        s.query(func.count(AuditLog.id))
        .filter(
            AuditLog.action == "club.joined",
            AuditLog.resource_type == "club",
            AuditLog.resource_id == club_id,
            AuditLog.metadata_json.like('%"join_method": "invite"%'),
        )
        .scalar()
        or 0
    )


def get_invite_settings(s: "Session", access: ClubAccess) -> dict:
    access.require_role("ADMIN")
    club = access.club
    return {
        "invite_code": club.invite_code,
        "max_members": club.max_members,
        "invite_expiry": club.invite_expiry.isoformat() if club.invite_expiry else None,
        "allow_member_invites": club.allow_member_invites,
        "member_count": member_count(s, club.id),
        "invite_usage_count": invite_usage_count(s, club.id),
    }


def update_invite_settings(s: "Session", access: ClubAccess, payload: dict, user: User) -> dict:
    access.require_role("ADMIN")
    club = access.club
    errors: list[str] = []
    max_members = int_field(payload, "max_members", errors, lo=1, hi=100000)
    invite_expiry = datetime_field(payload, "invite_expiry", errors, label="Invite expiry")
    allow_member_invites = bool_field(payload, "allow_member_invites", errors)
    generate_new = bool_field(payload, "generate_new", errors, default=False)
    if invite_expiry is not None and invite_expiry <= utcnow():
        errors.append("Invite expiry must be in the future.")
    if max_members is not None and max_members < member_count(s, club.id):
        errors.append("max_members cannot be below the current member count.")
    if errors:
        raise ValidationFailed(errors)

    changes: dict = {}
    if "max_members" in payload and max_members != club.max_members:
        changes["max_members"] = max_members
        club.max_members = max_members
    if "invite_expiry" in payload and invite_expiry != club.invite_expiry:
        changes["invite_expiry"] = invite_expiry
        club.invite_expiry = invite_expiry
    if allow_member_invites is not None and allow_member_invites != club.allow_member_invites:
        changes["allow_member_invites"] = allow_member_invites
        club.allow_member_invites = allow_member_invites
    if generate_new:
        club.invite_code = generate_invite_code(s)
        changes["invite_code"] = "regenerated"
    if changes:
        club.updated_at = utcnow()
        record_event(
            s,
            action="club.invite_settings.updated",
            user=user,
            resource_type="club",
            resource_id=club.id,
            category="ADMINISTRATION",
            metadata=changes,
        )
    s.flush()
    return get_invite_settings(s, access)


# ---------- Admin messages ----------


def send_admin_message(s: "Session", access: ClubAccess, payload: dict, user: User) -> AdminMessage:
    access.require_role("MODERATOR")
    errors: list[str] = []
    message = text_field(payload, "message", errors, label="Message", min_len=1, max_len=500)
    msg_type = payload.get("type") or "info"
    if msg_type not in MESSAGE_TYPES:
        errors.append(f"Invalid type. Must be one of: {', '.join(MESSAGE_TYPES)}")
    targets = payload.get("target_user_ids")
    if targets is not None and (not isinstance(targets, list) or not all(isinstance(t, str) for t in targets)):
        errors.append("target_user_ids must be a list of user ids.")
    if errors:
        raise ValidationFailed(errors)

    member_ids = {m.user_id: m.role for m in access.club.members}
    if targets:
        unknown = [t for t in targets if t not in member_ids]
        if unknown:
            raise BadRequest("All targets must be members of this club")
        target_ids = list(dict.fromkeys(targets))
    else:
        target_ids = [uid for uid, role in member_ids.items() if role in ("ADMIN", "MODERATOR")]

    msg = AdminMessage(
        club_id=access.club.id,
        sender_id=user.id,
        message=message,
        type=msg_type,
        target_user_ids=target_ids,
        created_at=utcnow(),
    )
    s.add(msg)
    s.flush()
    record_event(
        s,
        action="club.admin_message.sent",
        user=user,
        resource_type="club",
        resource_id=access.club.id,
        category="ADMINISTRATION",
        severity="LOW",
        metadata={"message_id": msg.id, "type": msg_type, "targets": len(target_ids)},
    )
    return msg


def get_admin_messages(s: "Session", access: ClubAccess, user: User, *, limit: int = 20, cursor: str | None = None) -> dict:
    access.require_member()
    rows = (
        s.query(AdminMessage)
        .filter(AdminMessage.club_id == access.club.id)
        .order_by(AdminMessage.created_at.desc(), AdminMessage.id.desc())
        .all()
    )
    visible = [m for m in rows if user.id in (m.target_user_ids or [])]
    if cursor:
        ids = [m.id for m in visible]
        if cursor not in ids:
            raise BadRequest("Invalid cursor.")
        visible = visible[ids.index(cursor) + 1 :]
    page = visible[:limit]
    next_cursor = page[-1].id if len(visible) > limit else None
    return {"items": [m.to_dict() for m in page], "next_cursor": next_cursor}


# ---------- Analytics ----------


def _per_day(values) -> list[dict]:
    counts = Counter(v.date().isoformat() for v in values)
    return [{"date": d, "count": counts[d]} for d in sorted(counts)]


def get_club_analytics(s: "Session", access: ClubAccess, time_range: str = "30d") -> dict:
    from app.redline.modules.events.models import ClubEvent
    from app.redline.modules.posts.models import ClubPost

    access.require_role("ADMIN")
    if time_range not in ANALYTICS_RANGES:
        raise BadRequest(f"Invalid time range. Must be one of: {', '.join(ANALYTICS_RANGES)}")
    club = access.club
    since = utcnow() - timedelta(days=ANALYTICS_RANGES[time_range])

    joins = [
        ts
        for (ts,) in s.query(ClubMember.joined_at).filter(ClubMember.club_id == club.id, ClubMember.joined_at >= since)
    ]
    posts = [ts for (ts,) in s.query(ClubPost.created_at).filter(ClubPost.club_id == club.id, ClubPost.created_at >= since)]
    activity = [
        ts
        for (ts,) in s.query(AuditLog.timestamp).filter(
            AuditLog.resource_type == "club", AuditLog.resource_id == club.id, AuditLog.timestamp >= since
        )
    ]
    upcoming_events = (
        s.query(func.count(ClubEvent.id)).filter(ClubEvent.club_id == club.id, ClubEvent.date >= utcnow()).scalar() or 0
    )
    roles = Counter(m.role for m in club.members)
    pending_requests = (
        s.query(func.count(ClubJoinRequest.id))
        .filter(ClubJoinRequest.club_id == club.id, ClubJoinRequest.status == "PENDING")
        .scalar()
        or 0
    )
    return {
        "time_range": time_range,
        "since": since.isoformat(),
        "totals": {
            **club_counts(s, [club.id])[club.id],
            "upcoming_events": upcoming_events,
            "pending_join_requests": pending_requests,
            "invite_usage": invite_usage_count(s, club.id),
        },
        "roles": {r: roles.get(r, 0) for r in CLUB_ROLES},
        "new_members": len(joins),
        "new_posts": len(posts),
        "member_joins_by_day": _per_day(joins),
        "posts_by_day": _per_day(posts),
        "activity_by_day": _per_day(activity),
    }


def export_club_activity(s: "Session", access: ClubAccess) -> str:
    """CSV of the club's audit trail, newest first."""
    access.require("analytics:export")
    rows = (
        s.query(AuditLog)
        .filter(AuditLog.resource_type == "club", AuditLog.resource_id == access.club.id)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .all()
    )
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["timestamp", "action", "user_id", "target_user_id", "severity", "category", "metadata"])
    for ev in rows:
        writer.writerow(
            [
                ev.timestamp.isoformat(),
                ev.action,
                ev.user_id or "",
                ev.target_user_id or "",
                ev.severity,
                ev.category,
                json.dumps(json.loads(ev.metadata_json), sort_keys=True) if ev.metadata_json else "",
            ]
        )
    return buf.getvalue()


# ---------- Uploads ----------


def generate_image_upload_url(s: "Session", access: ClubAccess, payload: dict, storage: "Storage", user: User) -> dict:
    access.require_role("ADMIN")
    filename = (payload.get("filename") or "").strip()
    content_type = (payload.get("content_type") or "").strip().lower()
    if content_type not in IMAGE_CONTENT_TYPES:
        raise BadRequest("Only image uploads are allowed")
    size = payload.get("size")
    if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
        raise BadRequest("size must be a non-negative integer")
    errors = validate_file_upload(filename, content_type, size)
    if errors:
        raise ValidationFailed(errors)

    key = generate_file_key(f"clubs/{access.club.id}", filename)
    upload_url = storage.presigned_upload_url(key, content_type=content_type)
    record_event(
        s,
        action="club.image.upload_url_generated",
        user=user,
        resource_type="club",
        resource_id=access.club.id,
        severity="LOW",
        metadata={"key": key, "content_type": content_type},
    )
    return {"upload_url": upload_url, "public_url": storage.public_url(key), "key": key, "content_type": content_type}

