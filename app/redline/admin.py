from __future__ import annotations

from flask import Blueprint, request

from app.redline.audit import audit_to_dict, get_logs, log_admin_action
from app.redline.db import db_session
from app.redline.errors import BadRequest, Forbidden, NotFound
from app.redline.models import User
from app.redline.permissions import SITE_ROLES, require_site_permission, require_user
from app.redline.rate_limit import rate_limit
from app.redline.utils import json_payload, parse_limit
from app.redline.validation import parse_datetime

bp = Blueprint("admin", __name__)


def _parse_date_arg(name: str):
    try:
        return parse_datetime(request.args.get(name))
    except ValueError as e:
        raise BadRequest(f"{name} is not a valid date") from e


@bp.get("/audit-logs")
@require_site_permission("system:logs")
@rate_limit("ADMIN_OPERATIONS")
def audit_logs():
    try:
        offset = max(0, int(request.args.get("offset") or 0))
    except ValueError as e:
        raise BadRequest("offset must be an integer") from e
    rows = get_logs(
        db_session(),
        user_id=request.args.get("user_id") or None,
        action=request.args.get("action") or None,
        category=request.args.get("category") or None,
        severity=request.args.get("severity") or None,
        resource_type=request.args.get("resource_type") or None,
        resource_id=request.args.get("resource_id") or None,
        start_date=_parse_date_arg("start_date"),
        end_date=_parse_date_arg("end_date"),
        limit=parse_limit(request.args.get("limit"), default=100, hi=500),
        offset=offset,
    )
    return {"items": [audit_to_dict(ev) for ev in rows]}


@bp.get("/users")
@require_site_permission("users:read")
@rate_limit("ADMIN_OPERATIONS")
def list_users():
    s = db_session()
    q = s.query(User)
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter((User.email.ilike(like)) | (User.name.ilike(like)))
    users = q.order_by(User.created_at.desc()).limit(parse_limit(request.args.get("limit"), default=50, hi=200)).all()
    return {"items": [u.to_dict() for u in users]}


@bp.post("/users/<user_id>/site-role")
@require_site_permission("users:promote")
@rate_limit("ADMIN_OPERATIONS")
def set_site_role(user_id: str):
    actor = require_user()
    role = json_payload().get("site_role")
    if role not in SITE_ROLES:
        raise BadRequest(f"Invalid site role. Must be one of: {', '.join(SITE_ROLES)}")
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        raise NotFound("User not found")
    if target.id == actor.id:
        raise BadRequest("You cannot change your own site role")
    old_role = target.site_role
    target.site_role = role
    log_admin_action(
        s,
        "user.site_role.updated",
        actor,
        target_user_id=target.id,
        resource_type="user",
        resource_id=target.id,
        severity="CRITICAL" if role == "SUPER_ADMIN" else "HIGH",
        metadata={"old_role": old_role, "new_role": role},
    )
    s.commit()
    return {"user": target.to_dict()}


@bp.post("/users/<user_id>/deactivate")
@require_site_permission("users:ban")
@rate_limit("ADMIN_OPERATIONS")
def deactivate_user(user_id: str):
    actor = require_user()
    s = db_session()
    target = s.get(User, user_id)
    if not target:
        raise NotFound("User not found")
    if target.site_role == "SUPER_ADMIN":
        raise Forbidden("Super admins cannot be deactivated")
    if target.id == actor.id:
        raise BadRequest("You cannot deactivate yourself")
    target.is_active = False
    log_admin_action(
        s,
        "user.deactivated",
        actor,
        target_user_id=target.id,
        resource_type="user",
        resource_id=target.id,
        metadata={"reason": (json_payload().get("reason") or "").strip() or None},
    )
    s.commit()
    return {"user": target.to_dict()}
