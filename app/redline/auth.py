from __future__ import annotations

import re
import uuid

from flask import Blueprint, current_app, g, request, session
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from app.redline.audit import log_security_event, log_user_action
from app.redline.db import db_session
from app.redline.errors import Conflict, Unauthorized, ValidationFailed
from app.redline.models import User
from app.redline.permissions import require_user, site_permissions_for
from app.redline.rate_limit import client_key, enforce_rate_limit, get_rate_limiter
from app.redline.security import ensure_csrf_token, rotate_csrf_token
from app.redline.utils import json_payload
from app.redline.validation import has_xss

bp = Blueprint("auth", __name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = (request.headers.get("X-Request-ID") or "").strip()[:64] or uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, str(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def _session_payload(user: User) -> dict:
    return {
        "user": user.to_dict(),
        "site_permissions": site_permissions_for(user.site_role),
        "csrf_token": ensure_csrf_token(),
    }


def validate_signup_payload(payload: dict) -> list[str]:
    errors = []
    email = (payload.get("email") or "").strip().lower()
    if not _EMAIL_RE.match(email):
        errors.append("A valid email is required.")
    password = payload.get("password") or ""
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    name = (payload.get("name") or "").strip()
    if len(name) > 100:
        errors.append("Name must be at most 100 characters.")
    if name and has_xss(name):
        errors.append("Name contains disallowed content.")
    return errors


@bp.post("/signup")
def signup():
    enforce_rate_limit("AUTH_SIGNUP")
    payload = json_payload()
    errors = validate_signup_payload(payload)
    if errors:
        raise ValidationFailed(errors)

    s = db_session()
    email = payload["email"].strip().lower()
    if s.query(User).filter(User.email == email).one_or_none():
        raise Conflict("An account with this email already exists")
    user = User(
        email=email,
        name=(payload.get("name") or "").strip() or None,
        password_hash=generate_password_hash(payload["password"]),
        site_role="USER",
        is_active=True,
    )
    s.add(user)
    try:
        s.flush()
    except IntegrityError as e:
        s.rollback()
        raise Conflict("An account with this email already exists") from e
    log_user_action(s, "user.signup", user, resource_type="user", resource_id=user.id, severity="LOW")
    s.commit()

    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    rotate_csrf_token()
    g.current_user = user
    return _session_payload(user), 201


@bp.post("/login")
def login():
    payload = json_payload()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    subject = f"email:{email or request.remote_addr}"
    enforce_rate_limit("AUTH_LOGIN", subject=subject)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none() if email else None
    if not user or not user.is_active or not check_password_hash(user.password_hash, str(password)):
        log_security_event(
            s,
            "auth.failed_login",
            None,
            resource_type="user",
            resource_id=user.id if user else None,
            severity="MEDIUM",
            metadata={"email": email},
        )
        s.commit()
        raise Unauthorized("Invalid credentials")

    # Successful logins do not count against the limit.
    get_rate_limiter().reset(client_key("AUTH_LOGIN", subject))
    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    rotate_csrf_token()
    g.current_user = user
    log_security_event(s, "auth.login", user, resource_type="user", resource_id=user.id, severity="LOW")
    s.commit()
    current_app.logger.info("Login user=%s request_id=%s", user.id, g.request_id)
    return _session_payload(user)


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        log_security_event(s, "auth.logout", user, resource_type="user", resource_id=user.id, severity="LOW")
        s.commit()
    session.clear()
    return {"ok": True}


@bp.get("/me")
def me():
    user = require_user()
    return _session_payload(user)
