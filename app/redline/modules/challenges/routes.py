from __future__ import annotations

from flask import Blueprint, request

from app.redline.db import db_session
from app.redline.permissions import current_user, login_required, require_user
from app.redline.rate_limit import rate_limit
from app.redline.utils import json_payload, parse_limit
from app.redline.modules.challenges import service

bp = Blueprint("challenges", __name__)


@bp.post("/challenges")
@login_required
@rate_limit("CONTENT_CREATE")
def create_challenge():
    s = db_session()
    challenge = service.create_challenge(s, json_payload(), require_user())
    s.commit()
    return {"challenge": challenge.to_dict()}, 201


@bp.get("/challenges/pre-made")
@rate_limit("READ_OPERATIONS")
def pre_made():
    return service.get_pre_made(
        db_session(),
        challenge_type=(request.args.get("type") or "").strip() or None,
        difficulty=(request.args.get("difficulty") or "").strip() or None,
        city=(request.args.get("city") or "").strip() or None,
        territory=(request.args.get("territory") or "").strip() or None,
        limit=parse_limit(request.args.get("limit")),
        cursor=(request.args.get("cursor") or "").strip() or None,
    )


@bp.get("/challenges/mine")
@login_required
def my_progress():
    return {"items": service.get_my_progress(db_session(), require_user())}


@bp.get("/challenges/<challenge_id>")
@rate_limit("READ_OPERATIONS")
def get_challenge(challenge_id: str):
    return {"challenge": service.get_challenge(db_session(), challenge_id, current_user())}


@bp.delete("/challenges/<challenge_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def delete_challenge(challenge_id: str):
    s = db_session()
    service.delete_challenge(s, challenge_id, require_user())
    s.commit()
    return {"ok": True}


@bp.post("/challenges/<challenge_id>/participate")
@login_required
@rate_limit("CLUB_JOIN")
def participate(challenge_id: str):
    s = db_session()
    participant = service.participate(s, challenge_id, require_user())
    s.commit()
    return {"participation": participant.to_dict()}, 201


@bp.post("/challenges/<challenge_id>/results")
@login_required
@rate_limit("CONTENT_UPLOAD")
def submit_result(challenge_id: str):
    s = db_session()
    participant = service.submit_result(s, challenge_id, json_payload(), require_user())
    s.commit()
    return {"participation": participant.to_dict()}


@bp.get("/challenges/<challenge_id>/leaderboard")
@rate_limit("READ_OPERATIONS")
def leaderboard(challenge_id: str):
    scope_value = request.args.get("scope_value")
    return service.get_leaderboard(
        db_session(),
        challenge_id,
        current_user(),
        scope=(request.args.get("scope") or "GLOBAL").strip().upper(),
        scope_value=scope_value.strip() if scope_value else None,
        limit=parse_limit(request.args.get("limit"), hi=100),
    )


@bp.get("/clubs/<club_id>/challenges")
@rate_limit("READ_OPERATIONS")
def club_challenges(club_id: str):
    items = service.get_club_challenges(db_session(), club_id, current_user())
    return {"items": [c.to_dict() for c in items]}
