from __future__ import annotations

from flask import Blueprint, Response, current_app, request

from app.redline.db import db_session
from app.redline.errors import BadRequest
from app.redline.permissions import current_user, load_club_access, login_required, require_user
from app.redline.rate_limit import rate_limit
from app.redline.storage import storage_from_config
from app.redline.utils import json_payload, parse_bool_arg, parse_limit
from app.redline.modules.clubs import service

bp = Blueprint("clubs", __name__)


def _access(club_id: str):
    return load_club_access(db_session(), club_id, current_user())


# ---------- Clubs ----------
@bp.post("")
@login_required
@rate_limit("CLUB_CREATE")
def create_club():
    s = db_session()
    club = service.create_club(s, json_payload(), require_user())
    s.commit()
    return {"club": club.to_dict(include_invite_code=True)}, 201


@bp.get("/mine")
@login_required
@rate_limit("READ_OPERATIONS")
def my_clubs():
    return {"items": service.get_my_clubs(db_session(), require_user())}


@bp.get("/memberships")
@login_required
def my_memberships():
    return {"items": service.get_user_memberships(db_session(), require_user())}


@bp.get("/search")
@rate_limit("SEARCH")
def search_clubs():
    return service.search_clubs(
        db_session(),
        current_user(),
        query=(request.args.get("q") or "").strip() or None,
        city=(request.args.get("city") or "").strip() or None,
        territory=(request.args.get("territory") or "").strip() or None,
        is_private=parse_bool_arg(request.args.get("is_private")),
        limit=parse_limit(request.args.get("limit")),
        cursor=(request.args.get("cursor") or "").strip() or None,
    )


@bp.get("/<club_id>")
@rate_limit("READ_OPERATIONS")
def club_detail(club_id: str):
    return service.get_club_detail(db_session(), club_id, current_user())


@bp.patch("/<club_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def update_club(club_id: str):
    s = db_session()
    club = service.update_club_settings(s, _access(club_id), json_payload(), require_user())
    s.commit()
    return {"club": club.to_dict(include_invite_code=True)}


@bp.delete("/<club_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def delete_club(club_id: str):
    s = db_session()
    confirmation = json_payload().get("confirmation") or request.args.get("confirmation")
    service.delete_club(s, club_id, confirmation, require_user())
    s.commit()
    return {"ok": True}


@bp.get("/<club_id>/members")
@rate_limit("READ_OPERATIONS")
def club_members(club_id: str):
    members = service.get_club_members(db_session(), club_id, current_user())
    return {"items": [m.to_dict() for m in members]}


# ---------- Joining ----------
@bp.post("/<club_id>/join")
@login_required
@rate_limit("CLUB_JOIN")
def join_club(club_id: str):
    s = db_session()
    member = service.join_club(s, club_id, require_user())
    s.commit()
    return {"membership": member.to_dict()}, 201


@bp.post("/join-by-invite")
@login_required
@rate_limit("CLUB_JOIN")
def join_by_invite():
    s = db_session()
    member = service.join_by_invite(s, json_payload().get("invite_code") or "", require_user())
    s.commit()
    return {"membership": member.to_dict(), "club": member.club.to_dict()}, 201


@bp.post("/<club_id>/leave")
@login_required
@rate_limit("GENERAL")
def leave_club(club_id: str):
    s = db_session()
    service.leave_club(s, club_id, require_user())
    s.commit()
    return {"ok": True}


# ---------- Invites ----------
@bp.get("/<club_id>/invite-code")
@login_required
def get_invite_code(club_id: str):
    return {"invite_code": service.get_invite_code(_access(club_id))}


@bp.post("/<club_id>/invite-code")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def regenerate_invite_code(club_id: str):
    s = db_session()
    code = service.regenerate_invite_code(s, _access(club_id), require_user())
    s.commit()
    return {"invite_code": code}


@bp.get("/<club_id>/invite-settings")
@login_required
def get_invite_settings(club_id: str):
    return service.get_invite_settings(db_session(), _access(club_id))


@bp.patch("/<club_id>/invite-settings")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def update_invite_settings(club_id: str):
    s = db_session()
    out = service.update_invite_settings(s, _access(club_id), json_payload(), require_user())
    s.commit()
    return out


# ---------- Member management ----------
@bp.patch("/<club_id>/members/<user_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def update_member_role(club_id: str, user_id: str):
    s = db_session()
    member = service.update_member_role(s, _access(club_id), user_id, json_payload().get("role"), require_user())
    s.commit()
    return {"membership": member.to_dict()}


@bp.delete("/<club_id>/members/<user_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def remove_member(club_id: str, user_id: str):
    s = db_session()
    service.remove_member(s, _access(club_id), user_id, require_user())
    s.commit()
    return {"ok": True}


@bp.post("/<club_id>/members/bulk")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def bulk_member_actions(club_id: str):
    s = db_session()
    out = service.bulk_member_actions(s, _access(club_id), json_payload(), require_user())
    s.commit()
    return out


# ---------- Join requests ----------
@bp.post("/<club_id>/join-requests")
@login_required
@rate_limit("CLUB_JOIN")
def request_to_join(club_id: str):
    s = db_session()
    jr = service.request_to_join(s, club_id, json_payload(), require_user())
    s.commit()
    return {"join_request": jr.to_dict()}, 201


@bp.delete("/<club_id>/join-requests/mine")
@login_required
@rate_limit("GENERAL")
def cancel_join_request(club_id: str):
    s = db_session()
    service.cancel_join_request(s, club_id, require_user())
    s.commit()
    return {"ok": True}


@bp.get("/<club_id>/join-requests")
@login_required
def list_join_requests(club_id: str):
    items = service.get_join_requests(db_session(), _access(club_id))
    return {"items": [jr.to_dict() for jr in items]}


@bp.post("/join-requests/<request_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def handle_join_request(request_id: str):
    s = db_session()
    jr = service.handle_join_request(s, request_id, json_payload().get("action") or "", require_user())
    s.commit()
    return {"join_request": jr.to_dict()}


# ---------- Bans ----------
@bp.post("/<club_id>/bans")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def ban_member(club_id: str):
    payload = json_payload()
    target = payload.get("user_id")
    if not isinstance(target, str) or not target:
        raise BadRequest("user_id is required")
    s = db_session()
    ban = service.ban_member(s, _access(club_id), target, payload, require_user())
    s.commit()
    return {"ban": ban.to_dict()}, 201


@bp.get("/<club_id>/bans")
@login_required
def banned_members(club_id: str):
    return {"items": service.get_banned_members(db_session(), _access(club_id))}


@bp.delete("/<club_id>/bans/<user_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def unban_member(club_id: str, user_id: str):
    s = db_session()
    service.unban_member(s, _access(club_id), user_id, require_user())
    s.commit()
    return {"ok": True}


# ---------- Admin messages ----------
@bp.post("/<club_id>/admin-messages")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def send_admin_message(club_id: str):
    s = db_session()
    msg = service.send_admin_message(s, _access(club_id), json_payload(), require_user())
    s.commit()
    return {"message": msg.to_dict()}, 201


@bp.get("/<club_id>/admin-messages")
@login_required
def admin_messages(club_id: str):
    return service.get_admin_messages(
        db_session(),
        _access(club_id),
        require_user(),
        limit=parse_limit(request.args.get("limit")),
        cursor=(request.args.get("cursor") or "").strip() or None,
    )


# ---------- Analytics ----------
@bp.get("/<club_id>/analytics")
@login_required
@rate_limit("READ_OPERATIONS")
def club_analytics(club_id: str):
    return service.get_club_analytics(db_session(), _access(club_id), request.args.get("range") or "30d")


@bp.get("/<club_id>/analytics/export")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def export_club_activity(club_id: str):
    body = service.export_club_activity(db_session(), _access(club_id))
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="club-{club_id}-activity.csv"'},
    )


# ---------- Uploads ----------
@bp.post("/<club_id>/image-upload-url")
@login_required
@rate_limit("CONTENT_UPLOAD")
def image_upload_url(club_id: str):
    s = db_session()
    storage = storage_from_config(current_app.config)
    out = service.generate_image_upload_url(s, _access(club_id), json_payload(), storage, require_user())
    s.commit()
    return out
