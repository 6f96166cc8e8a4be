from __future__ import annotations

from flask import Blueprint, request

from app.redline.db import db_session
from app.redline.permissions import current_user, login_required, require_user
from app.redline.rate_limit import rate_limit
from app.redline.utils import json_payload, parse_bool_arg
from app.redline.modules.events import service

bp = Blueprint("events", __name__)


@bp.post("/clubs/<club_id>/events")
@login_required
@rate_limit("CONTENT_CREATE")
def create_event(club_id: str):
    s = db_session()
    event = service.create_event(s, club_id, json_payload(), require_user())
    s.commit()
    return {"event": event.to_dict()}, 201


@bp.get("/clubs/<club_id>/events")
@rate_limit("READ_OPERATIONS")
def club_events(club_id: str):
    upcoming = bool(parse_bool_arg(request.args.get("upcoming")))
    return {"items": service.get_club_events(db_session(), club_id, current_user(), upcoming=upcoming)}


@bp.get("/events/mine")
@login_required
def my_events():
    return {"items": service.get_my_events(db_session(), require_user())}


@bp.get("/events/<event_id>")
@rate_limit("READ_OPERATIONS")
def get_event(event_id: str):
    return {"event": service.get_event(db_session(), event_id, current_user())}


@bp.put("/events/<event_id>/attendance")
@login_required
@rate_limit("GENERAL")
def update_attendance(event_id: str):
    s = db_session()
    attendee = service.update_attendance(s, event_id, json_payload().get("status") or "", require_user())
    s.commit()
    return {"attendance": attendee.to_dict()}


@bp.patch("/events/<event_id>")
@login_required
@rate_limit("CONTENT_CREATE")
def update_event(event_id: str):
    s = db_session()
    event = service.update_event(s, event_id, json_payload(), require_user())
    s.commit()
    return {"event": event.to_dict()}


@bp.delete("/events/<event_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def delete_event(event_id: str):
    s = db_session()
    service.delete_event(s, event_id, require_user())
    s.commit()
    return {"ok": True}
