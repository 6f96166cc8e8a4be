from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func

from app.redline.audit import log_user_action, record_event
from app.redline.db import flush_or_conflict
from app.redline.errors import BadRequest, Forbidden, NotFound, ValidationFailed
from app.redline.models import User, utcnow
from app.redline.permissions import load_club_access
from app.redline.validation import datetime_field, float_field, int_field, location_field, text_field
from app.redline.modules.events.models import ClubEvent, EventAttendee

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


ATTENDANCE_STATUSES = ("PENDING", "ATTENDING", "NOT_ATTENDING")


def _parse_event_fields(payload: dict, errors: list[str], *, partial: bool) -> dict:
    out: dict = {}

    def wanted(key: str) -> bool:
        return not partial or key in payload

    if wanted("title"):
        out["title"] = text_field(payload, "title", errors, label="Title", min_len=1, max_len=200)
    if wanted("description"):
        out["description"] = text_field(payload, "description", errors, label="Description", max_len=2000)
    if wanted("date"):
        out["date"] = datetime_field(payload, "date", errors, label="Date", required=True)
        if out["date"] is not None and out["date"] < utcnow():
            errors.append("Event date cannot be in the past.")
    if wanted("location"):
        out["location"] = location_field(payload, "location", errors, label="Location")
    if wanted("latitude"):
        out["latitude"] = float_field(payload, "latitude", errors, lo=-90, hi=90)
    if wanted("longitude"):
        out["longitude"] = float_field(payload, "longitude", errors, lo=-180, hi=180)
    if wanted("max_attendees"):
        out["max_attendees"] = int_field(payload, "max_attendees", errors, lo=1, hi=100000)
    return out


def _get_event(s: "Session", event_id: str) -> ClubEvent:
    event = s.get(ClubEvent, event_id)
    if not event:
        raise NotFound("Event not found")
    return event


def attending_counts(s: "Session", event_ids: list[str]) -> dict[str, int]:
    if not event_ids:
        return {}
    return dict(
        s.query(EventAttendee.event_id, func.count(EventAttendee.id))
        .filter(EventAttendee.event_id.in_(event_ids), EventAttendee.status == "ATTENDING")
        .group_by(EventAttendee.event_id)
        .all()
    )


def create_event(s: "Session", club_id: str, payload: dict, user: User) -> ClubEvent:
    access = load_club_access(s, club_id, user)
    access.require("events:create")
    errors: list[str] = []
    fields = _parse_event_fields(payload, errors, partial=False)
    if errors:
        raise ValidationFailed(errors)

    now = utcnow()
    event = ClubEvent(**fields, club_id=club_id, organizer_id=user.id, created_at=now, updated_at=now)
    s.add(event)
    s.flush()
    log_user_action(
        s,
        "event.created",
        user,
        resource_type="event",
        resource_id=event.id,
        metadata={"club_id": club_id, "title": event.title, "date": event.date.isoformat()},
    )
    return event


def get_event(s: "Session", event_id: str, user: User | None) -> dict:
    event = _get_event(s, event_id)
    if not load_club_access(s, event.club_id, user).can_view():
        raise Forbidden("You must be a member to view events in this private club")
    mine = None
    if user is not None:
        mine = next((a for a in event.attendees if a.user_id == user.id), None)
    return {
        **event.to_dict(),
        "attendees": [a.to_dict() for a in event.attendees],
        "attending_count": sum(1 for a in event.attendees if a.status == "ATTENDING"),
        "user_attendance": mine.to_dict() if mine else None,
    }


def get_club_events(s: "Session", club_id: str, user: User | None, *, upcoming: bool = False) -> list[dict]:
    access = load_club_access(s, club_id, user)
    if not access.can_view():
        raise Forbidden("You must be a member to view events in this private club")
    q = s.query(ClubEvent).filter(ClubEvent.club_id == club_id)
    if upcoming:
        q = q.filter(ClubEvent.date >= utcnow())
    events = q.order_by(ClubEvent.date.asc(), ClubEvent.id.asc()).all()
    counts = attending_counts(s, [e.id for e in events])
    return [{**e.to_dict(), "attending_count": counts.get(e.id, 0)} for e in events]


def update_attendance(s: "Session", event_id: str, status: str, user: User) -> EventAttendee:
    if status not in ATTENDANCE_STATUSES:
        raise BadRequest(f"Invalid status. Must be one of: {', '.join(ATTENDANCE_STATUSES)}")
    event = _get_event(s, event_id)
    load_club_access(s, event.club_id, user).require_member("You must be a member to RSVP to this event")

    if status == "ATTENDING" and event.max_attendees is not None:
        others = (
            s.query(func.count(EventAttendee.id))
            .filter(
                EventAttendee.event_id == event.id,
                EventAttendee.status == "ATTENDING",
                EventAttendee.user_id != user.id,
            )
            .scalar()
            or 0
        )
        if others >= event.max_attendees:
            raise BadRequest("Event is full")

    now = utcnow()
    attendee = (
        s.query(EventAttendee).filter(EventAttendee.event_id == event.id, EventAttendee.user_id == user.id).one_or_none()
    )
    if attendee is None:
        attendee = EventAttendee(event_id=event.id, user_id=user.id, status=status, created_at=now, updated_at=now)
        s.add(attendee)
        flush_or_conflict(s, "Attendance already recorded")
    else:
        attendee.status = status
        attendee.updated_at = now
    log_user_action(
        s,
        "event.attendance_updated",
        user,
        resource_type="event",
        resource_id=event.id,
        severity="LOW",
        metadata={"status": status},
    )
    return attendee


def get_my_events(s: "Session", user: User) -> list[dict]:
    rows = (
        s.query(EventAttendee, ClubEvent)
        .join(ClubEvent, ClubEvent.id == EventAttendee.event_id)
        .filter(EventAttendee.user_id == user.id)
        .order_by(ClubEvent.date.asc())
        .all()
    )
    return [{"event": event.to_dict(), "status": attendee.status} for attendee, event in rows]


def _require_event_editor(s: "Session", event: ClubEvent, user: User, verb: str) -> bool:
    """True when acting as organizer, False when acting as club moderator."""
    if event.organizer_id == user.id:
        return True
    if not load_club_access(s, event.club_id, user).at_least("MODERATOR"):
        raise Forbidden(f"Only the organizer or a club moderator can {verb} this event")
    return False


def update_event(s: "Session", event_id: str, payload: dict, user: User) -> ClubEvent:
    event = _get_event(s, event_id)
    is_organizer = _require_event_editor(s, event, user, "edit")
    errors: list[str] = []
    fields = _parse_event_fields(payload, errors, partial=True)
    if "title" in fields and fields["title"] is None:
        errors.append("Title cannot be empty.")
    if errors:
        raise ValidationFailed(errors)

    changed = []
    for key, value in fields.items():
        if getattr(event, key) != value:
            setattr(event, key, value)
            changed.append(key)
    if changed:
        event.updated_at = utcnow()
        record_event(
            s,
            action="event.updated",
            user=user,
            resource_type="event",
            resource_id=event.id,
            category="USER_ACTION" if is_organizer else "MODERATION",
            metadata={"fields": changed},
        )
    return event


def delete_event(s: "Session", event_id: str, user: User) -> None:
    event = _get_event(s, event_id)
    is_organizer = _require_event_editor(s, event, user, "delete")
    record_event(
        s,
        action="event.deleted",
        user=user,
        target_user_id=None if is_organizer else event.organizer_id,
        resource_type="event",
        resource_id=event.id,
        category="USER_ACTION" if is_organizer else "MODERATION",
        metadata={"club_id": event.club_id, "title": event.title},
    )
    s.delete(event)
    s.flush()
