from datetime import datetime, timedelta, timezone

from app.redline.db import session_scope
from app.redline.models import AuditLog, utcnow
from app.redline.modules.events.models import ClubEvent, EventAttendee


def _when(days: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def _setup(api_as, **club_overrides):
    owner = api_as("owner@example.com")
    club = owner.create_club(**club_overrides)
    member = api_as("member@example.com")
    if club.get("invite_code"):
        member.post("/api/clubs/join-by-invite", json={"invite_code": club["invite_code"]})
    else:
        member.post(f"/api/clubs/{club['id']}/join")
    return owner, member, club


def _event(api, club_id, **overrides):
    payload = {"title": "Canyon run", "date": _when(3), "location": "Hill Country"}
    payload.update(overrides)
    r = api.post(f"/api/clubs/{club_id}/events", json=payload)
    assert r.status_code == 201, r.json
    return r.json["event"]


def test_create_event(api_as):
    owner, member, club = _setup(api_as)
    event = _event(member, club["id"], max_attendees=10)
    assert event["title"] == "Canyon run"
    assert event["organizer"]["id"] == member.user_id
    assert event["max_attendees"] == 10


def test_create_event_validation(api_as):
    owner, _, club = _setup(api_as)
    r = owner.post(f"/api/clubs/{club['id']}/events", json={"title": "Past", "date": _when(-1)})
    assert r.status_code == 400
    assert r.json["error"]["details"] == ["Event date cannot be in the past."]

    r = owner.post(f"/api/clubs/{club['id']}/events", json={"title": "", "date": "tomorrow", "max_attendees": 0})
    assert r.status_code == 400
    assert set(r.json["error"]["details"]) == {
        "Title is required.",
        "Date is not a valid date.",
        "max_attendees is out of range.",
    }


def test_outsider_cannot_create_event(api_as):
    _, _, club = _setup(api_as)
    outsider = api_as("outsider@example.com")
    assert outsider.post(f"/api/clubs/{club['id']}/events", json={"title": "x", "date": _when(1)}).status_code == 403


def test_club_events_sorted_by_date_with_upcoming_filter(app, api_as, client):
    owner, _, club = _setup(api_as)
    later = _event(owner, club["id"], title="Later", date=_when(10))
    sooner = _event(owner, club["id"], title="Sooner", date=_when(2))
    past = _event(owner, club["id"], title="Past", date=_when(1))
    with session_scope(app) as s:
        s.get(ClubEvent, past["id"]).date = utcnow() - timedelta(days=1)

    items = client.get(f"/api/clubs/{club['id']}/events").json["items"]
    assert [e["title"] for e in items] == ["Past", "Sooner", "Later"]
    upcoming = client.get(f"/api/clubs/{club['id']}/events?upcoming=true").json["items"]
    assert [e["id"] for e in upcoming] == [sooner["id"], later["id"]]


def test_attendance_and_capacity(api_as):
    owner, member, club = _setup(api_as)
    event = _event(owner, club["id"], max_attendees=1)
    url = f"/api/events/{event['id']}/attendance"

    r = member.put(url, json={"status": "ATTENDING"})
    assert r.status_code == 200
    assert r.json["attendance"]["status"] == "ATTENDING"
    # Re-confirming your own seat does not count against the limit.
    assert member.put(url, json={"status": "ATTENDING"}).status_code == 200

    r = owner.put(url, json={"status": "ATTENDING"})
    assert r.status_code == 400
    assert r.json["error"]["message"] == "Event is full"
    assert owner.put(url, json={"status": "PENDING"}).status_code == 200

    member.put(url, json={"status": "NOT_ATTENDING"})
    assert owner.put(url, json={"status": "ATTENDING"}).status_code == 200

    detail = owner.get(f"/api/events/{event['id']}").json["event"]
    assert detail["attending_count"] == 1
    assert detail["user_attendance"]["status"] == "ATTENDING"
    assert len(detail["attendees"]) == 2

    assert owner.put(url, json={"status": "MAYBE"}).status_code == 400


def test_rsvp_requires_membership(api_as):
    owner, _, club = _setup(api_as)
    event = _event(owner, club["id"])
    outsider = api_as("outsider@example.com")
    r = outsider.put(f"/api/events/{event['id']}/attendance", json={"status": "ATTENDING"})
    assert r.status_code == 403


def test_my_events(api_as):
    owner, member, club = _setup(api_as)
    event = _event(owner, club["id"])
    member.put(f"/api/events/{event['id']}/attendance", json={"status": "ATTENDING"})
    mine = member.get("/api/events/mine").json["items"]
    assert mine == [{"event": mine[0]["event"], "status": "ATTENDING"}]
    assert mine[0]["event"]["id"] == event["id"]


def test_private_club_events_hidden(api_as):
    owner, member, club = _setup(api_as, is_private=True)
    event = _event(owner, club["id"])
    outsider = api_as("outsider@example.com")
    assert outsider.get(f"/api/events/{event['id']}").status_code == 403
    assert outsider.get(f"/api/clubs/{club['id']}/events").status_code == 403
    assert member.get(f"/api/events/{event['id']}").status_code == 200


def test_update_event_permissions(app, api_as):
    owner, member, club = _setup(api_as)
    event = _event(member, club["id"])
    bystander = api_as("bystander@example.com")
    bystander.post(f"/api/clubs/{club['id']}/join")

    assert bystander.patch(f"/api/events/{event['id']}", json={"title": "Mine now"}).status_code == 403
    r = member.patch(f"/api/events/{event['id']}", json={"title": "Canyon run (rain date)"})
    assert r.status_code == 200
    assert r.json["event"]["title"] == "Canyon run (rain date)"
    assert member.patch(f"/api/events/{event['id']}", json={"title": ""}).status_code == 400

    assert owner.patch(f"/api/events/{event['id']}", json={"max_attendees": 5}).status_code == 200
    with session_scope(app) as s:
        categories = [
            ev.category for ev in s.query(AuditLog).filter(AuditLog.action == "event.updated").order_by(AuditLog.timestamp)
        ]
    assert categories == ["USER_ACTION", "MODERATION"]


def test_delete_event_cascades_attendance(app, api_as):
    owner, member, club = _setup(api_as)
    event = _event(member, club["id"])
    member.put(f"/api/events/{event['id']}/attendance", json={"status": "ATTENDING"})

    assert owner.delete(f"/api/events/{event['id']}").status_code == 200
    assert owner.get(f"/api/events/{event['id']}").status_code == 404
    with session_scope(app) as s:
        assert s.query(EventAttendee).count() == 0
