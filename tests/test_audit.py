import json
from datetime import timedelta

import pytest

from app.redline.audit import audit_to_dict, get_logs, log_admin_action, log_security_event, log_user_action, record_event
from app.redline.db import session_scope
from app.redline.models import AuditLog, User, utcnow


def _user(s) -> User:
    u = User(email="audit@example.com", password_hash="x", site_role="USER")
    s.add(u)
    s.flush()
    return u


def test_record_event_stores_metadata_and_defaults(app):
    with session_scope(app) as s:
        u = _user(s)
        ev = record_event(s, action="club.joined", user=u, resource_type="club", resource_id="c1", metadata={"join_method": "invite"})
        s.flush()
        assert ev.severity == "MEDIUM"
        assert ev.category == "USER_ACTION"
        assert json.loads(ev.metadata_json) == {"join_method": "invite"}
        assert audit_to_dict(ev)["metadata"] == {"join_method": "invite"}


@pytest.mark.parametrize(
    "kwargs",
    [{"severity": "EXTREME"}, {"category": "GOSSIP"}, {"resource_type": "garage"}],
)
def test_record_event_rejects_unknown_enums(app, kwargs):
    with session_scope(app) as s:
        with pytest.raises(ValueError):
            record_event(s, action="x", **kwargs)


def test_wrappers_set_category(app):
    with session_scope(app) as s:
        u = _user(s)
        assert log_user_action(s, "a", u).category == "USER_ACTION"
        sec = log_security_event(s, "b", u)
        assert (sec.category, sec.severity) == ("SECURITY", "HIGH")
        adm = log_admin_action(s, "c", u, severity="CRITICAL")
        assert (adm.category, adm.severity) == ("ADMINISTRATION", "CRITICAL")


def test_get_logs_filters_and_orders_newest_first(app):
    with session_scope(app) as s:
        u = _user(s)
        now = utcnow()
        for i, action in enumerate(["post.created", "club.joined", "club.joined"]):
            ev = record_event(s, action=action, user=u, resource_type="club", resource_id="c1")
            ev.timestamp = now - timedelta(minutes=10 - i)
        record_event(s, action="auth.login", user=u, category="SECURITY", severity="LOW")
        s.flush()

        joined = get_logs(s, action="club.joined")
        assert len(joined) == 2
        assert joined[0].timestamp > joined[1].timestamp

        assert len(get_logs(s, category="security")) == 1
        assert len(get_logs(s, resource_type="club", resource_id="c1")) == 3
        assert len(get_logs(s, start_date=now - timedelta(minutes=9, seconds=30))) == 3
        assert len(get_logs(s, limit=2)) == 2
        assert len(get_logs(s, user_id=u.id, offset=3)) == 1


def test_audit_rows_commit_with_the_business_change(app, api_as):
    api = api_as("driver@example.com")
    club = api.create_club()
    with session_scope(app) as s:
        ev = s.query(AuditLog).filter(AuditLog.action == "club.created").one()
        assert ev.resource_id == club["id"]
        assert ev.request_id
        assert ev.user_id == api.user_id
