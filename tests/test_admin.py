from app.redline.db import session_scope
from app.redline.models import AuditLog


def test_audit_logs_require_super_admin(api_as):
    admin = api_as("staff@example.com", site_role="ADMIN")
    r = admin.get("/api/admin/audit-logs")
    assert r.status_code == 403
    assert r.json["error"]["message"] == "Missing permission: system:logs"

    root = api_as("root@example.com", site_role="SUPER_ADMIN")
    root.create_club()
    items = root.get("/api/admin/audit-logs?action=club.created").json["items"]
    assert len(items) == 1
    assert items[0]["resource_type"] == "club"
    assert items[0]["metadata"]["name"] == "Midnight Runners"


def test_audit_log_filters_validate_input(api_as):
    root = api_as("root@example.com", site_role="SUPER_ADMIN")
    assert root.get("/api/admin/audit-logs?start_date=yesterday").status_code == 400
    assert root.get("/api/admin/audit-logs?limit=501").status_code == 400
    assert root.get("/api/admin/audit-logs?offset=abc").status_code == 400
    assert root.get("/api/admin/audit-logs?limit=500&offset=3").status_code == 200


def test_list_users_search(api_as, make_user):
    make_user("alice@example.com", name="Alice Boost")
    make_user("bob@example.com", name="Bob Turbo")
    admin = api_as("staff@example.com", site_role="ADMIN")
    items = admin.get("/api/admin/users?q=turbo").json["items"]
    assert [u["email"] for u in items] == ["bob@example.com"]

    user = api_as("driver@example.com")
    assert user.get("/api/admin/users").status_code == 403


def test_promote_user(app, api_as, make_user):
    target = make_user("driver@example.com")
    root = api_as("root@example.com", site_role="SUPER_ADMIN")

    r = root.post(f"/api/admin/users/{target}/site-role", json={"site_role": "ADMIN"})
    assert r.status_code == 200
    assert r.json["user"]["site_role"] == "ADMIN"

    assert root.post(f"/api/admin/users/{target}/site-role", json={"site_role": "OWNER"}).status_code == 400
    assert root.post("/api/admin/users/nobody/site-role", json={"site_role": "USER"}).status_code == 404
    assert root.post(f"/api/admin/users/{root.user_id}/site-role", json={"site_role": "USER"}).status_code == 400

    r = root.post(f"/api/admin/users/{target}/site-role", json={"site_role": "SUPER_ADMIN"})
    assert r.status_code == 200
    with session_scope(app) as s:
        events = s.query(AuditLog).filter(AuditLog.action == "user.site_role.updated").order_by(AuditLog.timestamp).all()
        assert [(e.category, e.severity) for e in events] == [("ADMINISTRATION", "HIGH"), ("ADMINISTRATION", "CRITICAL")]
        assert all(e.target_user_id == target for e in events)


def test_site_admin_cannot_promote(api_as, make_user):
    target = make_user("driver@example.com")
    admin = api_as("staff@example.com", site_role="ADMIN")
    r = admin.post(f"/api/admin/users/{target}/site-role", json={"site_role": "ADMIN"})
    assert r.status_code == 403


def test_deactivate_user(api_as, make_user):
    driver = api_as("driver@example.com")
    driver_id = driver.user_id
    root_id = make_user("root@example.com", site_role="SUPER_ADMIN")
    admin = api_as("staff@example.com", site_role="ADMIN")

    assert admin.post(f"/api/admin/users/{root_id}/deactivate").status_code == 403
    assert admin.post(f"/api/admin/users/{admin.user_id}/deactivate").status_code == 400

    r = admin.post(f"/api/admin/users/{driver_id}/deactivate", json={"reason": "Street racing"})
    assert r.status_code == 200
    assert r.json["user"]["is_active"] is False

    # The existing session stops working and a fresh login is refused.
    assert driver.get("/auth/me").status_code == 401
    assert driver.login("driver@example.com").status_code == 401
