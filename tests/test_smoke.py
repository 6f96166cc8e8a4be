import pytest

from app.redline import create_app


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"


def test_request_id_generated_when_missing(client):
    r = client.get("/api/clubs/search")
    assert r.status_code == 200
    assert len(r.headers["X-Request-ID"]) == 32


def test_unknown_route_is_json_404(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json["error"]["code"] == "NOT_FOUND"


def test_method_not_allowed_is_json(client):
    r = client.put("/health")
    assert r.status_code == 405
    assert r.json["error"]["code"] == "METHOD_NOT_ALLOWED"


def test_production_requires_postgres(monkeypatch, tmp_path):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "a-strong-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError, match="Postgres"):
        create_app()


def test_production_requires_secret_key(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost/redline")
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app()
