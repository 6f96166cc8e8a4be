import pytest
from werkzeug.security import generate_password_hash

from app.redline import create_app
from app.redline.db import session_scope
from app.redline.models import Base, User

PASSWORD = "correct-horse-9"


class ApiClient:
    """Test client that remembers the CSRF token handed out at login."""

    def __init__(self, client):
        self.client = client
        self.csrf_token = None

    def login(self, email: str, password: str = PASSWORD):
        r = self.client.post("/auth/login", json={"email": email, "password": password})
        if r.status_code == 200:
            self.csrf_token = r.json["csrf_token"]
        return r

    def _headers(self, headers=None) -> dict:
        out = dict(headers or {})
        if self.csrf_token:
            out.setdefault("X-CSRF-Token", self.csrf_token)
        return out

    def get(self, url, **kw):
        return self.client.get(url, **kw)

    def post(self, url, json=None, headers=None, **kw):
        return self.client.post(url, json=json, headers=self._headers(headers), **kw)

    def put(self, url, json=None, headers=None, **kw):
        return self.client.put(url, json=json, headers=self._headers(headers), **kw)

    def patch(self, url, json=None, headers=None, **kw):
        return self.client.patch(url, json=json, headers=self._headers(headers), **kw)

    def delete(self, url, json=None, headers=None, **kw):
        return self.client.delete(url, json=json, headers=self._headers(headers), **kw)

    @property
    def user_id(self) -> str:
        return self.get("/auth/me").json["user"]["id"]

    def create_club(self, **overrides) -> dict:
        payload = {"name": "Midnight Runners", "description": "Late night drives", "city": "Austin", "territory": "Texas"}
        payload.update(overrides)
        r = self.post("/api/clubs", json=payload)
        assert r.status_code == 201, r.json
        return r.json["club"]


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "S3_PUBLIC_URL"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def make_user(app):
    def _make(email: str, *, site_role: str = "USER", name: str | None = None, is_active: bool = True) -> str:
        with session_scope(app) as s:
            u = User(
                email=email,
                name=name or email.split("@")[0].title(),
                password_hash=generate_password_hash(PASSWORD),
                site_role=site_role,
                is_active=is_active,
            )
            s.add(u)
            s.flush()
            return u.id

    return _make


@pytest.fixture()
def api_as(app, make_user):
    """Create a user (if needed) and return a logged-in ApiClient for them."""

    def _login(email: str, *, site_role: str = "USER") -> ApiClient:
        with session_scope(app) as s:
            exists = s.query(User.id).filter(User.email == email).first()
        if not exists:
            make_user(email, site_role=site_role)
        api = ApiClient(app.test_client())
        r = api.login(email)
        assert r.status_code == 200, r.json
        return api

    return _login

