import pytest

from app.redline.db import session_scope
from app.redline.models import AuditLog
from app.redline.rate_limit import RATE_LIMIT_CONFIGS, RateLimitConfig, RateLimiter, get_rate_limiter, rate_limit


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_sliding_window_allows_then_blocks():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    cfg = RateLimitConfig(window_seconds=60, max_requests=3)

    results = [limiter.check("k", cfg) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, True]
    assert [r.remaining for r in results] == [2, 1, 0]

    blocked = limiter.check("k", cfg)
    assert not blocked.allowed
    assert blocked.retry_after == 60
    assert blocked.headers()["X-RateLimit-Remaining"] == "0"


def test_window_slides_as_old_hits_expire():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    cfg = RateLimitConfig(window_seconds=60, max_requests=2)

    limiter.check("k", cfg)
    clock.now += 30
    limiter.check("k", cfg)
    assert not limiter.check("k", cfg).allowed

    clock.now += 31  # first hit has left the window
    r = limiter.check("k", cfg)
    assert r.allowed
    assert r.remaining == 0
    assert not limiter.check("k", cfg).allowed


def test_rejected_hits_are_not_counted():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    cfg = RateLimitConfig(window_seconds=10, max_requests=1)
    limiter.check("k", cfg)
    for _ in range(5):
        limiter.check("k", cfg)
    clock.now += 11
    assert limiter.check("k", cfg).allowed


def test_keys_are_independent_and_reset_clears():
    limiter = RateLimiter(clock=FakeClock())
    cfg = RateLimitConfig(window_seconds=60, max_requests=1)
    assert limiter.check("a", cfg).allowed
    assert limiter.check("b", cfg).allowed
    assert not limiter.check("a", cfg).allowed
    limiter.reset("a")
    assert limiter.check("a", cfg).allowed


def test_cleanup_drops_idle_keys():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    cfg = RateLimitConfig(window_seconds=60, max_requests=5)
    limiter.check("old", cfg)
    clock.now += 61
    limiter.check("fresh", cfg)
    assert limiter.cleanup() == 1
    assert len(limiter) == 1


def test_unknown_limit_class_rejected_at_decoration():
    with pytest.raises(ValueError):
        rate_limit("NOT_A_CLASS")


def test_login_limit_returns_429_with_headers(app, client, make_user, monkeypatch):
    make_user("driver@example.com")
    app.config["RATE_LIMIT_ENABLED"] = True
    monkeypatch.setitem(RATE_LIMIT_CONFIGS, "AUTH_LOGIN", RateLimitConfig(60, 2))

    for _ in range(2):
        r = client.post("/auth/login", json={"email": "driver@example.com", "password": "bad-password"})
        assert r.status_code == 401
    r = client.post("/auth/login", json={"email": "driver@example.com", "password": "bad-password"})
    assert r.status_code == 429
    assert r.json["error"]["code"] == "TOO_MANY_REQUESTS"
    assert r.headers["X-RateLimit-Limit"] == "2"
    assert r.headers["X-RateLimit-Remaining"] == "0"
    assert int(r.headers["Retry-After"]) >= 1

    with session_scope(app) as s:
        ev = s.query(AuditLog).filter(AuditLog.action == "security.rate_limit_exceeded").one()
        assert ev.category == "SECURITY"


def test_successful_login_resets_counter(app, client, make_user, monkeypatch):
    make_user("driver@example.com")
    app.config["RATE_LIMIT_ENABLED"] = True
    monkeypatch.setitem(RATE_LIMIT_CONFIGS, "AUTH_LOGIN", RateLimitConfig(60, 2))

    client.post("/auth/login", json={"email": "driver@example.com", "password": "bad-password"})
    assert client.post("/auth/login", json={"email": "driver@example.com", "password": "correct-horse-9"}).status_code == 200
    client.post("/auth/login", json={"email": "driver@example.com", "password": "bad-password"})
    r = client.post("/auth/login", json={"email": "driver@example.com", "password": "bad-password"})
    assert r.status_code == 401


def test_allowed_responses_carry_rate_limit_headers(app, client):
    app.config["RATE_LIMIT_ENABLED"] = True
    r = client.get("/api/clubs/search")
    assert r.status_code == 200
    assert r.headers["X-RateLimit-Limit"] == str(RATE_LIMIT_CONFIGS["SEARCH"].max_requests)


def test_super_admin_bypasses_limits(app, api_as, monkeypatch):
    api = api_as("root@example.com", site_role="SUPER_ADMIN")
    app.config["RATE_LIMIT_ENABLED"] = True
    monkeypatch.setitem(RATE_LIMIT_CONFIGS, "SEARCH", RateLimitConfig(60, 1))
    for _ in range(3):
        assert api.get("/api/clubs/search").status_code == 200
    assert len(get_rate_limiter(app)) == 0


def test_leave_and_rejoin_loop_is_limited(app, api_as, monkeypatch):
    owner = api_as("owner@example.com")
    club = owner.create_club()
    member = api_as("member@example.com")
    app.config["RATE_LIMIT_ENABLED"] = True
    monkeypatch.setitem(RATE_LIMIT_CONFIGS, "GENERAL", RateLimitConfig(60, 2))

    for _ in range(2):
        assert member.post(f"/api/clubs/{club['id']}/join").status_code in (200, 201)
        assert member.post(f"/api/clubs/{club['id']}/leave").status_code == 200
    member.post(f"/api/clubs/{club['id']}/join")
    r = member.post(f"/api/clubs/{club['id']}/leave")
    assert r.status_code == 429
    assert "Retry-After" in r.headers


@pytest.mark.parametrize(
    "method,path",
    [
        ("post", "/api/clubs/club-1/leave"),
        ("delete", "/api/clubs/club-1/join-requests/mine"),
        ("put", "/api/events/event-1/attendance"),
        ("delete", "/api/events/event-1"),
        ("delete", "/api/posts/post-1"),
        ("delete", "/api/comments/comment-1"),
        ("delete", "/api/challenges/challenge-1"),
    ],
)
def test_mutating_routes_carry_a_limit(app, api_as, method, path):
    api = api_as("driver@example.com")
    app.config["RATE_LIMIT_ENABLED"] = True
    r = getattr(api, method)(path, json={"status": "ATTENDING"})
    assert r.status_code != 429
    assert "X-RateLimit-Limit" in r.headers
