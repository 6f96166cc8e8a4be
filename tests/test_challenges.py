from datetime import datetime, timedelta, timezone

import pytest

from app.redline.db import session_scope
from app.redline.modules.challenges.models import LeaderboardEntry
from app.redline.modules.challenges.service import lower_is_better, rank_scores


def _iso(days: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def _payload(**overrides) -> dict:
    payload = {
        "title": "Quarter mile",
        "description": "Best time down the strip",
        "type": "TIME_TRIAL",
        "difficulty": "MEDIUM",
    }
    payload.update(overrides)
    return payload


def _create(api, **overrides) -> dict:
    r = api.post("/api/challenges", json=_payload(**overrides))
    assert r.status_code == 201, r.json
    return r.json["challenge"]


@pytest.mark.parametrize(
    "scores,ascending,expected",
    [
        ([10, 30, 30, 20], False, [4, 1, 1, 3]),
        ([12.5, 11.0, 12.5, 13.1], True, [2, 1, 2, 4]),
        ([], True, []),
        ([5], False, [1]),
    ],
)
def test_rank_scores(scores, ascending, expected):
    assert rank_scores(scores, ascending=ascending) == expected


def test_only_time_trials_rank_ascending():
    assert lower_is_better("TIME_TRIAL") is True
    assert lower_is_better("DISTANCE") is False
    assert lower_is_better("PHOTO_CONTEST") is False


def test_any_user_can_create_challenge_without_club(api_as, client):
    driver = api_as("driver@example.com")
    personal = _create(driver)
    assert personal["is_pre_made"] is False
    assert personal["club_id"] is None
    assert personal["creator_id"] == driver.user_id

    template = _create(driver, city="Austin", is_pre_made=True)
    assert template["is_pre_made"] is True

    listed = client.get("/api/challenges/pre-made?type=TIME_TRIAL&city=Austin").json
    assert [c["id"] for c in listed["items"]] == [template["id"]]
    assert client.get("/api/challenges/pre-made?type=DISTANCE").json["items"] == []
    assert client.get("/api/challenges/pre-made?type=DRAG").status_code == 400


@pytest.mark.parametrize("score", ["12.5", "nan", "inf", "-inf", True, [1]])
def test_result_score_must_be_finite_json_number(api_as, score):
    driver = api_as("driver@example.com")
    challenge = _create(driver)
    driver.post(f"/api/challenges/{challenge['id']}/participate")
    r = driver.post(f"/api/challenges/{challenge['id']}/results", json={"score": score})
    assert r.status_code == 400
    assert any(d.startswith("score must be") for d in r.json["error"]["details"])
    assert driver.get(f"/api/challenges/{challenge['id']}").json["challenge"]["user_participation"]["score"] is None


def test_create_challenge_validation(api_as):
    admin = api_as("staff@example.com", site_role="ADMIN")
    r = admin.post(
        "/api/challenges",
        json=_payload(type="DRAG", difficulty="NIGHTMARE", start_date=_iso(5), end_date=_iso(1), parameters=[1]),
    )
    assert r.status_code == 400
    assert len(r.json["error"]["details"]) == 4


def test_club_challenge_needs_moderator(api_as):
    owner = api_as("owner@example.com")
    club = owner.create_club()
    member = api_as("member@example.com")
    member.post(f"/api/clubs/{club['id']}/join")

    assert member.post("/api/challenges", json=_payload(club_id=club["id"])).status_code == 403
    challenge = _create(owner, club_id=club["id"])
    assert challenge["is_pre_made"] is False

    items = member.get(f"/api/clubs/{club['id']}/challenges").json["items"]
    assert [c["id"] for c in items] == [challenge["id"]]


def test_time_trial_leaderboard_ranks_fastest_first(api_as):
    owner = api_as("owner@example.com")
    club = owner.create_club()
    challenge = _create(owner, club_id=club["id"], city="Austin")
    times = {"a@example.com": 13.2, "b@example.com": 12.1, "c@example.com": 13.2}
    for email, seconds in times.items():
        driver = api_as(email)
        driver.post(f"/api/clubs/{club['id']}/join")
        assert driver.post(f"/api/challenges/{challenge['id']}/participate").status_code == 201
        r = driver.post(f"/api/challenges/{challenge['id']}/results", json={"score": seconds})
        assert r.status_code == 200
        assert r.json["participation"]["score"] == seconds

    board = owner.get(f"/api/challenges/{challenge['id']}/leaderboard").json
    assert board["scope"] == "GLOBAL"
    assert board["scope_value"] is None
    assert board["lower_is_better"] is True
    assert [e["score"] for e in board["entries"]] == [12.1, 13.2, 13.2]
    assert [e["rank"] for e in board["entries"]] == [1, 2, 2]

    city = owner.get(f"/api/challenges/{challenge['id']}/leaderboard?scope=city").json
    assert city["scope_value"] == "Austin"
    assert len(city["entries"]) == 3
    club_board = owner.get(f"/api/challenges/{challenge['id']}/leaderboard?scope=CLUB").json
    assert club_board["scope_value"] == club["id"]
    assert owner.get(f"/api/challenges/{challenge['id']}/leaderboard?scope=TERRITORY").json["entries"] == []
    assert owner.get(f"/api/challenges/{challenge['id']}/leaderboard?scope=PLANET").status_code == 400


def test_resubmitting_updates_rank(app, api_as):
    admin = api_as("staff@example.com", site_role="ADMIN")
    challenge = _create(admin, type="DISTANCE", title="Longest day")
    first = api_as("first@example.com")
    second = api_as("second@example.com")
    for api, miles in ((first, 300), (second, 250)):
        api.post(f"/api/challenges/{challenge['id']}/participate")
        api.post(f"/api/challenges/{challenge['id']}/results", json={"score": miles})

    second.post(f"/api/challenges/{challenge['id']}/results", json={"score": 410})
    board = admin.get(f"/api/challenges/{challenge['id']}/leaderboard").json
    assert board["lower_is_better"] is False
    assert [(e["user_id"], e["rank"]) for e in board["entries"]] == [(second.user_id, 1), (first.user_id, 2)]
    with session_scope(app) as s:
        assert s.query(LeaderboardEntry).count() == 2


def test_participation_rules(api_as):
    admin = api_as("staff@example.com", site_role="ADMIN")
    challenge = _create(admin)
    driver = api_as("driver@example.com")

    assert driver.post(f"/api/challenges/{challenge['id']}/results", json={"score": 10}).status_code == 404
    assert driver.post(f"/api/challenges/{challenge['id']}/participate").status_code == 201
    assert driver.post(f"/api/challenges/{challenge['id']}/participate").status_code == 409
    assert driver.post(f"/api/challenges/{challenge['id']}/results", json={}).status_code == 400
    assert driver.post(f"/api/challenges/{challenge['id']}/results", json={"score": -1}).status_code == 400

    detail = driver.get(f"/api/challenges/{challenge['id']}").json["challenge"]
    assert detail["participant_count"] == 1
    assert detail["user_participation"]["score"] is None

    mine = driver.get("/api/challenges/mine").json["items"]
    assert mine[0]["challenge"]["id"] == challenge["id"]


def test_ended_challenge_rejects_participants(api_as):
    admin = api_as("staff@example.com", site_role="ADMIN")
    challenge = _create(admin, start_date=_iso(-10), end_date=_iso(-1))
    driver = api_as("driver@example.com")
    r = driver.post(f"/api/challenges/{challenge['id']}/participate")
    assert r.status_code == 400
    assert r.json["error"]["message"] == "Challenge has ended"


def test_club_challenge_requires_membership(api_as):
    owner = api_as("owner@example.com")
    club = owner.create_club(is_private=True)
    challenge = _create(owner, club_id=club["id"])
    outsider = api_as("outsider@example.com")
    assert outsider.post(f"/api/challenges/{challenge['id']}/participate").status_code == 403
    assert outsider.get(f"/api/challenges/{challenge['id']}").status_code == 403
    assert outsider.get(f"/api/challenges/{challenge['id']}/leaderboard").status_code == 403


def test_delete_challenge(api_as):
    owner = api_as("owner@example.com")
    club = owner.create_club()
    moderator = api_as("mod@example.com")
    moderator.post(f"/api/clubs/{club['id']}/join")
    owner.patch(f"/api/clubs/{club['id']}/members/{moderator.user_id}", json={"role": "MODERATOR"})
    challenge = _create(moderator, club_id=club["id"])

    bystander = api_as("bystander@example.com")
    bystander.post(f"/api/clubs/{club['id']}/join")
    assert bystander.delete(f"/api/challenges/{challenge['id']}").status_code == 403
    assert owner.delete(f"/api/challenges/{challenge['id']}").status_code == 200
    assert owner.get(f"/api/challenges/{challenge['id']}").status_code == 404


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_result_score_rejects_non_finite_json_literals(api_as, literal):
    driver = api_as("driver@example.com")
    challenge = _create(driver)
    driver.post(f"/api/challenges/{challenge['id']}/participate")
    r = driver.post(
        f"/api/challenges/{challenge['id']}/results",
        data='{"score": %s}' % literal,
        content_type="application/json",
    )
    assert r.status_code == 400
    assert "score must be a finite number." in r.json["error"]["details"]
