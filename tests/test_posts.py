from app.redline.db import session_scope
from app.redline.models import AuditLog
from app.redline.modules.posts.models import PostComment


def _club_with_member(api_as, **club_overrides):
    owner = api_as("owner@example.com")
    club = owner.create_club(**club_overrides)
    member = api_as("member@example.com")
    if club.get("invite_code"):
        member.post("/api/clubs/join-by-invite", json={"invite_code": club["invite_code"]})
    else:
        member.post(f"/api/clubs/{club['id']}/join")
    return owner, member, club


def _post(api, club_id, content="Cars and coffee this Saturday"):
    r = api.post(f"/api/clubs/{club_id}/posts", json={"content": content})
    assert r.status_code == 201, r.json
    return r.json["post"]


def test_create_post_requires_membership(api_as):
    owner, member, club = _club_with_member(api_as)
    outsider = api_as("outsider@example.com")
    r = outsider.post(f"/api/clubs/{club['id']}/posts", json={"content": "hello"})
    assert r.status_code == 403

    post = _post(member, club["id"])
    assert post["like_count"] == 0
    assert post["comment_count"] == 0
    assert post["comments"] == []
    assert post["author"]["id"] == member.user_id


def test_create_post_validation(api_as):
    owner, _, club = _club_with_member(api_as)
    r = owner.post(
        f"/api/clubs/{club['id']}/posts",
        json={"content": "<script>alert(1)</script>", "images": ["https://evil.example.com/a.png"]},
    )
    assert r.status_code == 400
    assert r.json["error"]["details"] == [
        "Content contains disallowed content.",
        "One or more image URLs are not allowed.",
    ]

    ok = owner.post(
        f"/api/clubs/{club['id']}/posts",
        json={"content": "Dyno day", "images": ["https://i.imgur.com/abc.jpg"]},
    )
    assert ok.status_code == 201
    assert ok.json["post"]["images"] == ["https://i.imgur.com/abc.jpg"]


def test_club_feed_is_newest_first_and_paginated(api_as, client):
    owner, _, club = _club_with_member(api_as)
    ids = [_post(owner, club["id"], f"post {i}")["id"] for i in range(3)]

    page = client.get(f"/api/clubs/{club['id']}/posts?limit=2").json
    assert [p["id"] for p in page["items"]] == [ids[2], ids[1]]
    rest = client.get(f"/api/clubs/{club['id']}/posts?limit=2&cursor={page['next_cursor']}").json
    assert [p["id"] for p in rest["items"]] == [ids[0]]
    assert rest["next_cursor"] is None


def test_private_club_feed_hidden_from_outsiders(api_as):
    owner, member, club = _club_with_member(api_as, is_private=True)
    post = _post(owner, club["id"])
    outsider = api_as("outsider@example.com")
    assert outsider.get(f"/api/clubs/{club['id']}/posts").status_code == 403
    assert outsider.get(f"/api/posts/{post['id']}").status_code == 403
    assert member.get(f"/api/posts/{post['id']}").status_code == 200


def test_toggle_like(api_as):
    owner, member, club = _club_with_member(api_as)
    post = _post(owner, club["id"])

    assert member.post(f"/api/posts/{post['id']}/like").json == {"liked": True, "like_count": 1}
    assert owner.post(f"/api/posts/{post['id']}/like").json == {"liked": True, "like_count": 2}
    assert member.post(f"/api/posts/{post['id']}/like").json == {"liked": False, "like_count": 1}

    view = owner.get(f"/api/posts/{post['id']}").json["post"]
    assert view["like_count"] == 1
    assert view["is_liked_by_user"] is True
    assert member.get(f"/api/posts/{post['id']}").json["post"]["is_liked_by_user"] is False

    outsider = api_as("outsider@example.com")
    assert outsider.post(f"/api/posts/{post['id']}/like").status_code == 403


def test_comments_are_threaded(api_as):
    owner, member, club = _club_with_member(api_as)
    post = _post(owner, club["id"])

    r = member.post(f"/api/posts/{post['id']}/comments", json={"content": "Count me in"})
    assert r.status_code == 201
    top = r.json["comment"]
    reply = owner.post(
        f"/api/posts/{post['id']}/comments", json={"content": "Bring the Supra", "parent_id": top["id"]}
    ).json["comment"]
    assert reply["parent_id"] == top["id"]

    view = owner.get(f"/api/posts/{post['id']}").json["post"]
    assert view["comment_count"] == 2
    assert len(view["comments"]) == 1
    assert view["comments"][0]["replies"][0]["id"] == reply["id"]

    other = _post(owner, club["id"], "Another thread")
    r = owner.post(f"/api/posts/{other['id']}/comments", json={"content": "x", "parent_id": top["id"]})
    assert r.status_code == 400
    assert member.post(f"/api/posts/{post['id']}/comments", json={"content": ""}).status_code == 400


def test_comment_like_toggle(api_as):
    owner, member, club = _club_with_member(api_as)
    post = _post(owner, club["id"])
    comment = member.post(f"/api/posts/{post['id']}/comments", json={"content": "Nice"}).json["comment"]

    assert owner.post(f"/api/comments/{comment['id']}/like").json == {"liked": True, "like_count": 1}
    node = owner.get(f"/api/posts/{post['id']}").json["post"]["comments"][0]
    assert node["like_count"] == 1
    assert node["is_liked_by_user"] is True
    assert owner.post(f"/api/comments/{comment['id']}/like").json == {"liked": False, "like_count": 0}


def test_only_author_edits_post(api_as):
    owner, member, club = _club_with_member(api_as)
    post = _post(member, club["id"])

    assert owner.patch(f"/api/posts/{post['id']}", json={"content": "Edited"}).status_code == 403
    r = member.patch(f"/api/posts/{post['id']}", json={"content": "  Edited  "})
    assert r.status_code == 200
    assert r.json["post"]["content"] == "Edited"
    assert member.patch(f"/api/posts/{post['id']}", json={"content": ""}).status_code == 400


def test_moderator_can_delete_post_and_it_is_audited(app, api_as):
    owner, member, club = _club_with_member(api_as)
    post = _post(member, club["id"])
    member.post(f"/api/posts/{post['id']}/comments", json={"content": "first"})

    bystander = api_as("bystander@example.com")
    bystander.post(f"/api/clubs/{club['id']}/join")
    assert bystander.delete(f"/api/posts/{post['id']}").status_code == 403

    assert owner.delete(f"/api/posts/{post['id']}").status_code == 200
    assert owner.get(f"/api/posts/{post['id']}").status_code == 404
    with session_scope(app) as s:
        assert s.query(PostComment).count() == 0
        ev = s.query(AuditLog).filter(AuditLog.action == "post.deleted").one()
        assert ev.category == "MODERATION"
        assert ev.target_user_id == member.user_id


def test_deleting_comment_removes_replies(app, api_as):
    owner, member, club = _club_with_member(api_as)
    post = _post(owner, club["id"])
    top = member.post(f"/api/posts/{post['id']}/comments", json={"content": "top"}).json["comment"]
    owner.post(f"/api/posts/{post['id']}/comments", json={"content": "reply", "parent_id": top["id"]})

    assert owner.delete(f"/api/comments/{top['id']}").status_code == 200
    view = owner.get(f"/api/posts/{post['id']}").json["post"]
    assert view["comment_count"] == 0
    with session_scope(app) as s:
        assert s.query(PostComment).count() == 0
