from __future__ import annotations

from flask import Blueprint, request

from app.redline.db import db_session
from app.redline.permissions import current_user, login_required, require_user
from app.redline.rate_limit import rate_limit
from app.redline.utils import json_payload, parse_limit
from app.redline.modules.posts import service

bp = Blueprint("posts", __name__)


@bp.post("/clubs/<club_id>/posts")
@login_required
@rate_limit("CONTENT_CREATE")
def create_post(club_id: str):
    s = db_session()
    user = require_user()
    post = service.create_post(s, club_id, json_payload(), user)
    s.commit()
    return {"post": service.serialize_posts(s, [post], user)[0]}, 201


@bp.get("/clubs/<club_id>/posts")
@rate_limit("READ_OPERATIONS")
def club_posts(club_id: str):
    return service.get_club_posts(
        db_session(),
        club_id,
        current_user(),
        limit=parse_limit(request.args.get("limit")),
        cursor=(request.args.get("cursor") or "").strip() or None,
    )


@bp.get("/posts/<post_id>")
@login_required
@rate_limit("READ_OPERATIONS")
def get_post(post_id: str):
    return {"post": service.get_post(db_session(), post_id, require_user())}


@bp.patch("/posts/<post_id>")
@login_required
@rate_limit("CONTENT_CREATE")
def update_post(post_id: str):
    s = db_session()
    user = require_user()
    post = service.update_post(s, post_id, json_payload(), user)
    s.commit()
    return {"post": service.serialize_posts(s, [post], user)[0]}


@bp.delete("/posts/<post_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def delete_post(post_id: str):
    s = db_session()
    service.delete_post(s, post_id, require_user())
    s.commit()
    return {"ok": True}


@bp.post("/posts/<post_id>/like")
@login_required
@rate_limit("SOCIAL_LIKE")
def toggle_like(post_id: str):
    s = db_session()
    out = service.toggle_like(s, post_id, require_user())
    s.commit()
    return out


@bp.post("/posts/<post_id>/comments")
@login_required
@rate_limit("SOCIAL_COMMENT")
def add_comment(post_id: str):
    s = db_session()
    comment = service.add_comment(s, post_id, json_payload(), require_user())
    s.commit()
    return {
        "comment": {
            "id": comment.id,
            "post_id": comment.post_id,
            "parent_id": comment.parent_id,
            "content": comment.content,
            "created_at": comment.created_at.isoformat(),
            "author": comment.author.to_public_dict() if comment.author else None,
        }
    }, 201


@bp.delete("/comments/<comment_id>")
@login_required
@rate_limit("ADMIN_OPERATIONS")
def delete_comment(comment_id: str):
    s = db_session()
    service.delete_comment(s, comment_id, require_user())
    s.commit()
    return {"ok": True}


@bp.post("/comments/<comment_id>/like")
@login_required
@rate_limit("SOCIAL_LIKE")
def toggle_comment_like(comment_id: str):
    s = db_session()
    out = service.toggle_comment_like(s, comment_id, require_user())
    s.commit()
    return out
