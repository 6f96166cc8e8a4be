from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func

from app.redline.audit import log_user_action, record_event
from app.redline.db import flush_or_conflict
from app.redline.errors import BadRequest, Forbidden, NotFound, ValidationFailed
from app.redline.models import User, utcnow
from app.redline.permissions import load_club_access
from app.redline.utils import keyset_page
from app.redline.validation import text_field, validate_image_url
from app.redline.modules.posts.models import ClubPost, CommentLike, PostComment, PostLike

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


MAX_POST_LENGTH = 2000
MAX_COMMENT_LENGTH = 500
MAX_IMAGES = 10


def _images_field(payload: dict, errors: list[str]) -> list[str]:
    images = payload.get("images")
    if images is None:
        return []
    if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
        errors.append("images must be a list of URLs.")
        return []
    if len(images) > MAX_IMAGES:
        errors.append(f"A post can have at most {MAX_IMAGES} images.")
    bad = [i for i in images if not validate_image_url(i)]
    if bad:
        errors.append("One or more image URLs are not allowed.")
    return images


def validate_post_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "content" in payload:
        text_field(payload, "content", errors, label="Content", min_len=1, max_len=MAX_POST_LENGTH)
    if not partial or "images" in payload:
        _images_field(payload, errors)
    return errors


def _get_post(s: "Session", post_id: str) -> ClubPost:
    post = s.get(ClubPost, post_id)
    if not post:
        raise NotFound("Post not found")
    return post


def _get_comment(s: "Session", comment_id: str) -> PostComment:
    comment = s.get(PostComment, comment_id)
    if not comment:
        raise NotFound("Comment not found")
    return comment


def serialize_posts(s: "Session", posts: list[ClubPost], user: User | None) -> list[dict]:
    """Posts with counts, the caller's likes, and comments threaded under their parents (oldest first)."""
    post_ids = [p.id for p in posts]
    if not post_ids:
        return []

    like_counts = dict(
        s.query(PostLike.post_id, func.count(PostLike.id)).filter(PostLike.post_id.in_(post_ids)).group_by(PostLike.post_id).all()
    )
    liked: set[str] = set()
    if user is not None:
        liked = {pid for (pid,) in s.query(PostLike.post_id).filter(PostLike.user_id == user.id, PostLike.post_id.in_(post_ids))}

    comments = (
        s.query(PostComment)
        .filter(PostComment.post_id.in_(post_ids))
        .order_by(PostComment.created_at.asc(), PostComment.id.asc())
        .all()
    )
    comment_ids = [c.id for c in comments]
    comment_like_counts: dict[str, int] = {}
    comment_liked: set[str] = set()
    if comment_ids:
        comment_like_counts = dict(
            s.query(CommentLike.comment_id, func.count(CommentLike.id))
            .filter(CommentLike.comment_id.in_(comment_ids))
            .group_by(CommentLike.comment_id)
            .all()
        )
        if user is not None:
            comment_liked = {
                cid
                for (cid,) in s.query(CommentLike.comment_id).filter(
                    CommentLike.user_id == user.id, CommentLike.comment_id.in_(comment_ids)
                )
            }

    nodes: dict[str, dict] = {}
    roots: dict[str, list[dict]] = {pid: [] for pid in post_ids}
    comment_counts: dict[str, int] = {pid: 0 for pid in post_ids}
    for c in comments:
        node = {
            "id": c.id,
            "post_id": c.post_id,
            "parent_id": c.parent_id,
            "content": c.content,
            "created_at": c.created_at.isoformat(),
            "author": c.author.to_public_dict() if c.author else None,
            "like_count": comment_like_counts.get(c.id, 0),
            "is_liked_by_user": c.id in comment_liked,
            "replies": [],
        }
        nodes[c.id] = node
        comment_counts[c.post_id] += 1
        parent = nodes.get(c.parent_id) if c.parent_id else None
        if parent is not None:
            parent["replies"].append(node)
        else:
            roots[c.post_id].append(node)

    return [
        {
            "id": p.id,
            "club_id": p.club_id,
            "content": p.content,
            "images": list(p.images or []),
            "created_at": p.created_at.isoformat(),
            "updated_at": p.updated_at.isoformat(),
            "author": p.author.to_public_dict() if p.author else None,
            "like_count": like_counts.get(p.id, 0),
            "comment_count": comment_counts[p.id],
            "is_liked_by_user": p.id in liked,
            "comments": roots[p.id],
        }
        for p in posts
    ]


def create_post(s: "Session", club_id: str, payload: dict, user: User) -> ClubPost:
    access = load_club_access(s, club_id, user)
    access.require("posts:create")
    errors: list[str] = []
    content = text_field(payload, "content", errors, label="Content", min_len=1, max_len=MAX_POST_LENGTH)
    images = _images_field(payload, errors)
    if errors:
        raise ValidationFailed(errors)

    now = utcnow()
    post = ClubPost(club_id=club_id, author_id=user.id, content=content, images=images, created_at=now, updated_at=now)
    s.add(post)
    s.flush()
    log_user_action(
        s,
        "post.created",
        user,
        resource_type="post",
        resource_id=post.id,
        severity="LOW",
        metadata={"club_id": club_id, "images": len(images)},
    )
    return post


def get_club_posts(s: "Session", club_id: str, user: User | None, *, limit: int = 20, cursor: str | None = None) -> dict:
    access = load_club_access(s, club_id, user)
    if not access.can_view():
        raise Forbidden("You must be a member to view posts in this private club")
    q = s.query(ClubPost).filter(ClubPost.club_id == club_id)
    posts, next_cursor = keyset_page(s, q, ClubPost, cursor=cursor, limit=limit)
    return {"items": serialize_posts(s, posts, user), "next_cursor": next_cursor}


def get_post(s: "Session", post_id: str, user: User) -> dict:
    post = _get_post(s, post_id)
    access = load_club_access(s, post.club_id, user)
    if not access.can_view():
        raise Forbidden("You must be a member to view posts in this private club")
    return serialize_posts(s, [post], user)[0]


def toggle_like(s: "Session", post_id: str, user: User) -> dict:
    post = _get_post(s, post_id)
    load_club_access(s, post.club_id, user).require_member("You must be a member to like posts")

    existing = s.query(PostLike).filter(PostLike.post_id == post.id, PostLike.user_id == user.id).one_or_none()
    if existing:
        s.delete(existing)
        s.flush()
        liked = False
    else:
        s.add(PostLike(post_id=post.id, user_id=user.id))
        flush_or_conflict(s, "Post already liked")
        liked = True
    log_user_action(s, "post.liked" if liked else "post.unliked", user, resource_type="post", resource_id=post.id, severity="LOW")
    count = s.query(func.count(PostLike.id)).filter(PostLike.post_id == post.id).scalar() or 0
    return {"liked": liked, "like_count": count}


def add_comment(s: "Session", post_id: str, payload: dict, user: User) -> PostComment:
    post = _get_post(s, post_id)
    load_club_access(s, post.club_id, user).require_member("You must be a member to comment")
    errors: list[str] = []
    content = text_field(payload, "content", errors, label="Content", min_len=1, max_len=MAX_COMMENT_LENGTH)
    if errors:
        raise ValidationFailed(errors)

    parent_id = payload.get("parent_id") or None
    if parent_id is not None:
        parent = s.get(PostComment, parent_id) if isinstance(parent_id, str) else None
        if parent is None or parent.post_id != post.id:
            raise BadRequest("Invalid parent comment")

    now = utcnow()
    comment = PostComment(post_id=post.id, author_id=user.id, parent_id=parent_id, content=content, created_at=now, updated_at=now)
    s.add(comment)
    s.flush()
    log_user_action(
        s,
        "post.commented",
        user,
        resource_type="comment",
        resource_id=comment.id,
        severity="LOW",
        metadata={"post_id": post.id, "parent_id": parent_id},
    )
    return comment


def update_post(s: "Session", post_id: str, payload: dict, user: User) -> ClubPost:
    post = _get_post(s, post_id)
    if post.author_id != user.id:
        raise Forbidden("You can only edit your own posts")
    errors = validate_post_payload(payload, partial=True)
    if errors:
        raise ValidationFailed(errors)

    changed = []
    if "content" in payload:
        post.content = payload["content"].strip()
        changed.append("content")
    if "images" in payload:
        post.images = list(payload.get("images") or [])
        changed.append("images")
    if changed:
        post.updated_at = utcnow()
        log_user_action(s, "post.updated", user, resource_type="post", resource_id=post.id, metadata={"fields": changed})
    return post


def delete_post(s: "Session", post_id: str, user: User) -> None:
    post = _get_post(s, post_id)
    is_author = post.author_id == user.id
    if not is_author and not load_club_access(s, post.club_id, user).at_least("MODERATOR"):
        raise Forbidden("Only the author or a club moderator can delete this post")
    record_event(
        s,
        action="post.deleted",
        user=user,
        target_user_id=None if is_author else post.author_id,
        resource_type="post",
        resource_id=post.id,
        category="USER_ACTION" if is_author else "MODERATION",
        metadata={"club_id": post.club_id},
    )
    s.delete(post)
    s.flush()


def delete_comment(s: "Session", comment_id: str, user: User) -> None:
    """Delete a comment and, through the parent foreign key, its replies."""
    comment = _get_comment(s, comment_id)
    is_author = comment.author_id == user.id
    club_id = comment.post.club_id
    if not is_author and not load_club_access(s, club_id, user).at_least("MODERATOR"):
        raise Forbidden("Only the author or a club moderator can delete this comment")
    record_event(
        s,
        action="post.comment_deleted",
        user=user,
        target_user_id=None if is_author else comment.author_id,
        resource_type="comment",
        resource_id=comment.id,
        category="USER_ACTION" if is_author else "MODERATION",
        metadata={"post_id": comment.post_id, "club_id": club_id},
    )
    s.delete(comment)
    s.flush()


def toggle_comment_like(s: "Session", comment_id: str, user: User) -> dict:
    comment = _get_comment(s, comment_id)
    load_club_access(s, comment.post.club_id, user).require_member("You must be a member to like comments")

    existing = (
        s.query(CommentLike).filter(CommentLike.comment_id == comment.id, CommentLike.user_id == user.id).one_or_none()
    )
    if existing:
        s.delete(existing)
        s.flush()
        liked = False
    else:
        s.add(CommentLike(comment_id=comment.id, user_id=user.id))
        flush_or_conflict(s, "Comment already liked")
        liked = True
    log_user_action(
        s, "comment.liked" if liked else "comment.unliked", user, resource_type="comment", resource_id=comment.id, severity="LOW"
    )
    count = s.query(func.count(CommentLike.id)).filter(CommentLike.comment_id == comment.id).scalar() or 0
    return {"liked": liked, "like_count": count}
