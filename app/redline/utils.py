from __future__ import annotations

from typing import Any

from flask import request
from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from app.redline.errors import BadRequest


def json_payload() -> dict:
    """Request body as a dict; empty bodies become {}."""
    if not request.data:
        return {}
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object.")
    return data


def parse_limit(raw: Any, *, default: int = 20, lo: int = 1, hi: int = 50) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise BadRequest("limit must be an integer.") from e
    if value < lo or value > hi:
        raise BadRequest(f"limit must be between {lo} and {hi}.")
    return value


def parse_bool_arg(raw: str | None) -> bool | None:
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes")


def keyset_page(s: Session, q: Query, model: Any, *, cursor: str | None, limit: int, ts_attr: str = "created_at") -> tuple[list, str | None]:
    """
    Newest-first page over (timestamp, id).
    The cursor is the id of the last row of the previous page.
    """
    ts = getattr(model, ts_attr)
    if cursor:
        anchor = s.get(model, cursor)
        if anchor is None:
            raise BadRequest("Invalid cursor.")
        anchor_ts = getattr(anchor, ts_attr)
        q = q.filter(or_(ts < anchor_ts, and_(ts == anchor_ts, model.id < anchor.id)))
    rows = q.order_by(ts.desc(), model.id.desc()).limit(limit + 1).all()
    next_cursor = rows[limit - 1].id if len(rows) > limit else None
    return rows[:limit], next_cursor
