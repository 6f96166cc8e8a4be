from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.redline.models import AuditLog, User

logger = logging.getLogger(__name__)

SEVERITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
CATEGORIES = ("SECURITY", "MODERATION", "ADMINISTRATION", "USER_ACTION")
RESOURCE_TYPES = ("user", "club", "post", "comment", "event", "challenge", "system")


def record_event(
    s: Session,
    *,
    action: str,
    user: User | None = None,
    target_user_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    severity: str = "MEDIUM",
    category: str = "USER_ACTION",
    request_id: str | None = None,
) -> AuditLog:
    """
    Append-only audit event helper.

    The row joins the caller's transaction; committing the business change
    commits its audit trail.
    """
    severity = severity.upper()
    category = category.upper()
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown audit severity: {severity}")
    if category not in CATEGORIES:
        raise ValueError(f"Unknown audit category: {category}")
    if resource_type is not None and resource_type not in RESOURCE_TYPES:
        raise ValueError(f"Unknown audit resource type: {resource_type}")

    ip_address = None
    user_agent = None
    rid = request_id
    if has_request_context():
        rid = rid or getattr(g, "request_id", None)
        ip_address = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:512] or None

    ev = AuditLog(
        request_id=rid,
        action=action,
        user_id=user.id if user else None,
        target_user_id=target_user_id,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        ip_address=ip_address,
        user_agent=user_agent,
        severity=severity,
        category=category,
    )
    s.add(ev)
    if severity == "CRITICAL":
        logger.warning(
            "Critical audit event action=%s user=%s resource=%s:%s request_id=%s",
            action,
            ev.user_id,
            resource_type,
            resource_id,
            rid,
        )
    return ev


def log_user_action(s: Session, action: str, user: User | None, **kwargs: Any) -> AuditLog:
    kwargs.setdefault("category", "USER_ACTION")
    return record_event(s, action=action, user=user, **kwargs)


def log_security_event(s: Session, action: str, user: User | None, **kwargs: Any) -> AuditLog:
    kwargs.setdefault("severity", "HIGH")
    return record_event(s, action=action, user=user, category="SECURITY", **kwargs)


def log_admin_action(s: Session, action: str, user: User | None, **kwargs: Any) -> AuditLog:
    kwargs.setdefault("severity", "HIGH")
    return record_event(s, action=action, user=user, category="ADMINISTRATION", **kwargs)


def get_logs(
    s: Session,
    *,
    user_id: str | None = None,
    action: str | None = None,
    category: str | None = None,
    severity: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[AuditLog]:
    q = s.query(AuditLog)
    if user_id:
        q = q.filter(AuditLog.user_id == user_id)
    if action:
        q = q.filter(AuditLog.action == action)
    if category:
        q = q.filter(AuditLog.category == category.upper())
    if severity:
        q = q.filter(AuditLog.severity == severity.upper())
    if resource_type:
        q = q.filter(AuditLog.resource_type == resource_type)
    if resource_id:
        q = q.filter(AuditLog.resource_id == resource_id)
    if start_date:
        q = q.filter(AuditLog.timestamp >= start_date)
    if end_date:
        q = q.filter(AuditLog.timestamp <= end_date)
    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()


def audit_to_dict(ev: AuditLog) -> dict:
    return {
        "id": ev.id,
        "timestamp": ev.timestamp.isoformat(),
        "request_id": ev.request_id,
        "action": ev.action,
        "user_id": ev.user_id,
        "target_user_id": ev.target_user_id,
        "resource_type": ev.resource_type,
        "resource_id": ev.resource_id,
        "metadata": json.loads(ev.metadata_json) if ev.metadata_json else None,
        "ip_address": ev.ip_address,
        "severity": ev.severity,
        "category": ev.category,
    }
