"""
Input safety checks and payload coercion helpers.

The ``is_*`` / ``validate_*`` functions return booleans; the ``*_field``
helpers append human-readable messages to an error list in the same way
the ``validate_*_payload`` functions of each module do.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from urllib.parse import urlparse

SQL_INJECTION_PATTERNS = (
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION|SCRIPT)\b", re.IGNORECASE),
    re.compile(r"(--|/\*|\*/|;|'|\"|`)"),
    re.compile(r"(\bOR\b|\bAND\b)\s*\d+\s*=\s*\d+", re.IGNORECASE),
)

XSS_PATTERNS = (
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<iframe[^>]*>.*?</iframe>", re.IGNORECASE | re.DOTALL),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<object[^>]*>.*?</object>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<embed[^>]*>", re.IGNORECASE),
)

ALLOWED_IMAGE_DOMAINS = (
    "amazonaws.com",
    "cloudfront.net",
    "imgur.com",
    "gravatar.com",
    "googleusercontent.com",
    "unsplash.com",
    "pexels.com",
    "utfs.io",
    "ufs.sh",
)
# Upload hosts serve extension-less keys.
EXTENSIONLESS_IMAGE_HOSTS = (".ufs.sh", ".utfs.io")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")

UPLOAD_TYPES = {
    ".jpg": ("image/jpeg",),
    ".jpeg": ("image/jpeg",),
    ".png": ("image/png",),
    ".gif": ("image/gif",),
    ".webp": ("image/webp",),
    ".pdf": ("application/pdf",),
    ".txt": ("text/plain",),
}
IMAGE_CONTENT_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

RESERVED_ROUTE_WORDS = frozenset({"create", "edit", "new", "add", "settings", "admin"})

_LOCATION_RE = re.compile(r"^[a-zA-Z0-9\s\-'.,()]+$")
_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_INVITE_CODE_RE = re.compile(r"^[A-F0-9]{8}$")


def has_sql_injection(value: str) -> bool:
    return any(p.search(value) for p in SQL_INJECTION_PATTERNS)


def has_xss(value: str) -> bool:
    return any(p.search(value) for p in XSS_PATTERNS)


def is_reserved_route_word(value: str) -> bool:
    return value.strip().lower() in RESERVED_ROUTE_WORDS


def validate_id(value: str | None) -> bool:
    if not value or not (3 <= len(value) <= 36):
        return False
    if has_sql_injection(value) or has_xss(value):
        return False
    return bool(_ID_RE.match(value))


def validate_invite_code(value: str | None) -> bool:
    return bool(value) and bool(_INVITE_CODE_RE.match(value))


def validate_location(value: str | None) -> bool:
    if not value or not (2 <= len(value) <= 100):
        return False
    if has_xss(value) or has_sql_injection(value):
        return False
    return bool(_LOCATION_RE.match(value))


def _host_allowed(host: str) -> bool:
    return any(host == d or host.endswith("." + d) for d in ALLOWED_IMAGE_DOMAINS)


def validate_image_url(value: str | None) -> bool:
    if not value or has_xss(value):
        return False
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    if parsed.scheme != "https" or not parsed.hostname:
        return False
    host = parsed.hostname.lower()
    if not _host_allowed(host):
        return False
    if host.endswith(EXTENSIONLESS_IMAGE_HOSTS):
        return True
    return parsed.path.lower().endswith(IMAGE_EXTENSIONS)


def validate_file_upload(filename: str, content_type: str, size: int | None = None) -> list[str]:
    errors: list[str] = []
    name = (filename or "").strip()
    ext = ("." + name.rsplit(".", 1)[-1].lower()) if "." in name else ""
    if not name or has_xss(name):
        errors.append("Invalid file name.")
    if ext not in UPLOAD_TYPES:
        errors.append(f"File type not allowed: {ext or '(none)'}")
    elif content_type not in UPLOAD_TYPES[ext]:
        errors.append("Content type does not match file extension.")
    if size is not None and size > MAX_UPLOAD_BYTES:
        errors.append("File too large. Maximum size is 10MB.")
    return errors


# ---------- Payload helpers ----------


def text_field(
    payload: dict,
    key: str,
    errors: list[str],
    *,
    label: str,
    min_len: int = 0,
    max_len: int | None = None,
    required: bool = False,
) -> str | None:
    raw = payload.get(key)
    if raw is not None and not isinstance(raw, str):
        errors.append(f"{label} must be a string.")
        return None
    value = (raw or "").strip() or None
    if value is None:
        if required or min_len > 0:
            errors.append(f"{label} is required.")
        return None
    if len(value) < min_len:
        errors.append(f"{label} must be at least {min_len} characters.")
    if max_len is not None and len(value) > max_len:
        errors.append(f"{label} must be at most {max_len} characters.")
    if has_xss(value):
        errors.append(f"{label} contains disallowed content.")
    return value


def location_field(payload: dict, key: str, errors: list[str], *, label: str) -> str | None:
    raw = payload.get(key)
    if raw is not None and not isinstance(raw, str):
        errors.append(f"{label} must be a string.")
        return None
    value = (raw or "").strip() or None
    if value is not None and not validate_location(value):
        errors.append(f"{label} is not a valid location.")
    return value


def image_url_field(payload: dict, key: str, errors: list[str], *, label: str = "Image URL") -> str | None:
    raw = payload.get(key)
    if raw is not None and not isinstance(raw, str):
        errors.append(f"{label} must be a string.")
        return None
    value = (raw or "").strip() or None
    if value is not None and not validate_image_url(value):
        errors.append(f"{label} is not an allowed image URL.")
    return value


def bool_field(payload: dict, key: str, errors: list[str], *, default: bool | None = None) -> bool | None:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        errors.append(f"{key} must be true or false.")
        return default
    return value


def float_field(payload: dict, key: str, errors: list[str], *, lo: float | None = None, hi: float | None = None) -> float | None:
    """JSON numbers only; strings, booleans, NaN and infinities are rejected."""
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(f"{key} must be a number.")
        return None
    out = float(value)
    if not math.isfinite(out):
        errors.append(f"{key} must be a finite number.")
        return None
    if (lo is not None and out < lo) or (hi is not None and out > hi):
        errors.append(f"{key} is out of range.")
    return out


def int_field(payload: dict, key: str, errors: list[str], *, lo: int | None = None, hi: int | None = None) -> int | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        errors.append(f"{key} must be an integer.")
        return None
    try:
        out = int(value)
    except (TypeError, ValueError):
        errors.append(f"{key} must be an integer.")
        return None
    if (lo is not None and out < lo) or (hi is not None and out > hi):
        errors.append(f"{key} is out of range.")
    return out


def choice_field(payload: dict, key: str, errors: list[str], choices: tuple[str, ...], *, default: str | None = None) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return default
    if value not in choices:
        errors.append(f"Invalid {key}. Must be one of: {', '.join(choices)}")
        return default
    return value


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; aware values are converted to naive UTC."""
    if not value:
        return None
    value = value.strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def datetime_field(payload: dict, key: str, errors: list[str], *, label: str, required: bool = False) -> datetime | None:
    raw = payload.get(key)
    if raw is not None and not isinstance(raw, str):
        errors.append(f"{label} must be an ISO-8601 string.")
        return None
    try:
        value = parse_datetime(raw)
    except ValueError:
        errors.append(f"{label} is not a valid date.")
        return None
    if value is None and required:
        errors.append(f"{label} is required.")
    return value
