import mimetypes

from flask import Blueprint, current_app, request, send_file

from app.redline.errors import BadRequest, Forbidden, NotFound
from app.redline.storage import LocalStorage, StorageError, storage_from_config
from app.redline.validation import MAX_UPLOAD_BYTES

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200


def _local_storage() -> LocalStorage:
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        raise NotFound("Uploads are served by the object store")
    return storage


@bp.put("/uploads/<path:key>")
def upload(key: str):
    """Target for signed upload URLs issued when STORAGE_BACKEND=local."""
    storage = _local_storage()
    token = request.args.get("token") or ""
    try:
        content_type = storage.verify_upload_token(token, key)
    except StorageError as e:
        raise Forbidden(str(e)) from e
    sent_type = (request.content_type or "").split(";")[0].strip().lower()
    if sent_type and sent_type != content_type:
        raise BadRequest("Content-Type does not match the upload URL")
    data = request.get_data(cache=False)
    if not data:
        raise BadRequest("Empty upload")
    if len(data) > MAX_UPLOAD_BYTES:
        raise BadRequest("File size must be less than 10MB")
    storage.put_bytes(key, data, content_type=content_type)
    current_app.logger.info("Stored local upload key=%s bytes=%s", key, len(data))
    return {"ok": True, "key": key, "public_url": storage.public_url(key)}, 201


@bp.get("/uploads/<path:key>")
def download(key: str):
    storage = _local_storage()
    try:
        if not storage.exists(key):
            raise NotFound("File not found")
        fh = storage.open(key)
    except StorageError as e:
        raise NotFound("File not found") from e
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fh, mimetype=mimetype, max_age=3600)
