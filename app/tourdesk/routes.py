from flask import Blueprint, abort, current_app, send_file

from app.tourdesk.rbac import require_permission
from app.tourdesk.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"app": "tourdesk", "ok": True}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for the container platform. No DB access.
    """
    return "ok", 200


@bp.get("/files/<path:key>")
@require_permission("admin.view")
def local_file(key: str):
    """Serve uploads when running on local storage (S3 serves its own URLs)."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    try:
        if not storage.exists(key):
            abort(404)
        return send_file(storage.open(key), download_name=key.rsplit("/", 1)[-1])
    except StorageError:
        abort(404)
