from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.tourdesk.db import db_session
from app.tourdesk.models import User
from app.tourdesk.modules.hotel_pricing.parsers import ImportParseError, parse_hotel_pricing_file
from app.tourdesk.modules.hotel_pricing.service import import_hotel_pricing
from app.tourdesk.rbac import require_permission
from app.tourdesk.storage import build_storage_key, storage_from_config
from app.tourdesk.utils import parse_bool

bp = Blueprint("hotel_pricing", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.post("/hotel-pricing/import")
@require_permission("masters.import")
def hotel_pricing_import():
    s = db_session()
    u = _current_user()

    f = request.files.get("file")
    if not f or not f.filename:
        return jsonify({"error": "File upload is required"}), 400
    data = f.read()
    if not data:
        return jsonify({"error": "Uploaded file is empty"}), 400
    dry_run = parse_bool(request.args.get("dryRun") or request.form.get("dryRun"))

    try:
        parsed = parse_hotel_pricing_file(f.filename, data)
    except ImportParseError as e:
        return jsonify({"error": str(e)}), 400

    if parsed.errors:
        return (
            jsonify(
                {
                    "error": "Validation failed",
                    "errors": [{"row": e.row_number, "field": e.field, "message": e.message} for e in parsed.errors],
                    "warnings": parsed.warnings,
                    "stats": parsed.stats,
                }
            ),
            422,
        )
    if not parsed.rows:
        return jsonify({"error": "No pricing rows detected", "warnings": parsed.warnings, "stats": parsed.stats}), 400

    summary = import_hotel_pricing(s, parsed.rows, u, dry_run=dry_run, file_name=f.filename)
    summary["warnings"] = list(dict.fromkeys(parsed.warnings + summary["warnings"]))
    summary["stats"] = parsed.stats
    if summary["errors"]:
        s.rollback()
        return jsonify({"error": "Validation failed", **summary}), 422

    if not dry_run:
        # Keep the source sheet next to the audit trail.
        storage = storage_from_config(current_app.config)
        key = build_storage_key("hotel-pricing-imports", u.id, f.filename)
        storage.put_bytes(key, data, content_type=f.mimetype or "application/octet-stream")
        summary["storage_key"] = key
        s.commit()
    return jsonify(summary)
