from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.tourdesk.db import db_session
from app.tourdesk.models import User
from app.tourdesk.modules.masters.models import Location
from app.tourdesk.modules.tour_queries.models import TourPackageQuery
from app.tourdesk.modules.tour_queries.service import (
    add_query_image,
    create_tour_query,
    delete_tour_query,
    serialize_tour_query,
    update_tour_query,
    validate_tour_query_payload,
)
from app.tourdesk.rbac import require_permission
from app.tourdesk.utils import parse_bool, parse_int

bp = Blueprint("tour_queries", __name__)

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_IMAGE_BYTES = 10 * 1024 * 1024


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- List ----------
@bp.get("/tourPackageQuery")
@require_permission("tour_queries.view")
def tour_queries_list():
    s = db_session()
    q = s.query(TourPackageQuery)

    location_id = parse_int(request.args.get("locationId"))
    if location_id is not None:
        q = q.filter(TourPackageQuery.location_id == location_id)
    associate_partner_id = (request.args.get("associatePartnerId") or "").strip()
    if associate_partner_id:
        q = q.filter(TourPackageQuery.associate_partner_id == associate_partner_id)
    if request.args.get("isFeatured") is not None:
        q = q.filter(TourPackageQuery.is_featured.is_(parse_bool(request.args.get("isFeatured"))))
    q = q.filter(TourPackageQuery.is_archived.is_(parse_bool(request.args.get("isArchived"), default=False)))

    rows = q.order_by(TourPackageQuery.created_at.desc(), TourPackageQuery.id.desc()).all()
    return jsonify([serialize_tour_query(r, detail=False) for r in rows])


# ---------- Create ----------
@bp.post("/tourPackageQuery")
@require_permission("tour_queries.create")
def tour_queries_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}

    errors = validate_tour_query_payload(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    if not s.get(Location, parse_int(payload.get("locationId", payload.get("location_id")))):
        return jsonify({"errors": ["Location not found"]}), 400

    q = create_tour_query(s, payload, _current_user())
    s.commit()
    return jsonify(serialize_tour_query(q)), 201


# ---------- Detail ----------
@bp.get("/tourPackageQuery/<int:query_id>")
@require_permission("tour_queries.view")
def tour_query_detail(query_id: int):
    s = db_session()
    q = s.get(TourPackageQuery, query_id)
    if not q:
        return jsonify({"error": "Tour Package Query not found"}), 404
    return jsonify(serialize_tour_query(q))


# ---------- Update ----------
@bp.patch("/tourPackageQuery/<int:query_id>")
@require_permission("tour_queries.edit")
def tour_query_update(query_id: int):
    s = db_session()
    q = s.get(TourPackageQuery, query_id)
    if not q:
        return jsonify({"error": "Tour Package Query not found"}), 404

    payload = request.get_json(silent=True) or {}
    errors = validate_tour_query_payload(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    if not s.get(Location, parse_int(payload.get("locationId", payload.get("location_id")))):
        return jsonify({"errors": ["Location not found"]}), 400

    update_tour_query(s, q, payload, _current_user())
    s.commit()
    return jsonify(serialize_tour_query(q))


# ---------- Delete ----------
@bp.delete("/tourPackageQuery/<int:query_id>")
@require_permission("tour_queries.delete")
def tour_query_delete(query_id: int):
    s = db_session()
    q = s.get(TourPackageQuery, query_id)
    if not q:
        return jsonify({"error": "Tour Package Query not found"}), 404
    delete_tour_query(s, q, _current_user())
    s.commit()
    return jsonify({"ok": True, "id": query_id})


# ---------- Image upload ----------
@bp.post("/tourPackageQuery/<int:query_id>/images")
@require_permission("tour_queries.edit")
def tour_query_image_upload(query_id: int):
    s = db_session()
    q = s.get(TourPackageQuery, query_id)
    if not q:
        return jsonify({"error": "Tour Package Query not found"}), 404

    f = request.files.get("file")
    if not f or not f.filename:
        return jsonify({"errors": ["No file uploaded."]}), 400
    content_type = f.mimetype or "application/octet-stream"
    if content_type not in ALLOWED_IMAGE_TYPES:
        return jsonify({"errors": [f"Unsupported image type {content_type}."]}), 400
    data = f.read()
    if len(data) > MAX_IMAGE_BYTES:
        return jsonify({"errors": ["Image too large. Maximum size is 10MB."]}), 400

    img = add_query_image(s, q, data, f.filename, content_type, _current_user())
    s.commit()
    current_app.logger.info("Uploaded image for tour query id=%s key=%s", q.id, img.storage_key)
    return jsonify({"id": img.id, "url": img.url}), 201
