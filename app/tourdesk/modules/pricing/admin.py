from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.tourdesk.db import db_session
from app.tourdesk.models import User
from app.tourdesk.modules.pricing.calculator import PricingError, calculate_pricing, parse_pricing_request
from app.tourdesk.modules.pricing.matcher import apply_pricing_to_query, match_tour_package_pricing
from app.tourdesk.modules.tour_queries.models import TourPackageQuery
from app.tourdesk.rbac import require_permission, user_has_permission
from app.tourdesk.utils import parse_int

bp = Blueprint("pricing", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.post("/pricing/calculate")
@require_permission("pricing.calculate")
def pricing_calculate():
    payload = request.get_json(silent=True) or {}
    try:
        req = parse_pricing_request(payload)
    except PricingError as e:
        return jsonify({"error": str(e)}), 400

    s = db_session()
    result = calculate_pricing(s, req)
    current_app.logger.info(
        "Pricing calculated: days=%s total=%s markup=%s", len(req.itineraries), result["totalCost"], req.markup
    )
    return jsonify(result)


@bp.post("/pricing/tour-package/match")
@require_permission("pricing.calculate")
def pricing_tour_package_match():
    payload = request.get_json(silent=True) or {}
    s = db_session()
    try:
        result = match_tour_package_pricing(s, payload)
    except PricingError as e:
        return jsonify({"error": str(e)}), 400

    query_id = parse_int(payload.get("applyToQueryId"))
    if query_id is not None:
        user = _current_user()
        if not user_has_permission(user, "tour_queries.edit"):
            return jsonify({"error": "Forbidden"}), 403
        q = s.get(TourPackageQuery, query_id)
        if not q:
            return jsonify({"error": "Tour Package Query not found"}), 404
        apply_pricing_to_query(s, q, result, user)
        s.commit()
        result["appliedToQueryId"] = q.id
    return jsonify(result)
