# Overview: Flask API routes for the tour catalog; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import ItemNotFound, LedgerError
from ..services import catalog_service


tours_bp = Blueprint("tours", __name__, url_prefix="/api/tours")


@tours_bp.get("")
@require_auth
def list_tours_route():
    """
    List catalog tours.

    Query params:
    - include_inactive: bool (admin/support only)
    """
    include_inactive = (
        request.args.get("include_inactive", "").lower() in {"1", "true", "yes"}
        and g.current_user.role in ("admin", "support")
    )
    tours = catalog_service.list_tours(include_inactive=include_inactive)
    return jsonify({"tours": [t.to_dict() for t in tours]}), 200


@tours_bp.post("")
@require_auth
@require_role("admin", "support")
def create_tour_route():
    payload = request.get_json(silent=True) or {}
    try:
        tour = catalog_service.create_tour(payload)
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create tour")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"tour": tour.to_dict()}), 201


@tours_bp.patch("/<int:tour_id>/stock")
@require_auth
@require_role("admin", "support")
def set_stock_route(tour_id: int):
    """
    Set absolute stock for a tour (-1 = unlimited).

    This is an administrator override: sold is not changed.
    """
    payload = request.get_json(silent=True) or {}
    if "stock" not in payload:
        return jsonify({"error": "stock is required"}), 400
    try:
        tour = catalog_service.set_stock(tour_id, payload.get("stock"))
    except ItemNotFound as e:
        return jsonify(e.to_dict()), 404
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set stock")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"tour": tour.to_dict()}), 200
