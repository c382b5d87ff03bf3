# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/tourledger/routes/sales.py
"""
Sales API routes

A sale is a batch of lines addressed by its batch_id string. Supervisors
only see and change batches recorded under their own supervisor name; the
service layer applies that scope from g.actor.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import LedgerError
from ..services import sales_service
from .. import validation


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _ledger_error(e: LedgerError):
    return jsonify(e.to_dict()), e.status_code


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    List sale lines.

    Query params:
    - year, month: int (optional) - calendar filter on creation date
    - page, limit: int (optional) - pagination (default 50, max 100).
      If both are omitted, returns all lines.
    """
    year = request.args.get("year", type=int)
    month = request.args.get("month", type=int)
    page = request.args.get("page", type=int)
    limit = request.args.get("limit", type=int)
    if month is not None and not 1 <= month <= 12:
        return jsonify({"error": "month must be between 1 and 12"}), 400

    try:
        result = sales_service.list_sales(actor=g.actor, year=year, month=month, page=page, limit=limit)
    except Exception:
        return _internal_error("Failed to list sales")
    return jsonify(result), 200


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Create a sale batch.

    Body: customer header fields plus `items: [{tour_id, quantity, total,
    deposit?, balance_due?}]`. Supervisors always sell under their own name.
    """
    payload = request.get_json(silent=True) or {}
    try:
        items = validation.parse_items(payload, allow_line_id=False)
        customer = validation.parse_customer(payload)
        batch_id = sales_service.create_batch(items, customer.as_columns(), actor=g.actor)
        lines = sales_service.get_batch(batch_id.encode(), actor=g.actor)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _internal_error("Failed to create sale")

    return jsonify({
        "batch_id": batch_id.encode(),
        "batch": sales_service.summarize_batch(lines),
    }), 201


@sales_bp.get("/stats")
@require_auth
@require_role("admin", "support")
def sales_stats_route():
    """Paid revenue and units, plus revenue per seller and per provincia."""
    try:
        stats = sales_service.sales_stats(actor=g.actor)
    except Exception:
        return _internal_error("Failed to compute sales stats")
    return jsonify(stats), 200


@sales_bp.get("/<batch_id>")
@require_auth
def get_sale_route(batch_id: str):
    try:
        lines = sales_service.get_batch(batch_id, actor=g.actor)
    except LedgerError as e:
        return _ledger_error(e)
    return jsonify({"batch": sales_service.summarize_batch(lines)}), 200


@sales_bp.patch("/<batch_id>")
@require_auth
def update_sale_route(batch_id: str):
    """
    Replace the lines of a batch.

    Items with `line_id` update that line, items without it are added, and
    existing lines missing from the list are removed.
    """
    payload = request.get_json(silent=True) or {}
    try:
        proposed = validation.parse_items(payload, allow_line_id=True)
        lines = sales_service.update_batch(batch_id, proposed, actor=g.actor)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _internal_error("Failed to update sale")
    return jsonify({"batch": sales_service.summarize_batch(lines)}), 200


@sales_bp.post("/<batch_id>/void")
@require_auth
def void_sale_route(batch_id: str):
    try:
        reason = validation.parse_void_reason(request.get_json(silent=True))
        lines = sales_service.void_batch(batch_id, reason, actor=g.actor)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _internal_error("Failed to void sale")
    return jsonify({"batch": sales_service.summarize_batch(lines), "message": "Invoice voided"}), 200


@sales_bp.delete("/<batch_id>")
@require_auth
@require_role("admin", "support")
def delete_sale_route(batch_id: str):
    """Permanently delete a voided batch (admin/support only)."""
    try:
        deleted = sales_service.delete_voided_batch(batch_id, actor=g.actor)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _internal_error("Failed to delete sale")
    return jsonify({"ok": True, "deleted": deleted}), 200


@sales_bp.patch("/<batch_id>/payment")
@require_auth
def update_payment_route(batch_id: str):
    try:
        is_paid = validation.parse_is_paid(request.get_json(silent=True))
        lines = sales_service.update_payment(batch_id, is_paid, actor=g.actor)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _internal_error("Failed to update payment status")
    return jsonify({"batch": sales_service.summarize_batch(lines)}), 200


@sales_bp.patch("/<batch_id>/invoice")
@require_auth
def update_invoice_route(batch_id: str):
    """Partial update of the customer/invoice header shared by every line."""
    try:
        patch = validation.parse_customer_patch(request.get_json(silent=True))
        lines = sales_service.update_customer(batch_id, patch, actor=g.actor)
    except LedgerError as e:
        return _ledger_error(e)
    except Exception:
        return _internal_error("Failed to update invoice")
    return jsonify({"batch": sales_service.summarize_batch(lines)}), 200
