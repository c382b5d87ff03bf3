# Overview: Flask API routes for imports; parses input and returns JSON responses.

"""
Import Routes

Sales history is uploaded as a CSV export (multipart field `file`).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..errors import ImportFileError
from ..services import import_service


imports_bp = Blueprint("imports", __name__, url_prefix="/api/imports")


@imports_bp.post("/sales")
@require_auth
@require_role("admin", "support")
def import_sales_route():
    if "file" not in request.files:
        return jsonify({"error": "file is required"}), 400

    file = request.files["file"]
    max_bytes = current_app.config.get("IMPORT_MAX_BYTES", 5 * 1024 * 1024)
    # One byte past the limit is enough to detect an oversize upload.
    raw = file.stream.read(max_bytes + 1)

    try:
        result = import_service.import_sales_csv(raw, actor=g.actor)
        return jsonify(result.to_dict()), 200
    except ImportFileError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to import sales")
        return jsonify({"error": "Failed to import sales"}), 500
