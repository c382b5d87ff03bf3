# backend/tourledger/routes/system.py
"""
System health endpoint.

Checks the database and reports whether the catalog counters still agree
with the sale lines.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import SaleLine, Tour
from ..services import catalog_service
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        tour_count = db.session.query(Tour).count()
        line_count = db.session.query(SaleLine).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "tours": tour_count,
                "sale_lines": line_count,
            }
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_counter_health() -> dict:
    """Finite tours whose sold counter drifted from their active sale lines."""
    try:
        drifts = catalog_service.audit_counters()
    except SQLAlchemyError:
        current_app.logger.exception("Counter audit failed")
        return {"status": "unhealthy", "error": "Counter audit error"}

    if drifts:
        return {
            "status": "degraded",
            "warning": f"{len(drifts)} tour(s) with counter drift",
            "details": [d.to_dict() for d in drifts],
        }
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (counter drift is reported, not fatal)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    if database_health["status"] == "unhealthy":
        counter_health = {"status": "unknown"}
    else:
        counter_health = check_counter_health()

    all_checks = [database_health, counter_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "counters": counter_health,
        }
    }

    return response, http_status
