# Overview: System health endpoint.

"""
System health endpoint.

Checks database connectivity and stock ledger consistency so a deployment
probe can tell "up" from "up but counters drifting".
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Order, Variant
from ..services import maintenance_service
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        variant_count = db.session.query(Variant).count()
        order_count = db.session.query(Order).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"variants": variant_count, "orders": order_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_ledger_health() -> dict:
    """Counters vs. movement history. Drift is reported as degraded, not down."""
    start_time = time.time()
    report = maintenance_service.verify_ledger()
    elapsed_ms = (time.time() - start_time) * 1000
    status = "degraded" if report["problems"] else "healthy"
    return {
        "status": status,
        "latency_ms": round(elapsed_ms, 2),
        "details": {
            "variants_checked": report["checked"],
            "variants_drifting": [row["variant_id"] for row in report["problems"]],
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    checks = {"database": database_health}
    if database_health["status"] == "healthy":
        checks["stock_ledger"] = check_ledger_health()

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }
    return response, http_status
