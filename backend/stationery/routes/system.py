# backend/stationery/routes/system.py
"""
Portal health endpoint.

Reports the portal's own dependencies: the client storage database, the
shared realtime connection and the open viewer sessions. The external
stationery backend is not checked here.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, portal_service, ORDER_WINDOW, REALTIME, SESSIONS
from ..models import ClientStorageEntry
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        entry_count = db.session.query(ClientStorageEntry).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"storage_entries": entry_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_realtime_health() -> dict:
    """Disconnected is degraded, not unhealthy: trackers fall back to polling."""
    realtime = portal_service(REALTIME)
    if realtime is None:
        return {"status": "disabled"}
    if realtime.connected or not realtime.topics():
        status = "healthy"
    else:
        status = "degraded"
    return {
        "status": status,
        "state": realtime.state,
        "topics": len(realtime.topics()),
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: client storage unavailable
    """
    database_health = check_database_health()
    realtime_health = check_realtime_health()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif realtime_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "checks": {
            "database": database_health,
            "realtime": realtime_health,
        },
        "sessions": len(portal_service(SESSIONS)),
        "order_window": portal_service(ORDER_WINDOW).snapshot(),
    }, http_status
