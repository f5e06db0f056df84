# Overview: Flask API routes for the viewer's notification feed; returns JSON responses.

from flask import Blueprint, g

from ..decorators import require_session, require_token
from .responses import error_response

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@require_token
@require_session
def list_notifications():
    return g.session.feed.snapshot()


@notifications_bp.post("/refresh")
@require_token
@require_session
def refresh_notifications():
    feed = g.session.feed
    try:
        feed.fetch()
        return feed.snapshot()
    except Exception as e:
        return error_response(e, "Failed to refresh notifications")


@notifications_bp.put("/<int:notification_id>/read")
@require_token
@require_session
def mark_read(notification_id: int):
    """
    Mark one notification read.

    The change is applied locally first and rolled back if the backend
    call fails (503 with the restored feed state left in place).
    """
    feed = g.session.feed
    if feed.get(notification_id) is None:
        return {"error": f"Notification {notification_id} not found"}, 404
    try:
        synced = feed.mark_read(notification_id)
        return {"synced": synced, **feed.snapshot()}
    except Exception as e:
        return error_response(e, "Failed to mark notification read")


@notifications_bp.put("/mark-all-read")
@require_token
@require_session
def mark_all_read():
    feed = g.session.feed
    try:
        synced = feed.mark_all()
        return {"synced": synced, **feed.snapshot()}
    except Exception as e:
        return error_response(e, "Failed to mark notifications read")
