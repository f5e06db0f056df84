# Overview: Flask API routes for the order window flag; returns JSON responses.

from flask import Blueprint, request, g

from ..decorators import require_admin, require_token
from ..extensions import portal_service, ORDER_WINDOW
from .responses import error_response

order_window_bp = Blueprint("order_window", __name__, url_prefix="/api/order-window")


@order_window_bp.get("")
@require_token
def get_order_window():
    """
    Current window state. Reads the backend when the state is unknown,
    when it is stale while realtime is down, or when ?refresh=1 is passed;
    pushes keep it current otherwise.
    """
    window = portal_service(ORDER_WINDOW)
    try:
        if window.needs_refresh() or request.args.get("refresh") in ("1", "true"):
            window.refresh(g.backend)
        return window.snapshot()
    except Exception as e:
        return error_response(e, "Failed to load order window")


@order_window_bp.post("/toggle")
@require_token
@require_admin
def toggle_order_window():
    try:
        portal_service(ORDER_WINDOW).toggle(g.backend)
        return portal_service(ORDER_WINDOW).snapshot()
    except Exception as e:
        return error_response(e, "Failed to toggle order window")
