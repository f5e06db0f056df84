# Overview: Flask API routes for order tracking, checkout and the order actions; returns JSON responses.

# backend/stationery/routes/orders.py
"""
Order routes.

Tracking is session based: POST /api/orders/track opens the viewer's
session (order tracker, notification feed and, for admins, the order
board), which stays subscribed to realtime updates until DELETE.

- POST   /api/orders/track            Open the viewer session and load the latest order
- GET    /api/orders/track            Current tracker snapshot
- DELETE /api/orders/track            Close the viewer session
- POST   /api/orders/track/refresh    Re-fetch the latest order
- POST   /api/orders                  Checkout: create an order from the cart
- POST   /api/orders/:id/export       Download the order PDF (pending -> exported)
- PUT    /api/orders/:id/submit-signed  Upload the signed PDF (exported -> submitted)
- GET    /api/orders/board            Admin order board
- DELETE /api/orders/board            Stop the admin order board
- PUT    /api/orders/:id/approve      Admin: submitted -> approved
- PUT    /api/orders/:id/reject       Admin: submitted -> rejected

Every REST result that carries an order goes through the tracker's guard,
so a late response can never move the displayed status backwards.
"""

import io

from flask import Blueprint, request, g, current_app, send_file

from ..decorators import current_session, load_viewer, require_admin, require_session, require_token
from ..extensions import portal_service, ORDER_WINDOW, SESSIONS, STORAGE
from ..services import order_lifecycle
from ..services.api_client import BackendAuthError, BackendError
from ..services.cart_service import CartStore
from ..validation import ValidationError, require_json_object, require_text
from .responses import error_response

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

MAX_COMMENT_LENGTH = 1000


def _no_board():
    return {"error": "No order board is open for this client"}, 404


def _advance_tracker(order_id: int, status: str, result) -> None:
    """Fold an action's result into the viewer's tracker, if it tracks that order."""
    session = current_session()
    if session is None:
        return
    tracked = session.tracker.order
    if tracked is None or tracked.order_id != order_id:
        return
    if isinstance(result, dict) and result.get("status") is not None:
        session.tracker.apply_local(result)
    else:
        session.tracker.advance(status)


def _advance_board(order_id: int, status: str, result) -> None:
    session = current_session()
    if session is None or session.board is None:
        return
    if isinstance(result, dict) and result.get("status") is not None:
        session.board.apply_local(result)
    else:
        session.board.advance(order_id, status)


# -------------------- tracking --------------------

@orders_bp.post("/track")
@require_token
def open_tracking():
    """
    Open (or reopen) the viewer session.

    Response:
        {
            "tracker": {...},        // OrderTracker.snapshot()
            "notifications": {...},  // NotificationFeed.snapshot()
            "board": {...} | null    // OrderBoard.snapshot() for admins
        }

    Error responses:
        401/403: The backend refused the token
        503: The backend is unavailable while fetching the profile
    """
    try:
        user = load_viewer(refresh=True)
        session = portal_service(SESSIONS).open(g.client_id, user, g.backend)

        try:
            session.tracker.load_initial()
        except BackendAuthError:
            portal_service(SESSIONS).close(g.client_id)
            raise

        try:
            session.feed.fetch()
        except BackendError as e:
            current_app.logger.warning("Notification fetch failed for client %s: %s", g.client_id, e.message)

        if session.board is not None:
            try:
                session.board.load()
            except BackendError as e:
                current_app.logger.warning("Order board load failed for client %s: %s", g.client_id, e.message)

        return {
            "tracker": session.tracker.snapshot(),
            "notifications": session.feed.snapshot(),
            "board": session.board.snapshot() if session.board else None,
        }, 201
    except Exception as e:
        return error_response(e, "Failed to open tracking session")


@orders_bp.get("/track")
@require_token
@require_session
def get_tracking():
    return {"tracker": g.session.tracker.snapshot()}


@orders_bp.delete("/track")
@require_token
@require_session
def close_tracking():
    portal_service(SESSIONS).close(g.client_id)
    return "", 204


@orders_bp.post("/track/refresh")
@require_token
@require_session
def refresh_tracking():
    try:
        g.session.tracker.load_initial()
        return {"tracker": g.session.tracker.snapshot()}
    except Exception as e:
        return error_response(e, "Failed to refresh order")


# -------------------- checkout and department actions --------------------

@orders_bp.post("")
@require_token
def checkout():
    """
    Create an order from the viewer's cart.

    The order window is checked when the request starts (refreshed over
    REST first if its state is unknown or stale); a close that arrives
    while the backend call is in flight does not cancel it.

    Error responses:
        400: Cart is empty
        409: Order window closed (or its state unknown)
    """
    try:
        window = portal_service(ORDER_WINDOW)
        if window.needs_refresh():
            try:
                window.refresh(g.backend)
            except BackendError:
                pass
        window.require_open()

        cart = CartStore(
            portal_service(STORAGE),
            g.client_id,
            min_qty=current_app.config["CART_MIN_QTY"],
            logger=current_app.logger,
        )
        items = cart.to_order_items()
        if not items:
            raise ValidationError("Cart is empty")

        order = g.backend.create_order(items)
        cart.clear()

        tracker = None
        session = current_session()
        if session is not None and isinstance(order, dict):
            session.tracker.adopt(order)
            tracker = session.tracker.snapshot()

        return {"order": order, "tracker": tracker}, 201
    except Exception as e:
        return error_response(e, "Failed to create order")


@orders_bp.post("/<int:order_id>/export")
@require_token
def export_order(order_id: int):
    try:
        pdf = g.backend.export_order_pdf(order_id)
        _advance_tracker(order_id, order_lifecycle.EXPORTED, None)
        return send_file(
            io.BytesIO(pdf),
            mimetype="application/pdf",
            as_attachment=True,
            download_name=f"order-{order_id}.pdf",
        )
    except Exception as e:
        return error_response(e, "Failed to export order")


@orders_bp.put("/<int:order_id>/submit-signed")
@require_token
def submit_signed(order_id: int):
    """Multipart upload with the signed PDF in field `file`."""
    try:
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            raise ValidationError("file is required")
        content = upload.read()
        if not content:
            raise ValidationError("file is empty")

        result = g.backend.submit_signed(order_id, content, upload.filename)
        _advance_tracker(order_id, order_lifecycle.SUBMITTED, result)

        session = current_session()
        return {
            "order": result,
            "tracker": session.tracker.snapshot() if session else None,
        }
    except Exception as e:
        return error_response(e, "Failed to submit signed order")


# -------------------- admin --------------------

@orders_bp.get("/board")
@require_token
@require_session
@require_admin
def get_board():
    """Admin dashboard. ?refresh=1 reloads the order list from the backend."""
    board = g.session.board
    if board is None:
        return _no_board()
    try:
        if request.args.get("refresh") in ("1", "true"):
            board.load()
        return {"board": board.snapshot()}
    except Exception as e:
        return error_response(e, "Failed to load order board")


@orders_bp.delete("/board")
@require_token
@require_session
@require_admin
def close_board():
    board, g.session.board = g.session.board, None
    if board is None:
        return _no_board()
    board.stop()
    return "", 204


@orders_bp.put("/<int:order_id>/approve")
@require_token
@require_admin
def approve_order(order_id: int):
    """Body: {"adminComment": "..."} (optional)."""
    try:
        payload = require_json_object(request.get_json(silent=True))
        comment = str(payload.get("adminComment") or "").strip()
        if len(comment) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"adminComment exceeds max length {MAX_COMMENT_LENGTH}")

        result = g.backend.approve_order(order_id, comment)
        _advance_board(order_id, order_lifecycle.APPROVED, result)
        return {"order": result}
    except Exception as e:
        return error_response(e, "Failed to approve order")


@orders_bp.put("/<int:order_id>/reject")
@require_token
@require_admin
def reject_order(order_id: int):
    """Body: {"reason": "..."} (required)."""
    try:
        payload = require_json_object(request.get_json(silent=True))
        reason = require_text(payload.get("reason"), "reason", max_length=MAX_COMMENT_LENGTH)

        result = g.backend.reject_order(order_id, reason)
        _advance_board(order_id, order_lifecycle.REJECTED, result)
        return {"order": result}
    except Exception as e:
        return error_response(e, "Failed to reject order")
