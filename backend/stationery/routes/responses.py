# Overview: Maps domain and backend errors to JSON error responses.

from flask import current_app, jsonify

from ..services.api_client import (
    BackendAuthError,
    BackendError,
    BackendNotFoundError,
    BackendRequestError,
)
from ..services.cart_service import CartItemNotFound
from ..services.notification_feed import NotificationSyncError
from ..services.order_lifecycle import LifecycleError
from ..validation import ConflictError, ValidationError


def error_response(exc: Exception, action: str):
    """
    Error responses:
        400: ValidationError, LifecycleError
        401/403: backend refused the viewer's token or role
        404: CartItemNotFound, backend 404
        409: ConflictError (e.g. order window closed)
        4xx: any other backend rejection, passed through
        502: malformed backend response
        503: backend unavailable (retryable)
        500: anything else, logged with traceback
    """
    if isinstance(exc, (ValidationError, LifecycleError)):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, CartItemNotFound):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, NotificationSyncError):
        return jsonify({"error": str(exc), "retryable": exc.retryable}), 503 if exc.retryable else 502
    if isinstance(exc, BackendAuthError):
        return jsonify({"error": exc.message}), exc.status_code or 401
    if isinstance(exc, BackendNotFoundError):
        return jsonify({"error": exc.message}), 404
    if isinstance(exc, BackendRequestError):
        return jsonify({"error": exc.message}), exc.status_code or 400
    if isinstance(exc, BackendError):
        current_app.logger.warning("%s: %s", action, exc.message)
        return jsonify({"error": exc.message, "retryable": exc.retryable}), 503 if exc.retryable else 502

    current_app.logger.exception(action)
    return jsonify({"error": "Internal server error"}), 500
