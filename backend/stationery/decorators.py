# Overview: Request decorators that establish the viewer (client id, bearer token, backend client).

from functools import wraps
from flask import current_app, request, jsonify, g

from .extensions import portal_service, SESSIONS, STORAGE
from .services.api_client import BackendAuthError, BackendClient, BackendError
from .services.session_registry import SessionTokenMismatch, hash_token, is_admin
from .services.storage_service import KEY_USER, KEY_USER_TOKEN, validate_client_id
from .validation import ValidationError


CLIENT_ID_HEADER = "X-Client-Id"


def require_client(f):
    """
    Require the X-Client-Id header that keys the viewer's durable state.

    Sets g.client_id. Returns 400 if the header is missing or too long.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.client_id = validate_client_id(request.headers.get(CLIENT_ID_HEADER))
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        return f(*args, **kwargs)

    return decorated_function


def require_token(f):
    """
    Require a viewer token to forward to the stationery backend.

    Sets the following Flask g attributes:
    - g.client_id: from X-Client-Id (see require_client)
    - g.token: the bearer token, passed through unchanged
    - g.backend: a BackendClient bound to the token, closed at teardown

    Token validation is the backend's job: a bad token surfaces as a 401
    from the first backend call.
    """
    @wraps(f)
    @require_client
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        g.token = auth_header.split(" ", 1)[1].strip()
        if not g.token:
            return jsonify({"error": "Authentication required"}), 401
        g.backend = BackendClient.from_config(current_app.config, token=g.token, logger=current_app.logger)
        return f(*args, **kwargs)

    return decorated_function


def load_viewer(*, refresh: bool = False) -> dict:
    """
    The viewer's user profile, cached in client storage under `user`.

    The cached copy is used only when it was fetched with the current
    token; any other token goes to the backend.

    Raises:
        BackendError: If the profile has to be fetched and the backend fails
    """
    storage = portal_service(STORAGE)
    token_hash = hash_token(g.token)
    user = None
    if not refresh and storage.get(g.client_id, KEY_USER_TOKEN) == token_hash:
        user = storage.get(g.client_id, KEY_USER)
    if not isinstance(user, dict) or user.get("id") is None:
        user = g.backend.get_current_user() or {}
        storage.set(g.client_id, KEY_USER, user)
        storage.set(g.client_id, KEY_USER_TOKEN, token_hash)
    g.user = user
    return user


def current_session():
    """The viewer session of g.client_id if it was opened with g.token, else None."""
    try:
        return portal_service(SESSIONS).get(g.client_id, token=g.token)
    except SessionTokenMismatch:
        return None


def require_session(f):
    """
    Require an open viewer session for this client and token.

    Must be stacked under @require_token. Sets g.session. Returns 404 if
    the client has no session and 401 if it was opened with another token.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            session = portal_service(SESSIONS).get(g.client_id, token=g.token)
        except SessionTokenMismatch:
            return jsonify({"error": "Session was opened with a different token"}), 401
        if session is None:
            return jsonify({"error": "No tracking session is open for this client"}), 404
        g.session = session
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Require the ADMIN role on the viewer's profile.

    Must be stacked under @require_token. Returns 403 for other roles.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user = load_viewer()
        except BackendAuthError as e:
            return jsonify({"error": e.message}), e.status_code or 401
        except BackendError as e:
            return jsonify({"error": e.message}), 503 if e.retryable else 502

        if not is_admin(user):
            return jsonify({"error": "Administrator role required"}), 403

        return f(*args, **kwargs)

    return decorated_function
