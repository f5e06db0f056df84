# Overview: Flask API routes for per-client preferences (recent searches, language).

from flask import Blueprint, request, g

from ..decorators import require_client
from ..extensions import portal_service, STORAGE
from ..services import preferences_service
from ..validation import require_json_object
from .responses import error_response

preferences_bp = Blueprint("preferences", __name__, url_prefix="/api/preferences")


@preferences_bp.get("")
@require_client
def get_preferences():
    storage = portal_service(STORAGE)
    return {
        "recent_searches": preferences_service.recent_searches(storage, g.client_id),
        "language": preferences_service.preferred_language(storage, g.client_id),
    }


@preferences_bp.post("/recent-searches")
@require_client
def record_search():
    """Body: {"term": "stapler"}. Blank terms are ignored."""
    try:
        payload = require_json_object(request.get_json(silent=True))
        searches = preferences_service.record_search(portal_service(STORAGE), g.client_id, payload.get("term"))
        return {"recent_searches": searches}
    except Exception as e:
        return error_response(e, "Failed to record search")


@preferences_bp.delete("/recent-searches")
@require_client
def clear_searches():
    preferences_service.clear_recent_searches(portal_service(STORAGE), g.client_id)
    return {"recent_searches": []}


@preferences_bp.put("/language")
@require_client
def set_language():
    """Body: {"language": "vn" | "en"}."""
    try:
        payload = require_json_object(request.get_json(silent=True))
        language = preferences_service.set_preferred_language(
            portal_service(STORAGE), g.client_id, payload.get("language")
        )
        return {"language": language}
    except Exception as e:
        return error_response(e, "Failed to set language")
