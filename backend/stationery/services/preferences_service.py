from __future__ import annotations

from ..validation import ValidationError
from .storage_service import ClientStorage, KEY_PREFERRED_LANGUAGE, KEY_RECENT_SEARCHES


MAX_RECENT_SEARCHES = 5
MAX_SEARCH_LENGTH = 200

LANGUAGE_VN = "vn"
LANGUAGE_EN = "en"
SUPPORTED_LANGUAGES = {LANGUAGE_VN, LANGUAGE_EN}
DEFAULT_LANGUAGE = LANGUAGE_VN


def recent_searches(storage: ClientStorage, client_id: str) -> list[str]:
    raw = storage.get(client_id, KEY_RECENT_SEARCHES, default=[])
    if not isinstance(raw, list):
        return []
    return [s for s in raw if isinstance(s, str) and s.strip()][:MAX_RECENT_SEARCHES]


def record_search(storage: ClientStorage, client_id: str, term: str) -> list[str]:
    """Move `term` to the front of the recent list; blank terms are ignored."""
    term = (term or "").strip()
    if not term:
        return recent_searches(storage, client_id)
    if len(term) > MAX_SEARCH_LENGTH:
        raise ValidationError(f"search term exceeds max length {MAX_SEARCH_LENGTH}")

    current = recent_searches(storage, client_id)
    updated = [term, *[s for s in current if s != term]][:MAX_RECENT_SEARCHES]
    storage.set(client_id, KEY_RECENT_SEARCHES, updated)
    return updated


def clear_recent_searches(storage: ClientStorage, client_id: str) -> None:
    storage.remove(client_id, KEY_RECENT_SEARCHES)


def preferred_language(storage: ClientStorage, client_id: str) -> str:
    value = storage.get(client_id, KEY_PREFERRED_LANGUAGE, default=DEFAULT_LANGUAGE)
    return value if value in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def set_preferred_language(storage: ClientStorage, client_id: str, language: str) -> str:
    language = (language or "").strip().lower()
    if language not in SUPPORTED_LANGUAGES:
        raise ValidationError(
            f"language must be one of: {', '.join(sorted(SUPPORTED_LANGUAGES))}"
        )
    storage.set(client_id, KEY_PREFERRED_LANGUAGE, language)
    return language
