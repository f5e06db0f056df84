# Overview: Durable per-client key-value storage (the portal's localStorage).

from __future__ import annotations

import json
import logging
from typing import Any

from ..extensions import db
from ..models import ClientStorageEntry
from ..validation import ValidationError


KEY_CART = "cart"
KEY_USER = "user"
# SHA-256 of the token the cached `user` profile was fetched with
KEY_USER_TOKEN = "userToken"
KEY_RECENT_SEARCHES = "recentSearches"
KEY_PREFERRED_LANGUAGE = "preferredLanguage"
KNOWN_KEYS = {KEY_CART, KEY_USER, KEY_USER_TOKEN, KEY_RECENT_SEARCHES, KEY_PREFERRED_LANGUAGE}

MAX_CLIENT_ID_LENGTH = 64


def validate_client_id(client_id: Any) -> str:
    if client_id is None or not str(client_id).strip():
        raise ValidationError("client id is required")
    client_id = str(client_id).strip()
    if len(client_id) > MAX_CLIENT_ID_LENGTH:
        raise ValidationError(f"client id exceeds max length {MAX_CLIENT_ID_LENGTH}")
    return client_id


class ClientStorage:
    """
    JSON documents keyed by (client id, key), written through on every set.

    Reads never raise on bad data: a document that does not parse is
    reported as missing so callers start from a clean default.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)

    def _entry(self, client_id: str, key: str) -> ClientStorageEntry | None:
        return (
            db.session.query(ClientStorageEntry)
            .filter_by(client_id=client_id, key=key)
            .first()
        )

    def get(self, client_id: str, key: str, default: Any = None) -> Any:
        entry = self._entry(validate_client_id(client_id), key)
        if entry is None or entry.value is None:
            return default
        try:
            return json.loads(entry.value)
        except ValueError:
            self.logger.warning("Discarding malformed %s document for client %s", key, client_id)
            return default

    def set(self, client_id: str, key: str, value: Any) -> None:
        client_id = validate_client_id(client_id)
        payload = json.dumps(value)
        entry = self._entry(client_id, key)
        if entry is None:
            entry = ClientStorageEntry(client_id=client_id, key=key, value=payload)
            db.session.add(entry)
        else:
            entry.value = payload
        db.session.commit()

    def remove(self, client_id: str, key: str) -> bool:
        entry = self._entry(validate_client_id(client_id), key)
        if entry is None:
            return False
        db.session.delete(entry)
        db.session.commit()
        return True

    def clear(self, client_id: str) -> int:
        deleted = (
            db.session.query(ClientStorageEntry)
            .filter_by(client_id=validate_client_id(client_id))
            .delete()
        )
        db.session.commit()
        return deleted

    def keys(self, client_id: str) -> list[str]:
        rows = (
            db.session.query(ClientStorageEntry.key)
            .filter_by(client_id=validate_client_id(client_id))
            .order_by(ClientStorageEntry.key.asc())
            .all()
        )
        return [r[0] for r in rows]

    def clients(self) -> list[str]:
        rows = (
            db.session.query(ClientStorageEntry.client_id)
            .distinct()
            .order_by(ClientStorageEntry.client_id.asc())
            .all()
        )
        return [r[0] for r in rows]
