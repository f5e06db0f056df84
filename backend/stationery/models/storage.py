from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ClientStorageEntry(db.Model):
    """
    Durable key-value state owned by one browser client.

    Mirrors what the SPA kept in localStorage: one JSON document per
    (client, key). Known keys: cart, user, recentSearches, preferredLanguage.
    """
    __tablename__ = "client_storage"
    __table_args__ = (
        db.UniqueConstraint("client_id", "key", name="uq_client_storage_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.String(64), nullable=False, index=True)

    key = db.Column(db.String(64), nullable=False)
    value = db.Column(db.Text, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "client_id": self.client_id,
            "key": self.key,
            "value": self.value,
            "updated_at": to_utc_z(self.updated_at),
        }
