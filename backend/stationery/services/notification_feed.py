# Overview: Per-viewer notification list fed by REST fetches and realtime pushes, with optimistic read marking.

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from ..time_utils import parse_backend_datetime, to_utc_z
from .api_client import BackendAuthError, BackendClient, BackendError
from .concurrency import daemon_timer


GLOBAL_TOPIC = "notifications/global"


class NotificationSyncError(ValueError):
    """The backend refused or failed a read-state change; local state was rolled back."""

    def __init__(self, message: str, *, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


@dataclass(frozen=True)
class Notification:
    id: int
    title: str = ""
    message: str = ""
    type: str | None = None
    link: str | None = None
    read: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "Notification":
        if not isinstance(payload, dict) or payload.get("id") is None:
            raise ValueError("Notification payload must be an object with an id")
        try:
            created_at = parse_backend_datetime(payload.get("createdAt"))
        except (TypeError, ValueError):
            created_at = None
        return cls(
            id=payload["id"],
            title=payload.get("title") or "",
            message=payload.get("message") or "",
            type=payload.get("type"),
            link=payload.get("link"),
            read=bool(payload.get("read", payload.get("isRead", False))),
            created_at=created_at,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "link": self.link,
            "read": self.read,
            "created_at": to_utc_z(self.created_at),
        }


class MarkReadCommand:
    """
    One optimistic read-state change.

    execute() captures the read flag of every target, flips them locally,
    then calls the backend. If the call fails the captured flags are
    restored and NotificationSyncError is raised. Targets that were
    already read are left alone; when none are left, no call is made.
    A fetch that lands while the call is in flight wins over the rollback.
    """

    def __init__(self, feed: "NotificationFeed", notification_id=None):
        self.feed = feed
        self.notification_id = notification_id
        self.previous: dict[Any, bool] = {}
        self.revision: int | None = None

    @property
    def mark_all(self) -> bool:
        return self.notification_id is None

    def _targets(self) -> list[Notification]:
        if self.mark_all:
            return [n for n in self.feed._items if not n.read]
        return [n for n in self.feed._items if n.id == self.notification_id and not n.read]

    def execute(self) -> bool:
        """Returns True if a backend call was made."""
        with self.feed._lock:
            targets = self._targets()
            if not targets:
                return False
            self.previous = {n.id: n.read for n in targets}
            self.revision = self.feed._revision
            self.feed._set_read(self.previous.keys(), True)

        try:
            if self.mark_all:
                self.feed.client.mark_all_notifications_read()
            else:
                self.feed.client.mark_notification_read(self.notification_id)
        except BackendError as exc:
            if self.undo():
                self.feed.logger.warning("Rolled back read state for %s: %s", self._label(), exc.message)
            else:
                self.feed.logger.warning("Marking %s failed after a refetch: %s", self._label(), exc.message)
            raise NotificationSyncError(exc.message, retryable=exc.retryable) from exc
        return True

    def undo(self) -> bool:
        with self.feed._lock:
            if self.feed._revision != self.revision:
                # Items fetched since execute() already carry the backend's read state
                return False
            for notification_id, was_read in self.previous.items():
                self.feed._set_read([notification_id], was_read)
        return True

    def _label(self) -> str:
        return "all notifications" if self.mark_all else f"notification {self.notification_id}"


class NotificationFeed:
    """
    Notifications of one viewer, newest first.

    Announcements arrive as pushes on the global topic. The backend sends
    personal notifications to the viewer's user queue, which only a
    connection authenticated as that viewer can read. The shared connection
    never sees them, so the feed refetches every `poll_interval` seconds.
    """

    TOPICS = (GLOBAL_TOPIC,)

    def __init__(
        self,
        client: BackendClient,
        realtime=None,
        *,
        user_id: int | None = None,
        poll_interval: float | None = None,
        timer_factory=daemon_timer,
        owns_client: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.realtime = realtime
        self.user_id = user_id
        self.poll_interval = poll_interval
        self._timer_factory = timer_factory
        self.owns_client = owns_client
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._items: list[Notification] = []
        self._loaded = False
        self._started = False
        self._closed = False
        # Bumped whenever fetch() replaces the list
        self._revision = 0
        self._unsubscribers: list = []
        self._poll_timer = None

    @property
    def items(self) -> list[Notification]:
        with self._lock:
            return list(self._items)

    @property
    def unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._items if not n.read)

    @property
    def loaded(self) -> bool:
        return self._loaded

    def get(self, notification_id) -> Notification | None:
        with self._lock:
            return next((n for n in self._items if n.id == notification_id), None)

    def fetch(self) -> list[Notification]:
        """Replace local state with the backend's list. Backend errors propagate."""
        payloads = self.client.list_notifications()
        items = []
        for payload in payloads:
            try:
                items.append(Notification.from_payload(payload))
            except ValueError:
                self.logger.warning("Skipping malformed notification %r", payload)
        with self._lock:
            if self._closed:
                return []
            self._items = items
            self._loaded = True
            self._revision += 1
            return list(self._items)

    def on_push(self, payload: Any) -> bool:
        """Prepend a pushed notification unless its id is already present."""
        try:
            notification = Notification.from_payload(payload)
        except ValueError:
            self.logger.warning("Discarding malformed notification push")
            return False
        with self._lock:
            if self._closed:
                return False
            if any(n.id == notification.id for n in self._items):
                return False
            self._items = [notification, *self._items]
            return True

    def mark_read(self, notification_id) -> bool:
        return MarkReadCommand(self, notification_id).execute()

    def mark_all(self) -> bool:
        return MarkReadCommand(self).execute()

    def _set_read(self, ids, read: bool) -> None:
        ids = set(ids)
        self._items = [replace(n, read=read) if n.id in ids else n for n in self._items]

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "loaded": self._loaded,
                "unread_count": self.unread_count,
                "items": [n.to_dict() for n in self._items],
            }

    def start(self) -> None:
        with self._lock:
            if self._closed or self._started:
                return
            self._started = True
            if self.realtime is not None:
                self._unsubscribers = [self.realtime.subscribe(t, self.on_push) for t in self.TOPICS]
        self._schedule_poll()

    def stop(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            unsubscribers, self._unsubscribers = self._unsubscribers, []
            if self._poll_timer is not None:
                self._poll_timer.cancel()
                self._poll_timer = None
        for unsubscribe in unsubscribers:
            unsubscribe()
        if self.owns_client:
            self.client.close()

    def _schedule_poll(self) -> None:
        with self._lock:
            if self._closed or not self.poll_interval:
                return
            self._poll_timer = self._timer_factory(self.poll_interval, self._poll)

    def _poll(self) -> None:
        with self._lock:
            self._poll_timer = None
            if self._closed:
                return
        try:
            self.fetch()
        except BackendAuthError:
            self.logger.warning("Stopping notification polling for user %s: not authorized", self.user_id)
            return
        except BackendError as exc:
            self.logger.warning("Notification poll for user %s failed: %s", self.user_id, exc.message)
        self._schedule_poll()
