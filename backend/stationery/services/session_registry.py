# Overview: Per-viewer realtime state (order tracker, notification feed, admin board) keyed by client id.

from __future__ import annotations

import hashlib
import hmac
import logging
import threading
import time
from dataclasses import dataclass

from .api_client import BackendClient
from .concurrency import daemon_timer
from .notification_feed import NotificationFeed
from .order_tracker import OrderBoard, OrderTracker


ADMIN_ROLE = "ADMIN"


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a viewer token; sessions and cached profiles keep only this."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionTokenMismatch(LookupError):
    """The client's session was opened under a different token."""


@dataclass
class ViewerSession:
    client_id: str
    user: dict
    tracker: OrderTracker
    feed: NotificationFeed
    board: OrderBoard | None = None
    token_hash: str = ""
    last_seen: float = 0.0

    @property
    def is_admin(self) -> bool:
        return is_admin(self.user)

    def owned_by(self, token: str | None) -> bool:
        if not token or not self.token_hash:
            return False
        return hmac.compare_digest(self.token_hash, hash_token(token))

    def stop(self) -> None:
        self.tracker.stop()
        self.feed.stop()
        if self.board is not None:
            self.board.stop()


def is_admin(user: dict | None) -> bool:
    role = (user or {}).get("roleName") or (user or {}).get("role") or ""
    return str(role).upper().removeprefix("ROLE_") == ADMIN_ROLE


class SessionRegistry:
    """
    Viewer sessions are the portal's "mounted pages": opening one
    subscribes its components, closing it unsubscribes them and turns any
    REST call still in flight into a no-op.

    Each component gets its own BackendClient bound to the viewer's token,
    and the session only answers to that token. A session nobody has
    looked up for `idle_ttl` seconds is closed by a sweep that runs every
    `sweep_interval` seconds while sessions are open.
    """

    def __init__(
        self,
        realtime=None,
        *,
        poll_interval: float = 30.0,
        notification_poll_interval: float | None = None,
        idle_ttl: float | None = 1800.0,
        sweep_interval: float = 60.0,
        timer_factory=daemon_timer,
        clock=time.monotonic,
        logger: logging.Logger | None = None,
    ):
        self.realtime = realtime
        self.poll_interval = poll_interval
        self.notification_poll_interval = notification_poll_interval
        self.idle_ttl = idle_ttl
        self.sweep_interval = sweep_interval
        self.timer_factory = timer_factory
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._sessions: dict[str, ViewerSession] = {}
        self._sweep_timer = None

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, client_id: str, token: str | None = None) -> ViewerSession | None:
        """
        The open session of `client_id`, or None.

        With `token`, the lookup counts as viewer activity and raises
        SessionTokenMismatch if the session was opened under another token.
        """
        with self._lock:
            session = self._sessions.get(client_id)
            if session is None or token is None:
                return session
            if not session.owned_by(token):
                raise SessionTokenMismatch(f"Session of client {client_id} belongs to another token")
            session.last_seen = self._clock()
            return session

    def open(self, client_id: str, user: dict, client: BackendClient) -> ViewerSession:
        """
        Start (or restart) the session of `client_id`.

        An existing session for the same client is stopped first so that a
        page reload never leaves two trackers subscribed.
        """
        tracker = OrderTracker(
            client.with_token(client.token),
            self.realtime,
            department_id=user.get("departmentId"),
            poll_interval=self.poll_interval,
            timer_factory=self.timer_factory,
            logger=self.logger,
        )
        feed = NotificationFeed(
            client.with_token(client.token),
            self.realtime,
            user_id=user.get("id"),
            poll_interval=self.notification_poll_interval,
            timer_factory=self.timer_factory,
            logger=self.logger,
        )
        board = None
        if is_admin(user):
            board = OrderBoard(client.with_token(client.token), self.realtime, logger=self.logger)
        session = ViewerSession(
            client_id=client_id,
            user=user,
            tracker=tracker,
            feed=feed,
            board=board,
            token_hash=hash_token(client.token or ""),
            last_seen=self._clock(),
        )

        with self._lock:
            previous = self._sessions.get(client_id)
            self._sessions[client_id] = session
        if previous is not None:
            previous.stop()

        tracker.start()
        feed.start()
        if board is not None:
            board.start()
        self.logger.info("Opened viewer session %s (department %s)", client_id, user.get("departmentId"))
        self._schedule_sweep()
        return session

    def close(self, client_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(client_id, None)
        if session is None:
            return False
        session.stop()
        self.logger.info("Closed viewer session %s", client_id)
        return True

    def close_all(self) -> int:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            if self._sweep_timer is not None:
                self._sweep_timer.cancel()
                self._sweep_timer = None
        for session in sessions:
            session.stop()
        return len(sessions)

    def sweep(self) -> int:
        """Close every session idle for `idle_ttl` seconds or more. Returns how many were closed."""
        if not self.idle_ttl:
            return 0
        cutoff = self._clock() - self.idle_ttl
        with self._lock:
            idle = [s for s in self._sessions.values() if s.last_seen <= cutoff]
            for session in idle:
                del self._sessions[session.client_id]
        for session in idle:
            session.stop()
            self.logger.info("Closed idle viewer session %s", session.client_id)
        return len(idle)

    def _schedule_sweep(self) -> None:
        with self._lock:
            if not self.idle_ttl or self._sweep_timer is not None or not self._sessions:
                return
            self._sweep_timer = self.timer_factory(self.sweep_interval, self._sweep_tick)

    def _sweep_tick(self) -> None:
        with self._lock:
            self._sweep_timer = None
        try:
            self.sweep()
        except Exception:
            self.logger.exception("Idle session sweep failed")
        self._schedule_sweep()
