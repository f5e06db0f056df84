# Overview: Process-wide mirror of the backend's "order window open" flag.

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from ..time_utils import utcnow, to_utc_z
from ..validation import ConflictError
from .api_client import BackendClient, BackendError


TOPIC = "order-window"


class OrderWindowClosed(ConflictError):
    """Checkout attempted while the window is closed or its state is unknown."""


class OrderWindow:
    """
    Holds the last known window state.

    None means unknown (never loaded, the last fetch failed, or the realtime
    connection went up or down since) and is treated as closed. Pushes
    overwrite the state as soon as they arrive. While no push can arrive,
    a state older than `max_age` seconds is due for a REST refresh.
    """

    def __init__(
        self,
        realtime=None,
        *,
        max_age: float = 30.0,
        clock=time.monotonic,
        logger: logging.Logger | None = None,
    ):
        self.realtime = realtime
        self.max_age = max_age
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._open: bool | None = None
        self._updated_at = None
        self._checked_at: float | None = None
        self._unsubscribe = None
        self._remove_listener = None

    @property
    def is_open(self) -> bool | None:
        return self._open

    @property
    def live(self) -> bool:
        """True while pushes can reach the mirror."""
        return self.realtime is not None and self.realtime.connected

    def needs_refresh(self) -> bool:
        live = self.live
        with self._lock:
            if self._open is None:
                return True
            if live:
                return False
            return self._clock() - self._checked_at >= self.max_age

    def can_create_order(self) -> bool:
        return self._open is True

    def require_open(self) -> None:
        """
        Raises:
            OrderWindowClosed: If the window is closed or unknown
        """
        if not self.can_create_order():
            raise OrderWindowClosed("The order window is currently closed")

    def _set(self, is_open: bool | None, source: str) -> None:
        with self._lock:
            changed = self._open != is_open
            self._open = is_open
            self._updated_at = utcnow()
            self._checked_at = self._clock()
        if changed:
            self.logger.info("Order window is now %s (%s)", _label(is_open), source)

    def refresh(self, client: BackendClient) -> bool | None:
        try:
            is_open = client.get_order_window_status()
        except BackendError as exc:
            self.logger.warning("Order window status fetch failed: %s", exc.message)
            self._set(None, "fetch failed")
            raise
        self._set(is_open, "rest")
        return is_open

    def on_push(self, message: Any) -> bool:
        if not isinstance(message, dict) or not isinstance(message.get("open"), bool):
            self.logger.warning("Discarding malformed order window push: %r", message)
            return False
        self._set(message["open"], "push")
        return True

    def toggle(self, client: BackendClient) -> bool:
        is_open = client.toggle_order_window()
        self._set(is_open, "toggle")
        return is_open

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "open": self._open,
                "can_create_order": self._open is True,
                "updated_at": to_utc_z(self._updated_at),
            }

    def start(self) -> None:
        if self.realtime is None or self._unsubscribe is not None:
            return
        self._unsubscribe = self.realtime.subscribe(TOPIC, self.on_push)
        self._remove_listener = self.realtime.add_listener(self._on_connection_change)

    def stop(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        remove_listener, self._remove_listener = self._remove_listener, None
        if unsubscribe is not None:
            unsubscribe()
        if remove_listener is not None:
            remove_listener()

    def _on_connection_change(self, connected: bool) -> None:
        # Pushes may have been missed either way
        self._set(None, "realtime connected" if connected else "realtime disconnected")


def _label(is_open: bool | None) -> str:
    if is_open is None:
        return "unknown"
    return "open" if is_open else "closed"
