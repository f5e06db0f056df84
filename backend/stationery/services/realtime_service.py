# Overview: Process-wide realtime connection to the backend broker with topic fan-out.

"""
Realtime Subscription Manager

================================================================================
One STOMP-over-WebSocket connection per process, shared by every tracker,
feed and dashboard. Consumers only ever see:

    unsubscribe = manager.subscribe("orders/7", handler)
    ...
    unsubscribe()          # idempotent, safe after close()

LIFECYCLE:
    idle -> connecting -> connected -> (drop) -> reconnecting -> connecting ...
    any state -> closed  (close() at app teardown; terminal)

RULES:
1. The connection opens lazily on the first subscription
2. One broker SUBSCRIBE per topic; every handler of that topic gets every message
3. Messages of a topic reach handlers in arrival order (single reader thread)
4. After a drop, all active topics are re-subscribed on reconnect
5. A malformed payload or a failing handler never affects other handlers
================================================================================
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlparse

import websocket

from .. import stomp
from .concurrency import daemon_timer


Handler = Callable[[Any], None]
Listener = Callable[[bool], None]

STATE_IDLE = "idle"
STATE_CONNECTING = "connecting"
STATE_CONNECTED = "connected"
STATE_RECONNECTING = "reconnecting"
STATE_CLOSED = "closed"


class RealtimeError(RuntimeError):
    pass


class WebSocketTransport:
    """websocket-client connection whose read loop runs on a daemon thread."""

    def __init__(self, url: str, *, on_open, on_text, on_close, logger: logging.Logger):
        self.url = url
        self.logger = logger
        self.app = websocket.WebSocketApp(
            url,
            on_open=lambda ws: on_open(),
            on_message=lambda ws, message: on_text(message),
            on_error=lambda ws, error: logger.warning("Realtime socket error: %s", error),
            on_close=lambda ws, code, reason: on_close(f"{code} {reason}".strip()),
        )
        self.thread: threading.Thread | None = None

    def start(self) -> None:
        self.thread = threading.Thread(
            target=self.app.run_forever,
            name="realtime-reader",
            daemon=True,
        )
        self.thread.start()

    def send(self, text: str) -> None:
        self.app.send(text)

    def close(self) -> None:
        self.app.close()


@dataclass
class _Registration:
    handler: Handler
    removed: bool = False


@dataclass
class _Topic:
    subscription_id: str
    registrations: list[_Registration] = field(default_factory=list)


class RealtimeManager:
    """
    Topic-scoped publish/subscribe over one shared broker connection.

    Constructed once in create_app() and closed from the app's teardown;
    consumers must not close or reset the connection themselves.
    """

    def __init__(
        self,
        url: str,
        *,
        topic_prefix: str = "/topic/",
        connect_headers: dict[str, str] | None = None,
        reconnect_delay: float = 5.0,
        transport_factory=None,
        timer_factory=daemon_timer,
        logger: logging.Logger | None = None,
    ):
        self.url = url
        self.topic_prefix = topic_prefix if topic_prefix.endswith("/") else topic_prefix + "/"
        self.connect_headers = dict(connect_headers or {})
        self.reconnect_delay = reconnect_delay
        self.logger = logger or logging.getLogger(__name__)
        self._transport_factory = transport_factory or (
            lambda url, **callbacks: WebSocketTransport(url, logger=self.logger, **callbacks)
        )
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._topics: dict[str, _Topic] = {}
        self._listeners: list[Listener] = []
        self._transport = None
        self._generation = 0
        self._state = STATE_IDLE
        self._reconnect_timer = None
        self._ids = itertools.count(1)

    # -------------------- public API --------------------

    @property
    def state(self) -> str:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == STATE_CONNECTED

    @property
    def closed(self) -> bool:
        return self._state == STATE_CLOSED

    def topics(self) -> list[str]:
        with self._lock:
            return sorted(self._topics)

    def handler_count(self, topic: str) -> int:
        with self._lock:
            entry = self._topics.get(self._normalize_topic(topic))
            return len(entry.registrations) if entry else 0

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """
        Register `handler` for messages on `topic` and return its unsubscribe function.

        Raises:
            RealtimeError: If the manager has been closed
        """
        if not callable(handler):
            raise TypeError("handler must be callable")
        topic = self._normalize_topic(topic)
        registration = _Registration(handler)

        with self._lock:
            if self._state == STATE_CLOSED:
                raise RealtimeError("Realtime manager is closed")

            entry = self._topics.get(topic)
            if entry is None:
                entry = _Topic(subscription_id=f"sub-{next(self._ids)}")
                self._topics[topic] = entry
                if self._state == STATE_CONNECTED:
                    self._send(stomp.subscribe_frame(entry.subscription_id, self._destination(topic)))
            entry.registrations = [*entry.registrations, registration]

            if self._state == STATE_IDLE:
                self._connect()

        def unsubscribe() -> None:
            self._remove(topic, registration)

        return unsubscribe

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(connected)` whenever the connection goes up or down."""
        with self._lock:
            self._listeners.append(listener)

        def remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

    def close(self) -> None:
        """Tear down the connection and drop every registration. Terminal."""
        with self._lock:
            if self._state == STATE_CLOSED:
                return
            was_connected = self._state == STATE_CONNECTED
            self._state = STATE_CLOSED
            self._generation += 1
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
                self._reconnect_timer = None
            for entry in self._topics.values():
                for registration in entry.registrations:
                    registration.removed = True
            self._topics.clear()
            transport, self._transport = self._transport, None
            listeners = list(self._listeners)
            self._listeners.clear()

        if transport is not None:
            try:
                if was_connected:
                    transport.send(stomp.encode(stomp.disconnect_frame()))
                transport.close()
            except Exception:
                self.logger.debug("Ignoring error while closing realtime transport", exc_info=True)
        if was_connected:
            self._notify(listeners, False)

    # -------------------- internals --------------------

    def _normalize_topic(self, topic: str) -> str:
        topic = (topic or "").strip()
        if topic.startswith(self.topic_prefix):
            topic = topic[len(self.topic_prefix):]
        topic = topic.strip("/")
        if not topic:
            raise ValueError("topic is required")
        return topic

    def _destination(self, topic: str) -> str:
        return f"{self.topic_prefix}{topic}"

    def _remove(self, topic: str, registration: _Registration) -> None:
        with self._lock:
            if registration.removed:
                return
            registration.removed = True
            entry = self._topics.get(topic)
            if entry is None:
                return
            entry.registrations = [r for r in entry.registrations if r is not registration]
            if entry.registrations:
                return
            del self._topics[topic]
            if self._state == STATE_CONNECTED:
                self._send(stomp.unsubscribe_frame(entry.subscription_id))

    def _send(self, frame: stomp.Frame) -> None:
        transport = self._transport
        if transport is None:
            return
        try:
            transport.send(stomp.encode(frame))
        except Exception:
            # The transport's close callback drives the reconnect
            self.logger.warning("Failed to send %s frame", frame.command, exc_info=True)

    def _connect(self) -> None:
        self._generation += 1
        generation = self._generation
        self._state = STATE_CONNECTING
        self._transport = self._transport_factory(
            self.url,
            on_open=lambda: self._handle_open(generation),
            on_text=lambda text: self._handle_text(generation, text),
            on_close=lambda reason="": self._handle_close(generation, reason),
        )
        self.logger.info("Connecting to realtime broker at %s", self.url)
        self._transport.start()

    def _handle_open(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            host = urlparse(self.url).hostname or "localhost"
            self._send(stomp.connect_frame(host, self.connect_headers))

    def _handle_text(self, generation: int, text: str) -> None:
        if generation != self._generation:
            return
        try:
            frames = stomp.decode(text)
        except stomp.FrameError:
            self.logger.warning("Dropping undecodable realtime frame", exc_info=True)
            return

        for frame in frames:
            if frame.command == "CONNECTED":
                self._handle_connected(generation)
            elif frame.command == "MESSAGE":
                self._dispatch(frame)
            elif frame.command == "ERROR":
                self.logger.error(
                    "Realtime broker error: %s",
                    frame.headers.get("message") or frame.body.strip(),
                )

    def _handle_connected(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state == STATE_CLOSED:
                return
            self._state = STATE_CONNECTED
            for topic, entry in self._topics.items():
                self._send(stomp.subscribe_frame(entry.subscription_id, self._destination(topic)))
            listeners = list(self._listeners)
            topic_count = len(self._topics)
        self.logger.info("Realtime connection established (%d topics)", topic_count)
        self._notify(listeners, True)

    def _dispatch(self, frame: stomp.Frame) -> None:
        destination = frame.headers.get("destination", "")
        try:
            topic = self._normalize_topic(destination)
        except ValueError:
            return

        with self._lock:
            entry = self._topics.get(topic)
            registrations = list(entry.registrations) if entry else []
        if not registrations:
            return

        try:
            payload = json.loads(frame.body) if frame.body.strip() else None
        except ValueError:
            self.logger.warning("Dropping malformed realtime message on %s", topic)
            return

        for registration in registrations:
            if registration.removed:
                continue
            try:
                registration.handler(payload)
            except Exception:
                self.logger.exception("Realtime handler failed for topic %s", topic)

    def _handle_close(self, generation: int, reason: str) -> None:
        with self._lock:
            if generation != self._generation or self._state == STATE_CLOSED:
                return
            self._transport = None
            if self._topics:
                self._state = STATE_RECONNECTING
                self._reconnect_timer = self._timer_factory(self.reconnect_delay, self._reconnect)
            else:
                self._state = STATE_IDLE
            reconnecting = self._state == STATE_RECONNECTING
            listeners = list(self._listeners)
        if reconnecting:
            self.logger.warning(
                "Realtime connection lost (%s); reconnecting in %ss",
                reason or "no reason", self.reconnect_delay,
            )
        else:
            self.logger.info("Realtime connection closed with no active topics")
        self._notify(listeners, False)

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
            if self._state != STATE_RECONNECTING:
                return
            if not self._topics:
                self._state = STATE_IDLE
                return
            self._connect()

    def _notify(self, listeners: list[Listener], connected: bool) -> None:
        for listener in listeners:
            try:
                listener(connected)
            except Exception:
                self.logger.exception("Realtime connection listener failed")
