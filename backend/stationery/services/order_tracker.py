# Overview: Reconciles REST fetches and realtime pushes into one authoritative order status.

"""
Order Lifecycle Tracker

================================================================================
Two sources describe the same order and race each other:

    REST   load_initial() / apply_local()   (may resolve late, with old data)
    PUSH   on_realtime_update()             (may arrive reordered or twice)

Both go through reconcile(): a status is applied only if it is reachable
from the current one (order_lifecycle.is_reachable), so the tracked status
never moves backwards, terminal statuses never change, and duplicates are
no-ops. Rejected updates are logged and dropped.

When the realtime connection is down the tracker polls load_initial()
every ORDER_POLL_INTERVAL seconds until the connection comes back.
================================================================================
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from ..time_utils import parse_backend_datetime, to_utc_z
from ..validation import coerce_int
from . import order_lifecycle
from .api_client import BackendAuthError, BackendClient, BackendError
from .concurrency import daemon_timer
from .order_lifecycle import LifecycleError


LOAD_IDLE = "idle"
LOAD_LOADING = "loading"
LOAD_READY = "ready"
LOAD_ERROR = "error"


@dataclass
class TrackedOrder:
    order_id: int
    status: str
    department_id: int | None = None
    admin_comment: str | None = None
    items: list[dict] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "TrackedOrder":
        """
        Build from a backend OrderDTO / OrderStatusDTO / OrderDetailDTO.

        Raises:
            LifecycleError: If the id or status is missing or invalid
        """
        if not isinstance(payload, dict):
            raise LifecycleError("Order payload must be an object")

        raw_id = payload.get("orderId", payload.get("id"))
        try:
            order_id = coerce_int(raw_id, "orderId")
        except ValueError:
            raise LifecycleError(f"Invalid order id {raw_id!r}")

        status = order_lifecycle.normalize_status(payload.get("status"))
        order_lifecycle.validate_status(status)

        department_id = payload.get("departmentId")
        try:
            department_id = coerce_int(department_id, "departmentId") if department_id is not None else None
        except ValueError:
            department_id = None

        return cls(
            order_id=order_id,
            status=status,
            department_id=department_id,
            admin_comment=payload.get("adminComment"),
            items=_normalize_items(payload.get("items")),
            created_at=_safe_datetime(payload.get("createdAt")),
            updated_at=_safe_datetime(payload.get("updatedAt")),
        )

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "status": self.status,
            "department_id": self.department_id,
            "admin_comment": self.admin_comment,
            "items": [dict(i) for i in self.items],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


def _safe_datetime(value: Any) -> datetime | None:
    try:
        return parse_backend_datetime(value)
    except (TypeError, ValueError):
        return None


def _normalize_items(raw: Any) -> list[dict]:
    """Order lines with a product reference and a positive quantity; others are skipped."""
    if not isinstance(raw, list):
        return []
    items = []
    for line in raw:
        if not isinstance(line, dict):
            continue
        try:
            product_id = coerce_int(line.get("productId"), "productId")
            quantity = coerce_int(line.get("quantity"), "quantity")
        except ValueError:
            continue
        if quantity < 1:
            continue
        items.append({
            "product_id": product_id,
            "name": line.get("productName"),
            "quantity": quantity,
            "unit": line.get("unitNameEn") or line.get("unitNameVn") or line.get("unit"),
        })
    return items


def is_newer_order(candidate: TrackedOrder, current: TrackedOrder) -> bool:
    """Whether `candidate` is a later order than `current` (creation time, then id)."""
    if candidate.created_at and current.created_at and candidate.created_at != current.created_at:
        return candidate.created_at > current.created_at
    return candidate.order_id > current.order_id


def reconcile(current: TrackedOrder, incoming: TrackedOrder) -> tuple[TrackedOrder, bool]:
    """
    Fold `incoming` into `current` (same order id).

    Returns (resulting order, whether anything changed). Status moves only
    to a reachable status; at the same status only descriptive fields
    (comment, items, timestamps) are refreshed.
    """
    if incoming.order_id != current.order_id:
        raise LifecycleError(
            f"Cannot reconcile order {incoming.order_id} into order {current.order_id}"
        )

    if incoming.status != current.status and not order_lifecycle.is_reachable(current.status, incoming.status):
        return current, False

    merged = replace(
        current,
        status=incoming.status,
        department_id=incoming.department_id if incoming.department_id is not None else current.department_id,
        admin_comment=incoming.admin_comment if incoming.admin_comment is not None else current.admin_comment,
        items=incoming.items or current.items,
        created_at=incoming.created_at or current.created_at,
        updated_at=incoming.updated_at or current.updated_at,
    )
    return merged, merged != current


class OrderTracker:
    """
    Tracks the latest order of one department for one viewer.

    Thread-safe: REST calls run on request threads and the poll timer,
    pushes arrive on the realtime reader thread.
    """

    def __init__(
        self,
        client: BackendClient,
        realtime=None,
        *,
        department_id: int | None = None,
        poll_interval: float = 30.0,
        timer_factory=daemon_timer,
        owns_client: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.realtime = realtime
        self.department_id = department_id
        self.poll_interval = poll_interval
        self.owns_client = owns_client
        self.logger = logger or logging.getLogger(__name__)
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._order: TrackedOrder | None = None
        self._load_state = LOAD_IDLE
        self._error: dict | None = None
        self._generation = 0
        self._started = False
        self._closed = False
        self._poll_timer = None
        self._polling = False
        self._unsubscribe = None
        self._remove_listener = None

    # -------------------- reads --------------------

    @property
    def order(self) -> TrackedOrder | None:
        with self._lock:
            return self._order

    @property
    def status(self) -> str | None:
        with self._lock:
            return self._order.status if self._order else None

    @property
    def load_state(self) -> str:
        return self._load_state

    @property
    def polling(self) -> bool:
        return self._polling

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def topic(self) -> str | None:
        return f"orders/{self.department_id}" if self.department_id is not None else None

    def snapshot(self) -> dict:
        with self._lock:
            order = self._order
            status = order.status if order else None
            return {
                "state": self._load_state,
                "error": dict(self._error) if self._error else None,
                "department_id": self.department_id,
                "polling": self._polling,
                "order": order.to_dict() if order else None,
                "status": order_lifecycle.describe(status) if status else None,
                "actions": order_lifecycle.available_actions(status) if status else {
                    "can_export": False,
                    "can_upload_signed": False,
                    "can_review": False,
                    "is_terminal": False,
                },
            }

    # -------------------- REST path --------------------

    def load_initial(self) -> TrackedOrder | None:
        """
        Fetch the latest order and fold it in.

        "No current order" is a normal, ready state. Backend failures leave
        the last known order in place and record a retryable error;
        authorization failures are re-raised for the route to handle.
        """
        with self._lock:
            if self._closed:
                return None
            generation = self._generation
            self._load_state = LOAD_LOADING

        try:
            payload = self.client.get_latest_order()
        except BackendAuthError as exc:
            self._record_error(generation, exc.message, retryable=False)
            raise
        except BackendError as exc:
            self.logger.warning("Order fetch failed for department %s: %s", self.department_id, exc.message)
            self._record_error(generation, exc.message, retryable=True)
            return self.order

        with self._lock:
            if self._closed or generation != self._generation:
                self.logger.debug("Ignoring order fetch that resolved after the tracker stopped")
                return self._order
            if payload is not None:
                try:
                    self._fold(TrackedOrder.from_payload(payload), source="rest")
                except LifecycleError as exc:
                    self.logger.warning("Ignoring malformed order from backend: %s", exc)
                    self._load_state = LOAD_ERROR
                    self._error = {"message": str(exc), "retryable": True}
                    return self._order
            self._load_state = LOAD_READY
            self._error = None
            return self._order

    def apply_local(self, payload: Any) -> bool:
        """Fold the REST response of an action (export, submit, review) through the guard."""
        if payload is None:
            return False
        order = TrackedOrder.from_payload(payload)
        with self._lock:
            if self._closed:
                return False
            return self._fold(order, source="rest")

    def advance(self, status: str) -> bool:
        """Apply a status the viewer's own action produced when the backend returned no body."""
        with self._lock:
            if self._closed or self._order is None:
                return False
            return self._fold(replace(self._order, status=status), source="rest")

    def adopt(self, payload: Any) -> TrackedOrder:
        """Start tracking an order the viewer just created, replacing any previous one."""
        order = TrackedOrder.from_payload(payload)
        with self._lock:
            if self._order is None or self._order.order_id != order.order_id:
                self._order = order
            else:
                self._fold(order, source="rest")
            self._load_state = LOAD_READY
            self._error = None
            return self._order

    def _record_error(self, generation: int, message: str, *, retryable: bool) -> None:
        with self._lock:
            if self._closed or generation != self._generation:
                return
            self._load_state = LOAD_ERROR
            self._error = {"message": message, "retryable": retryable}

    # -------------------- push path --------------------

    def on_realtime_update(self, message: Any) -> bool:
        """
        Apply a push for the tracked order. Returns True if the status changed.

        Pushes for other orders, unknown statuses and unreachable
        transitions are discarded.
        """
        try:
            incoming = TrackedOrder.from_payload(message)
        except LifecycleError as exc:
            self.logger.warning("Discarding malformed order push on %s: %s", self.topic, exc)
            return False

        with self._lock:
            if self._closed:
                return False
            current = self._order
            if current is None or incoming.order_id != current.order_id:
                self.logger.debug(
                    "Ignoring push for order %s (tracking %s)",
                    incoming.order_id, current.order_id if current else None,
                )
                return False
            return self._fold(incoming, source="push")

    def _fold(self, incoming: TrackedOrder, *, source: str) -> bool:
        current = self._order
        if current is None:
            self._order = incoming
            return True

        if incoming.order_id != current.order_id:
            if source == "rest" and is_newer_order(incoming, current):
                self._order = incoming
                return True
            self.logger.info(
                "Discarding %s result for order %s while tracking newer order %s",
                source, incoming.order_id, current.order_id,
            )
            return False

        merged, changed = reconcile(current, incoming)
        if merged is current and incoming.status != current.status:
            self.logger.info(
                "Discarding stale %s update for order %s: %s -> %s is not reachable",
                source, current.order_id, current.status, incoming.status,
            )
            return False
        self._order = merged
        return changed and merged.status != current.status

    # -------------------- lifecycle --------------------

    def start(self) -> None:
        """Subscribe to the department topic; poll instead when realtime is unavailable."""
        with self._lock:
            if self._started or self._closed:
                return
            self._started = True

        if self.realtime is not None and self.topic is not None:
            self._unsubscribe = self.realtime.subscribe(self.topic, self.on_realtime_update)
            self._remove_listener = self.realtime.add_listener(self._on_connection_change)
            if not self.realtime.connected:
                self._start_polling()
        else:
            self._start_polling()

    def stop(self) -> None:
        """Unsubscribe, stop polling and ignore anything still in flight."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._generation += 1
            self._stop_polling()
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            remove_listener, self._remove_listener = self._remove_listener, None

        if unsubscribe is not None:
            unsubscribe()
        if remove_listener is not None:
            remove_listener()
        if self.owns_client:
            self.client.close()

    def _on_connection_change(self, connected: bool) -> None:
        with self._lock:
            if self._closed:
                return
            if not connected:
                self._start_polling()
                return
            was_polling = self._polling
            self._stop_polling()
        if was_polling:
            # Catch up on pushes missed while disconnected, off the reader thread
            self._timer_factory(0, self._catch_up)

    def _catch_up(self) -> None:
        try:
            self.load_initial()
        except BackendAuthError:
            self.logger.warning("Catch-up fetch for department %s was not authorized", self.department_id)

    def _start_polling(self) -> None:
        with self._lock:
            if self._closed or self._polling:
                return
            self._polling = True
            self._poll_timer = self._timer_factory(self.poll_interval, self._poll)
        self.logger.info("Polling orders for department %s every %ss", self.department_id, self.poll_interval)

    def _stop_polling(self) -> None:
        self._polling = False
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None

    def _poll(self) -> None:
        with self._lock:
            self._poll_timer = None
            if self._closed or not self._polling:
                return
        try:
            self.load_initial()
        except BackendAuthError:
            self.logger.warning("Stopping order polling for department %s: not authorized", self.department_id)
            with self._lock:
                self._stop_polling()
            return
        with self._lock:
            if self._closed or not self._polling:
                return
            self._poll_timer = self._timer_factory(self.poll_interval, self._poll)


class OrderBoard:
    """
    Admin dashboard view over every order.

    Same guard as OrderTracker, applied per order id. Orders first seen in
    a push (newly created ones) are inserted.
    """

    TOPICS = ("orders/pending", "orders/admin")

    def __init__(
        self,
        client: BackendClient,
        realtime=None,
        *,
        owns_client: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.client = client
        self.realtime = realtime
        self.owns_client = owns_client
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._orders: dict[int, TrackedOrder] = {}
        self._load_state = LOAD_IDLE
        self._error: dict | None = None
        self._closed = False
        self._unsubscribers: list = []

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, order_id: int) -> TrackedOrder | None:
        with self._lock:
            return self._orders.get(order_id)

    def load(self) -> list[TrackedOrder]:
        with self._lock:
            if self._closed:
                return []
            self._load_state = LOAD_LOADING
        try:
            payloads = self.client.list_orders()
        except BackendAuthError as exc:
            with self._lock:
                self._load_state = LOAD_ERROR
                self._error = {"message": exc.message, "retryable": False}
            raise
        except BackendError as exc:
            self.logger.warning("Admin order list fetch failed: %s", exc.message)
            with self._lock:
                self._load_state = LOAD_ERROR
                self._error = {"message": exc.message, "retryable": True}
                return list(self._orders.values())

        with self._lock:
            if self._closed:
                return []
            for payload in payloads:
                try:
                    self._apply(TrackedOrder.from_payload(payload), source="rest")
                except LifecycleError as exc:
                    self.logger.warning("Skipping malformed order in admin list: %s", exc)
            self._load_state = LOAD_READY
            self._error = None
            return list(self._orders.values())

    def on_realtime_update(self, message: Any) -> bool:
        try:
            incoming = TrackedOrder.from_payload(message)
        except LifecycleError as exc:
            self.logger.warning("Discarding malformed admin order push: %s", exc)
            return False
        with self._lock:
            if self._closed:
                return False
            return self._apply(incoming, source="push")

    def apply_local(self, payload: Any) -> bool:
        if payload is None:
            return False
        incoming = TrackedOrder.from_payload(payload)
        with self._lock:
            if self._closed:
                return False
            return self._apply(incoming, source="rest")

    def advance(self, order_id: int, status: str) -> bool:
        with self._lock:
            current = self._orders.get(order_id)
            if self._closed or current is None:
                return False
            return self._apply(replace(current, status=status), source="rest")

    def _apply(self, incoming: TrackedOrder, *, source: str) -> bool:
        current = self._orders.get(incoming.order_id)
        if current is None:
            self._orders[incoming.order_id] = incoming
            return True
        merged, changed = reconcile(current, incoming)
        if merged is current and incoming.status != current.status:
            self.logger.info(
                "Discarding stale %s update for order %s: %s -> %s is not reachable",
                source, current.order_id, current.status, incoming.status,
            )
            return False
        self._orders[incoming.order_id] = merged
        return changed

    def counts(self) -> dict:
        with self._lock:
            counts = {status: 0 for status in sorted(order_lifecycle.VALID_STATUSES)}
            for order in self._orders.values():
                counts[order.status] += 1
            return counts

    def snapshot(self) -> dict:
        with self._lock:
            orders = sorted(self._orders.values(), key=lambda o: o.order_id, reverse=True)
            return {
                "state": self._load_state,
                "error": dict(self._error) if self._error else None,
                "orders": [o.to_dict() for o in orders],
                "counts": self.counts(),
                "awaiting_review": sum(1 for o in orders if o.status == order_lifecycle.SUBMITTED),
            }

    def start(self) -> None:
        if self.realtime is None:
            return
        with self._lock:
            if self._closed or self._unsubscribers:
                return
            self._unsubscribers = [
                self.realtime.subscribe(topic, self.on_realtime_update) for topic in self.TOPICS
            ]

    def stop(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        if self.owns_client:
            self.client.close()
