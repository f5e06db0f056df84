import httpx
import pytest

from stationery.services.api_client import BackendAuthError
from stationery.services.order_tracker import (
    LOAD_ERROR,
    LOAD_READY,
    OrderBoard,
    OrderTracker,
    TrackedOrder,
    reconcile,
)
from stationery.services.order_lifecycle import LifecycleError, ordinal


def order_payload(order_id=11, status="PENDING", **extra):
    payload = {
        "id": order_id,
        "status": status,
        "departmentId": 7,
        "createdAt": f"2026-10-{order_id:02d}T09:00:00",
    }
    payload.update(extra)
    return payload


def push(order_id=11, status="EXPORTED"):
    return {"orderId": order_id, "status": status, "departmentId": 7, "department": "IT"}


@pytest.fixture
def tracker(backend_client, realtime, timers):
    tracker = OrderTracker(
        backend_client,
        realtime,
        department_id=7,
        poll_interval=30,
        timer_factory=timers,
    )
    yield tracker
    tracker.stop()


class TestLoadInitial:

    def test_no_current_order_is_ready_not_error(self, tracker, backend):
        backend.set("GET", "/orders/latest", (200, None))

        assert tracker.load_initial() is None

        snapshot = tracker.snapshot()
        assert snapshot["state"] == LOAD_READY
        assert snapshot["order"] is None
        assert snapshot["error"] is None
        assert snapshot["actions"]["can_export"] is False

    def test_latest_order_is_tracked(self, tracker, backend):
        backend.set("GET", "/orders/latest", (200, {"success": True, "message": "", "data": order_payload()}))

        order = tracker.load_initial()

        assert order.order_id == 11
        assert tracker.status == "pending"
        snapshot = tracker.snapshot()
        assert snapshot["status"]["progress"] == 25
        assert snapshot["actions"]["can_export"] is True

    def test_backend_unavailable_is_retryable_and_keeps_the_order(self, tracker, backend):
        backend.set(
            "GET", "/orders/latest",
            (200, order_payload(status="EXPORTED")),
            (503, {"message": "down"}),
        )
        tracker.load_initial()

        tracker.load_initial()

        snapshot = tracker.snapshot()
        assert snapshot["state"] == LOAD_ERROR
        assert snapshot["error"] == {"message": "down", "retryable": True}
        assert tracker.status == "exported"

    def test_transport_failure_is_retryable(self, tracker, backend):
        backend.set("GET", "/orders/latest", httpx.ConnectError("refused"))

        assert tracker.load_initial() is None

        assert tracker.snapshot()["error"]["retryable"] is True
        assert len(backend.calls("GET", "/orders/latest")) == 3

    def test_auth_failure_propagates(self, tracker, backend):
        backend.set("GET", "/orders/latest", (401, {"message": "Token expired"}))

        with pytest.raises(BackendAuthError):
            tracker.load_initial()

        assert tracker.snapshot()["error"] == {"message": "Token expired", "retryable": False}

    def test_late_rest_result_cannot_regress_status(self, tracker, backend):
        backend.set("GET", "/orders/latest", (200, order_payload()))
        tracker.load_initial()
        tracker.on_realtime_update(push(status="SUBMITTED"))

        backend.set("GET", "/orders/latest", (200, order_payload(status="EXPORTED")))
        tracker.load_initial()

        assert tracker.status == "submitted"

    def test_newer_order_replaces_tracked_order(self, tracker, backend):
        backend.set("GET", "/orders/latest", (200, order_payload(11, "APPROVED")))
        tracker.load_initial()

        backend.set("GET", "/orders/latest", (200, order_payload(12, "PENDING")))
        tracker.load_initial()

        assert tracker.order.order_id == 12
        assert tracker.status == "pending"

    def test_older_order_is_ignored(self, tracker, backend):
        backend.set("GET", "/orders/latest", (200, order_payload(12, "PENDING")))
        tracker.load_initial()

        backend.set("GET", "/orders/latest", (200, order_payload(11, "SUBMITTED")))
        tracker.load_initial()

        assert tracker.order.order_id == 12

    def test_result_arriving_after_stop_is_ignored(self, backend_client, backend, timers):
        tracker = OrderTracker(backend_client, None, department_id=7, owns_client=False, timer_factory=timers)

        def stop_then_answer(request):
            tracker.stop()
            return 200, order_payload()

        backend.set("GET", "/orders/latest", stop_then_answer)

        tracker.load_initial()

        assert tracker.order is None
        assert tracker.closed


class TestRealtimeUpdates:

    @pytest.fixture(autouse=True)
    def tracked(self, tracker, backend):
        backend.set("GET", "/orders/latest", (200, order_payload()))
        tracker.load_initial()

    def test_forward_push_is_applied(self, tracker):
        assert tracker.on_realtime_update(push(status="EXPORTED")) is True
        assert tracker.status == "exported"
        assert tracker.snapshot()["actions"]["can_upload_signed"] is True

    def test_reordered_pushes_end_at_the_terminal_status(self, tracker):
        assert tracker.on_realtime_update(push(status="APPROVED")) is True
        assert tracker.on_realtime_update(push(status="EXPORTED")) is False
        assert tracker.on_realtime_update(push(status="SUBMITTED")) is False

        assert tracker.status == "approved"
        assert tracker.snapshot()["actions"]["is_terminal"] is True

    def test_terminal_status_never_changes(self, tracker):
        tracker.on_realtime_update(push(status="SUBMITTED"))
        tracker.on_realtime_update(push(status="REJECTED"))

        assert tracker.on_realtime_update(push(status="APPROVED")) is False
        assert tracker.status == "rejected"

    def test_duplicate_push_is_a_no_op(self, tracker):
        tracker.on_realtime_update(push(status="EXPORTED"))

        assert tracker.on_realtime_update(push(status="EXPORTED")) is False
        assert tracker.status == "exported"

    def test_push_for_another_order_is_ignored(self, tracker):
        assert tracker.on_realtime_update(push(order_id=99, status="APPROVED")) is False
        assert tracker.status == "pending"

    @pytest.mark.parametrize("message", [
        {"orderId": 11, "status": "SHIPPED"},
        {"orderId": 11},
        {"status": "EXPORTED"},
        "EXPORTED",
        None,
    ])
    def test_malformed_push_is_discarded(self, tracker, message):
        assert tracker.on_realtime_update(message) is False
        assert tracker.status == "pending"

    def test_pushes_arrive_through_the_department_topic(self, tracker, broker):
        tracker.start()
        broker.current.connect()

        broker.current.publish("orders/7", push(status="EXPORTED"))
        broker.current.publish("orders/8", push(status="SUBMITTED"))

        assert tracker.status == "exported"

    def test_status_ordinal_never_decreases(self, tracker):
        seen = []
        for status in ("SUBMITTED", "PENDING", "EXPORTED", "REJECTED", "SUBMITTED", "APPROVED"):
            tracker.on_realtime_update(push(status=status))
            seen.append(ordinal(tracker.status))

        assert seen == sorted(seen)
        assert tracker.status == "rejected"


class TestLocalActions:

    def test_adopt_starts_tracking_a_new_order(self, tracker, backend):
        backend.set("GET", "/orders/latest", (200, order_payload(11, "APPROVED")))
        tracker.load_initial()

        tracker.adopt(order_payload(12, "PENDING"))

        assert tracker.order.order_id == 12
        assert tracker.status == "pending"

    def test_apply_local_goes_through_the_guard(self, tracker):
        tracker.adopt(order_payload())
        tracker.on_realtime_update(push(status="SUBMITTED"))

        assert tracker.apply_local(order_payload(status="EXPORTED")) is False
        assert tracker.status == "submitted"

    def test_advance_moves_forward_only(self, tracker):
        tracker.adopt(order_payload())

        assert tracker.advance("exported") is True
        assert tracker.advance("pending") is False
        assert tracker.status == "exported"


class TestPollingFallback:

    def test_polls_while_realtime_is_down(self, tracker, backend, timers):
        backend.set("GET", "/orders/latest", (200, order_payload(status="EXPORTED")))

        tracker.start()

        assert tracker.polling
        assert [t.delay for t in timers.pending] == [30]
        timers.fire_all()
        assert tracker.status == "exported"
        assert [t.delay for t in timers.pending] == [30]

    def test_polling_stops_when_connection_returns(self, tracker, backend, broker, timers):
        backend.set("GET", "/orders/latest", (200, order_payload(status="SUBMITTED")))
        tracker.start()
        poll_timer = timers.pending[0]

        broker.current.connect()

        assert not tracker.polling
        assert poll_timer.cancelled
        # one catch-up fetch for what was missed while disconnected
        assert [t.delay for t in timers.pending] == [0]
        timers.fire_all()
        assert tracker.status == "submitted"
        assert timers.pending == []

    def test_polling_resumes_after_a_drop(self, tracker, broker, timers):
        tracker.start()
        broker.current.connect()
        timers.fire_all()

        broker.current.drop()

        assert tracker.polling
        assert 30 in [t.delay for t in timers.pending]

    def test_without_realtime_the_tracker_only_polls(self, backend_client, backend, timers):
        backend.set("GET", "/orders/latest", (200, order_payload()))
        tracker = OrderTracker(backend_client, None, department_id=7, poll_interval=10, timer_factory=timers)

        tracker.start()
        timers.fire_all()

        assert tracker.status == "pending"
        assert tracker.polling
        tracker.stop()
        assert not tracker.polling
        assert timers.pending == []

    def test_auth_failure_stops_polling(self, tracker, backend, timers):
        backend.set("GET", "/orders/latest", (403, {"message": "Forbidden"}))
        tracker.start()

        timers.fire_all()

        assert not tracker.polling
        assert timers.pending == []

    def test_stop_unsubscribes_and_ignores_pushes(self, tracker, realtime, broker):
        tracker.adopt(order_payload())
        tracker.start()
        broker.current.connect()

        tracker.stop()
        broker.current.publish("orders/7", push(status="EXPORTED"))

        assert realtime.handler_count("orders/7") == 0
        assert tracker.status == "pending"
        assert tracker.on_realtime_update(push(status="EXPORTED")) is False


class TestReconcile:

    def test_same_status_refreshes_comment(self):
        current = TrackedOrder(order_id=1, status="rejected")
        merged, changed = reconcile(current, TrackedOrder(order_id=1, status="rejected", admin_comment="Too many pens"))

        assert changed
        assert merged.admin_comment == "Too many pens"

    def test_different_orders_cannot_be_reconciled(self):
        with pytest.raises(LifecycleError):
            reconcile(TrackedOrder(order_id=1, status="pending"), TrackedOrder(order_id=2, status="pending"))

    def test_order_lines_are_normalized(self):
        order = TrackedOrder.from_payload(order_payload(items=[
            {"productId": 3, "productName": "Stapler", "quantity": 2, "unitNameEn": "piece"},
            {"productId": 4, "quantity": 0},
            {"productName": "no id", "quantity": 1},
        ]))

        assert order.items == [{"product_id": 3, "name": "Stapler", "quantity": 2, "unit": "piece"}]

    def test_jackson_array_timestamps_are_parsed(self):
        order = TrackedOrder.from_payload(order_payload(createdAt=[2026, 10, 1, 9, 30, 0]))

        assert order.to_dict()["created_at"] == "2026-10-01T09:30:00Z"


class TestOrderBoard:

    @pytest.fixture
    def board(self, backend_client, realtime):
        board = OrderBoard(backend_client, realtime)
        yield board
        board.stop()

    def test_load_and_counts(self, board, backend):
        backend.set("GET", "/orders", (200, {"content": [
            order_payload(11, "SUBMITTED"),
            order_payload(12, "PENDING"),
            order_payload(13, "SUBMITTED"),
        ]}))

        board.load()

        snapshot = board.snapshot()
        assert [o["order_id"] for o in snapshot["orders"]] == [13, 12, 11]
        assert snapshot["awaiting_review"] == 2
        assert snapshot["counts"]["pending"] == 1

    def test_push_inserts_new_orders_and_guards_known_ones(self, board, broker):
        board.start()
        broker.current.connect()

        broker.current.publish("orders/pending", push(order_id=20, status="PENDING"))
        broker.current.publish("orders/admin", push(order_id=20, status="SUBMITTED"))
        broker.current.publish("orders/pending", push(order_id=20, status="EXPORTED"))

        assert board.get(20).status == "submitted"
        assert broker.current.subscriptions() == ["/topic/orders/admin", "/topic/orders/pending"]

    def test_admin_comment_is_merged(self, board):
        board.apply_local(order_payload(11, "SUBMITTED"))

        board.on_realtime_update({**push(11, "REJECTED"), "adminComment": "Budget exceeded"})

        assert board.get(11).status == "rejected"
        assert board.get(11).admin_comment == "Budget exceeded"

    def test_advance_after_review(self, board):
        board.apply_local(order_payload(11, "SUBMITTED"))

        assert board.advance(11, "approved") is True
        assert board.advance(11, "rejected") is False
        assert board.snapshot()["awaiting_review"] == 0
