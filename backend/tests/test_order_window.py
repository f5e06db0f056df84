import pytest

from stationery.services.order_window_service import OrderWindow, OrderWindowClosed
from stationery.services.api_client import BackendUnavailableError


@pytest.fixture
def window(realtime):
    window = OrderWindow(realtime)
    yield window
    window.stop()


class TestOrderWindow:

    def test_unknown_state_counts_as_closed(self, window):
        assert window.is_open is None
        assert window.can_create_order() is False
        with pytest.raises(OrderWindowClosed):
            window.require_open()

    def test_refresh_reads_the_backend(self, window, backend, backend_client):
        backend.set("GET", "/orders/order-window/status", (200, {"open": True}))

        assert window.refresh(backend_client) is True
        assert window.can_create_order() is True

    def test_failed_refresh_resets_to_unknown(self, window, backend, backend_client):
        backend.set("GET", "/orders/order-window/status", (200, {"open": True}), (503, {"message": "down"}))
        window.refresh(backend_client)

        with pytest.raises(BackendUnavailableError):
            window.refresh(backend_client)

        assert window.is_open is None
        assert window.can_create_order() is False

    def test_close_push_blocks_new_orders_immediately(self, window, broker, backend, backend_client):
        backend.set("GET", "/orders/order-window/status", (200, {"open": True}))
        window.refresh(backend_client)
        window.start()
        broker.current.connect()

        broker.current.publish("order-window", {"open": False})

        assert window.can_create_order() is False
        assert window.snapshot()["open"] is False

    def test_malformed_push_is_ignored(self, window):
        window.on_push({"open": True})

        assert window.on_push({"open": "no"}) is False
        assert window.on_push(None) is False
        assert window.is_open is True

    def test_toggle_applies_the_backend_result(self, window, backend, backend_client):
        backend.set("POST", "/orders/order-window/toggle", (200, {"open": True}))

        assert window.toggle(backend_client) is True
        assert window.snapshot()["can_create_order"] is True


class TestStaleness:

    def test_connection_drop_resets_to_unknown(self, window, broker):
        window.start()
        broker.current.connect()
        broker.current.publish("order-window", {"open": True})
        assert window.needs_refresh() is False

        broker.current.drop()

        assert window.is_open is None
        assert window.can_create_order() is False
        assert window.needs_refresh() is True

    def test_reconnect_resets_to_unknown(self, window, broker, timers, backend, backend_client):
        backend.set("GET", "/orders/order-window/status", (200, {"open": True}))
        window.start()
        broker.current.connect()
        broker.current.drop()
        window.refresh(backend_client)

        timers.fire_all()
        broker.current.connect()

        assert window.is_open is None

    def test_rest_state_expires_while_offline(self, backend, backend_client):
        now = [100.0]
        window = OrderWindow(None, max_age=30, clock=lambda: now[0])
        backend.set("GET", "/orders/order-window/status", (200, {"open": True}))
        window.refresh(backend_client)

        now[0] = 129.0
        assert window.needs_refresh() is False
        now[0] = 130.0
        assert window.needs_refresh() is True

    def test_pushed_state_does_not_expire_while_connected(self, realtime, broker):
        now = [0.0]
        window = OrderWindow(realtime, max_age=30, clock=lambda: now[0])
        window.start()
        broker.current.connect()
        broker.current.publish("order-window", {"open": False})

        now[0] = 3600.0

        assert window.needs_refresh() is False
        window.stop()

    def test_stop_removes_the_connection_listener(self, window, broker):
        window.start()
        broker.current.connect()
        broker.current.publish("order-window", {"open": True})
        window.stop()

        broker.current.drop()

        assert window.is_open is True
