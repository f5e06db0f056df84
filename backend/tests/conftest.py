"""
Pytest fixtures for the stationery portal tests.

Provides an in-memory SQLite app, a fake stationery backend served through
httpx.MockTransport, a fake STOMP broker standing in for the WebSocket
transport, and manually fired timers so reconnects and polling are
deterministic.
"""

import json

import httpx
import pytest

from stationery import create_app, stomp
from stationery.extensions import db, REALTIME, SESSIONS, STORAGE
from stationery.services.api_client import BackendClient
from stationery.services.realtime_service import RealtimeManager


BACKEND_URL = "http://backend.test/api"
REALTIME_URL = "ws://backend.test/ws"


class FakeBackend:
    """Canned responses keyed by (method, path); unknown routes return 404."""

    def __init__(self):
        self.responses = {}
        self.requests = []
        self.transport = httpx.MockTransport(self.handle)

    def set(self, method, path, *responses):
        """
        Each response is (status, json_body), raw bytes, an exception
        instance to raise, or a callable taking the request and returning
        one of those. Several responses are served in order; the last one
        repeats.
        """
        self.responses[(method, "/api" + path)] = list(responses)

    def handle(self, request):
        self.requests.append(request)
        queue = self.responses.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"message": f"No route {request.url.path}"})
        spec = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(spec):
            spec = spec(request)
        if isinstance(spec, Exception):
            raise spec
        if isinstance(spec, bytes):
            return httpx.Response(200, content=spec)
        status, body = spec
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == "/api" + path]


class FakeTransport:
    """Records the STOMP frames the manager sends and plays the server side."""

    def __init__(self, url, on_open, on_text, on_close):
        self.url = url
        self.on_open = on_open
        self.on_text = on_text
        self.on_close = on_close
        self.started = False
        self.closed = False
        self.sent = []

    def start(self):
        self.started = True

    def send(self, text):
        self.sent.extend(stomp.decode(text))

    def close(self):
        self.closed = True

    def connect(self):
        self.on_open()
        self.on_text(stomp.encode(stomp.Frame("CONNECTED", {"version": "1.2"})))

    def publish(self, topic, payload):
        body = payload if isinstance(payload, str) else json.dumps(payload)
        frame = stomp.Frame("MESSAGE", {
            "destination": f"/topic/{topic}",
            "subscription": "sub-0",
            "message-id": "m-1",
            "content-type": "application/json",
        }, body)
        self.on_text(stomp.encode(frame))

    def drop(self, reason="1006 abnormal closure"):
        self.on_close(reason)

    def frames(self, command):
        return [f for f in self.sent if f.command == command]

    def subscriptions(self):
        """Destinations currently subscribed on this transport."""
        active = {}
        for frame in self.sent:
            if frame.command == "SUBSCRIBE":
                active[frame.headers["id"]] = frame.headers["destination"]
            elif frame.command == "UNSUBSCRIBE":
                active.pop(frame.headers["id"], None)
        return sorted(active.values())


class FakeBroker:
    """Transport factory handed to RealtimeManager; keeps every transport it made."""

    def __init__(self):
        self.transports = []

    def __call__(self, url, *, on_open, on_text, on_close):
        transport = FakeTransport(url, on_open, on_text, on_close)
        self.transports.append(transport)
        return transport

    @property
    def current(self):
        return self.transports[-1]


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTimers:
    """Timer factory whose timers only fire when the test says so."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def fire_all(self):
        timers, self.timers = self.pending, []
        for timer in timers:
            timer.callback()
        return len(timers)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def backend_client(backend):
    client = BackendClient(BACKEND_URL, token="token-1", transport=backend.transport, backoff_base=0)
    yield client
    client.close()


@pytest.fixture
def realtime(broker, timers):
    manager = RealtimeManager(REALTIME_URL, transport_factory=broker, timer_factory=timers, reconnect_delay=5)
    yield manager
    manager.close()


@pytest.fixture(scope='function')
def app(backend, broker, timers):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BACKEND_API_URL': BACKEND_URL,
        'BACKEND_TRANSPORT': backend.transport,
        'BACKEND_RETRY_BACKOFF': 0,
        'REALTIME_URL': REALTIME_URL,
        'REALTIME_TRANSPORT_FACTORY': broker,
        'TIMER_FACTORY': timers,
    })

    with app.app_context():
        db.create_all()
        yield app
        app.extensions["stationery.shutdown"]()
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def storage(app):
    return app.extensions[STORAGE]


@pytest.fixture
def sessions(app):
    return app.extensions[SESSIONS]


@pytest.fixture
def app_realtime(app):
    return app.extensions[REALTIME]


@pytest.fixture
def viewer_headers():
    return {"X-Client-Id": "client-1", "Authorization": "Bearer token-1"}


@pytest.fixture
def department_user(backend):
    user = {"id": 5, "username": "dept7", "departmentId": 7, "departmentName": "IT", "roleName": "USER"}
    backend.set("GET", "/users/me", (200, user))
    return user


@pytest.fixture
def admin_user(backend):
    user = {"id": 1, "username": "admin", "departmentId": 1, "departmentName": "Admin", "roleName": "ADMIN"}
    backend.set("GET", "/users/me", (200, user))
    return user
