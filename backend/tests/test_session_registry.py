import pytest

from stationery.services.session_registry import SessionRegistry, SessionTokenMismatch, is_admin


DEPARTMENT_USER = {"id": 5, "departmentId": 7, "roleName": "USER"}
OTHER_DEPARTMENT_USER = {"id": 6, "departmentId": 8, "roleName": "USER"}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(realtime, timers, clock):
    registry = SessionRegistry(realtime, idle_ttl=600, sweep_interval=60, timer_factory=timers, clock=clock)
    yield registry
    registry.close_all()


def sweep_timers(timers, registry):
    return [t for t in timers.pending if t.callback == registry._sweep_tick]


def fire_sweep(timers, registry):
    pending = sweep_timers(timers, registry)
    assert len(pending) == 1
    timers.timers.remove(pending[0])
    pending[0].callback()


class TestOwnership:

    def test_matching_token_returns_the_session(self, registry, backend_client):
        session = registry.open("client-1", DEPARTMENT_USER, backend_client)

        assert registry.get("client-1", token="token-1") is session
        assert session.owned_by("token-1")

    def test_other_token_is_refused(self, registry, backend_client):
        session = registry.open("client-1", DEPARTMENT_USER, backend_client)

        with pytest.raises(SessionTokenMismatch):
            registry.get("client-1", token="token-2")
        assert not session.owned_by("")
        assert not session.owned_by(None)

    def test_session_keeps_only_a_token_digest(self, registry, backend_client):
        session = registry.open("client-1", DEPARTMENT_USER, backend_client)

        assert "token-1" not in session.token_hash
        assert len(session.token_hash) == 64

    def test_unknown_client(self, registry):
        assert registry.get("client-9", token="token-1") is None


class TestIdleSweep:

    def test_opening_schedules_one_sweep(self, registry, backend_client, timers):
        registry.open("client-1", DEPARTMENT_USER, backend_client)
        registry.open("client-2", OTHER_DEPARTMENT_USER, backend_client)

        assert [t.delay for t in sweep_timers(timers, registry)] == [60]

    def test_idle_sessions_are_closed(self, registry, backend_client, timers, clock, realtime):
        idle = registry.open("client-1", DEPARTMENT_USER, backend_client)
        registry.open("client-2", OTHER_DEPARTMENT_USER, backend_client)

        clock.now = 1400.0
        registry.get("client-2", token="token-1")
        clock.now = 1600.0
        fire_sweep(timers, registry)

        assert registry.get("client-1") is None
        assert registry.get("client-2") is not None
        assert idle.tracker.closed
        assert realtime.handler_count("orders/7") == 0
        assert realtime.handler_count("orders/8") == 1
        assert len(sweep_timers(timers, registry)) == 1

    def test_lookups_without_a_token_do_not_keep_a_session_alive(self, registry, backend_client, timers, clock):
        registry.open("client-1", DEPARTMENT_USER, backend_client)

        clock.now = 1599.0
        registry.get("client-1")
        clock.now = 1600.0
        fire_sweep(timers, registry)

        assert len(registry) == 0

    def test_sweeping_stops_once_no_session_is_left(self, registry, backend_client, timers, clock):
        registry.open("client-1", DEPARTMENT_USER, backend_client)

        clock.now = 2000.0
        fire_sweep(timers, registry)

        assert len(registry) == 0
        assert sweep_timers(timers, registry) == []

    def test_close_all_cancels_the_sweep(self, registry, backend_client, timers):
        registry.open("client-1", DEPARTMENT_USER, backend_client)

        assert registry.close_all() == 1

        assert sweep_timers(timers, registry) == []

    def test_no_sweep_without_a_ttl(self, realtime, timers, backend_client):
        registry = SessionRegistry(realtime, idle_ttl=None, timer_factory=timers)
        registry.open("client-1", DEPARTMENT_USER, backend_client)

        assert sweep_timers(timers, registry) == []
        assert registry.sweep() == 0
        registry.close_all()


class TestRoles:

    @pytest.mark.parametrize("user,expected", [
        ({"roleName": "ADMIN"}, True),
        ({"role": "ROLE_ADMIN"}, True),
        ({"roleName": "USER"}, False),
        (None, False),
    ])
    def test_is_admin(self, user, expected):
        assert is_admin(user) is expected

    def test_admins_get_a_board(self, registry, backend_client, realtime):
        session = registry.open("client-1", {"id": 1, "departmentId": 1, "roleName": "ADMIN"}, backend_client)

        assert session.board is not None
        assert realtime.handler_count("orders/pending") == 1
