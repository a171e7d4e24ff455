"""Tests for the per-client session registry."""
import pytest

from geolayers.api.services.sessions import SessionRegistry

from conftest import SAMPLE_CSV


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.mark.unit
class TestSessionRegistry:

    def test_same_id_returns_same_session(self):
        registry = SessionRegistry(max_sessions=5, idle_ttl=60)
        assert registry.get_or_create("a") is registry.get_or_create("a")
        assert len(registry) == 1

    def test_least_recently_used_is_evicted_when_full(self, clock):
        registry = SessionRegistry(max_sessions=2, idle_ttl=0, clock=clock)
        first = registry.get_or_create("a")
        first.import_file("pontos.csv", SAMPLE_CSV.encode())
        registry.get_or_create("b")

        registry.get_or_create("c")

        assert len(registry) == 2
        assert registry.get("a") is None
        assert registry.get("b") is not None
        # Closed sessions drop their layers
        assert first.store.snapshot() == ()

    def test_recent_use_protects_a_session(self, clock):
        registry = SessionRegistry(max_sessions=2, idle_ttl=0, clock=clock)
        registry.get_or_create("a")
        registry.get_or_create("b")

        registry.get_or_create("a")
        registry.get_or_create("c")

        assert registry.get("a") is not None
        assert registry.get("b") is None

    def test_idle_sessions_expire(self, clock):
        registry = SessionRegistry(max_sessions=10, idle_ttl=60, clock=clock)
        old = registry.get_or_create("a")
        clock.now += 30
        registry.get_or_create("b")

        clock.now += 45
        registry.get_or_create("c")

        assert registry.get("a") is None
        assert registry.get("b") is not None
        assert len(registry) == 2

        clock.now += 100
        assert registry.get_or_create("a") is not old

    def test_many_ids_stay_bounded(self, clock):
        registry = SessionRegistry(max_sessions=10, idle_ttl=3600, clock=clock)

        for index in range(50):
            registry.get_or_create(f"client-{index}")

        assert len(registry) == 10
        assert registry.get("client-49") is not None
        assert registry.get("client-39") is None

    def test_close_and_clear(self):
        registry = SessionRegistry(max_sessions=5, idle_ttl=60)
        registry.get_or_create("a")
        registry.get_or_create("b")

        assert registry.close("a") is True
        assert registry.close("a") is False
        registry.clear()

        assert len(registry) == 0
