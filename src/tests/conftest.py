"""Pytest configuration and fixtures."""

import fakeredis
import pytest

from kazwab_admission import controller as controller_module
from kazwab_admission.config import get_settings
from kazwab_admission.controller import AdmissionController
from kazwab_admission.models import Policy
from kazwab_admission.policies import PolicyCatalog
from kazwab_admission.stores import InMemoryWindowStore, RedisWindowStore


class FakeClock:
    """Manually advanced clock for deterministic window tests."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def fresh_state(monkeypatch):
    """Isolate settings and the controller singleton between tests."""
    monkeypatch.setenv("KAZWAB_ADMIN_TOKEN", "test-admin-token")
    get_settings.cache_clear()
    controller_module._controller = None
    yield
    controller_module._controller = None
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryWindowStore()


@pytest.fixture
def controller(store, clock):
    """Controller with an empty allowlist and a fake clock."""
    return AdmissionController(store=store, catalog=PolicyCatalog(), allowlist=(), clock=clock)


@pytest.fixture
def auth_policy():
    """The 15 minute / 5 request authentication policy."""
    return PolicyCatalog().get("auth")


@pytest.fixture
def small_policy():
    return Policy(scope="test", window_seconds=60, max_requests=3, message="Slow down.")


@pytest.fixture
def installed(controller):
    """Install the fake-clock controller as the process controller."""
    controller_module._controller = controller
    return controller


@pytest.fixture
def fake_redis():
    """Create a fake Redis client that runs the Lua scripts."""
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_store(fake_redis):
    store = RedisWindowStore(fake_redis, key_prefix="test:rl")
    store.open()
    return store
