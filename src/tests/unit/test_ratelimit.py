"""Unit tests for the FastAPI rate limiting integration."""

import threading
from unittest.mock import MagicMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from kazwab_admission import controller as controller_module
from kazwab_admission.config import get_settings
from kazwab_admission.controller import AdmissionController
from kazwab_admission.errors import RateLimitExceeded
from kazwab_admission.models import Policy
from kazwab_admission.policies import PolicyScope
from kazwab_admission.ratelimit import (
    admission_middleware,
    rate_limit,
    rate_limit_exceeded_handler,
    resolve_client_key,
)
from kazwab_admission.stores import InMemoryWindowStore

EXPORT_POLICY = Policy(scope="export", window_seconds=60, max_requests=1, message="One export per minute.")


def build_app() -> FastAPI:
    """A stand-in for the CMS routes that consume the admission layer."""
    app = FastAPI()
    app.middleware("http")(admission_middleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.get("/health")
    def health():
        return {"success": True}

    @app.get("/api/news")
    def news():
        return {"success": True, "data": []}

    @app.post("/api/contact", dependencies=[Depends(rate_limit(PolicyScope.CONTACT))])
    def contact():
        return {"success": True}

    @app.get("/api/export", dependencies=[Depends(rate_limit(EXPORT_POLICY))])
    def export():
        return {"success": True}

    return app


@pytest.fixture
def client(installed):
    return TestClient(build_app())


class TestRouteDependency:
    def test_contact_policy_rejects_fourth_submission(self, client):
        for _ in range(3):
            assert client.post("/api/contact").status_code == 200

        response = client.post("/api/contact")

        assert response.status_code == 429
        assert response.json() == {
            "success": False,
            "message": "Too many contact form submissions, please try again later.",
        }
        assert response.headers["retry-after"] == "3600"
        assert response.headers["ratelimit-limit"] == "3"
        assert response.headers["ratelimit-remaining"] == "0"

    def test_route_headers_win_over_general(self, client):
        response = client.post("/api/contact")

        assert response.headers["ratelimit-limit"] == "3"
        assert response.headers["ratelimit-remaining"] == "2"
        assert response.headers["ratelimit-policy"] == "3;w=3600"

    def test_ad_hoc_policy(self, client):
        assert client.get("/api/export").status_code == 200

        response = client.get("/api/export")

        assert response.status_code == 429
        assert response.json()["message"] == "One export per minute."
        assert response.headers["retry-after"] == "60"

    def test_retry_after_counts_down(self, client, clock):
        client.get("/api/export")
        clock.advance(45.5)

        response = client.get("/api/export")

        assert response.headers["retry-after"] == "15"

    def test_window_rollover_admits_again(self, client, clock):
        client.get("/api/export")
        clock.advance(60)

        assert client.get("/api/export").status_code == 200

    def test_unknown_scope_is_server_error(self, installed):
        app = FastAPI()

        @app.get("/broken", dependencies=[Depends(rate_limit("nope"))])
        def broken():
            return {}

        response = TestClient(app, raise_server_exceptions=False).get("/broken")

        assert response.status_code == 500


class TestGeneralMiddleware:
    def test_general_headers_on_plain_route(self, client):
        response = client.get("/api/news")

        assert response.status_code == 200
        assert response.headers["ratelimit-limit"] == "100"
        assert response.headers["ratelimit-remaining"] == "99"
        assert response.headers["ratelimit-reset"] == "900"

    def test_general_policy_rejects(self, client, installed):
        installed.catalog.register(Policy(scope="general", window_seconds=900, max_requests=2))

        client.get("/api/news")
        client.get("/api/news")
        response = client.get("/api/news")

        assert response.status_code == 429
        assert response.json() == {
            "success": False,
            "message": "Too many requests from this IP, please try again later.",
        }
        assert response.headers["retry-after"] == "900"

    def test_general_rejection_short_circuits_route_policy(self, client, installed):
        installed.catalog.register(Policy(scope="general", window_seconds=900, max_requests=1))
        client.get("/api/news")

        client.post("/api/contact")

        assert installed.peek("testclient", installed.catalog.get("contact")) is None

    def test_exempt_path_not_counted(self, client, installed):
        response = client.get("/health")

        assert response.status_code == 200
        assert "ratelimit-limit" not in response.headers
        assert len(installed.store) == 0

    def test_allowlisted_client_has_no_headers(self, store, clock):
        controller_module._controller = AdmissionController(store=store, allowlist=["testclient"], clock=clock)
        client = TestClient(build_app())

        for _ in range(5):
            response = client.post("/api/contact")
            assert response.status_code == 200

        assert "ratelimit-limit" not in response.headers
        assert len(store) == 0


class ThreadRecordingStore(InMemoryWindowStore):
    blocking_io = True

    def __init__(self) -> None:
        super().__init__()
        self.threads: set[int] = set()

    def check_and_increment(self, key, policy, now):
        self.threads.add(threading.get_ident())
        return super().check_and_increment(key, policy, now)


class TestBlockingStores:
    def test_checks_run_off_the_event_loop(self, clock):
        store = ThreadRecordingStore()
        controller_module._controller = AdmissionController(store=store, allowlist=(), clock=clock)
        app = build_app()

        @app.get("/api/loop", dependencies=[Depends(rate_limit(PolicyScope.SEARCH))])
        async def loop_thread():
            return {"thread": threading.get_ident()}

        response = TestClient(app).get("/api/loop")

        assert response.status_code == 200
        assert len(store) == 2
        assert store.threads
        assert response.json()["thread"] not in store.threads


class TestSettingsSwitches:
    def test_disabled(self, client, installed, monkeypatch):
        monkeypatch.setenv("KAZWAB_RATE_LIMIT_ENABLED", "false")
        get_settings.cache_clear()

        for _ in range(5):
            assert client.post("/api/contact").status_code == 200
        assert len(installed.store) == 0

    def test_headers_can_be_disabled(self, client, monkeypatch):
        monkeypatch.setenv("KAZWAB_RATE_LIMIT_INCLUDE_HEADERS", "false")
        get_settings.cache_clear()

        for _ in range(3):
            response = client.post("/api/contact")
            assert "ratelimit-limit" not in response.headers

        rejected = client.post("/api/contact")
        assert rejected.status_code == 429
        assert rejected.headers["retry-after"] == "3600"
        assert "ratelimit-limit" not in rejected.headers


class TestResolveClientKey:
    def _request(self, host="198.51.100.4", forwarded=None):
        request = MagicMock()
        request.client = MagicMock(host=host) if host else None
        request.headers = {"x-forwarded-for": forwarded} if forwarded else {}
        return request

    def test_socket_address(self):
        assert resolve_client_key(self._request()) == "198.51.100.4"

    def test_forwarded_header_ignored_by_default(self):
        request = self._request(forwarded="203.0.113.9")

        assert resolve_client_key(request) == "198.51.100.4"

    def test_forwarded_header_with_trusted_proxy(self, monkeypatch):
        monkeypatch.setenv("KAZWAB_TRUST_PROXY", "true")
        get_settings.cache_clear()

        request = self._request(forwarded="203.0.113.9, 10.0.0.1")

        assert resolve_client_key(request) == "203.0.113.9"

    def test_unknown_client(self):
        assert resolve_client_key(self._request(host=None)) == "unknown"
