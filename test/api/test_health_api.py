"""
API tests for /health and /health/simple.
Tests: response structure, container runtime reachability, LLM config status.
"""

from unittest.mock import patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from datachat.routes.health import router as health_router
from datachat.services.code_execution.sandbox import SandboxExecutor
from datachat.services.session_store import SessionStore
from datachat.services.ws_manager import StatusRegistry


@pytest.fixture
def app(fake_runtime, tmp_path):
    _app = FastAPI()
    _app.include_router(health_router)
    _app.state.executor = SandboxExecutor(runtime=fake_runtime(), results_dir=str(tmp_path))
    _app.state.session_store = SessionStore()
    _app.state.status_registry = StatusRegistry()
    return _app


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


class TestHealthResponseStructure:

    def test_health_response_has_required_keys(self, client):
        body = client.get("/health").json()
        for key in ("container_runtime", "llm", "overall", "sessions", "status_connections"):
            assert key in body

    def test_healthy_when_runtime_and_llm_ok(self, client):
        with patch("datachat.routes.health._llm_status", return_value="ok"):
            r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["overall"] == "healthy"

    def test_degraded_when_llm_unconfigured(self, client):
        with patch("datachat.routes.health._llm_status", return_value="warning"):
            r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["overall"] == "degraded"


class TestContainerRuntime:

    def test_unreachable_runtime_is_503(self, app, client):
        app.state.executor.runtime.ping = lambda: False
        r = client.get("/health")
        assert r.status_code == 503
        assert r.json()["container_runtime"] == "error"
        assert r.json()["overall"] == "unhealthy"

    def test_ping_exception_is_503(self, app, client):
        def _boom():
            raise RuntimeError("socket missing")
        app.state.executor.runtime.ping = _boom
        assert client.get("/health").status_code == 503


def test_simple_health(client):
    r = client.get("/health/simple")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
