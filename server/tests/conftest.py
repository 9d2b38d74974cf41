"""
Pytest fixtures for server testing.

Builds the Starlette application around an orchestrator context that uses
the in-memory tunnel provider and shell-command worker from the root
conftest, and exposes it through Starlette's ``TestClient``.
"""

import pytest
from starlette.testclient import TestClient

from orchestrator.tests.fakes import FakeTunnelProvider, ShellCommandBuilder
from orchestrator.context import OrchestratorContext
from server.main import create_app


@pytest.fixture
def app_context(settings):
    return OrchestratorContext.create(
        settings,
        tunnel_provider=FakeTunnelProvider(),
        command_builder=ShellCommandBuilder(),
    )


@pytest.fixture
def client(app_context):
    app = create_app(context=app_context, startup_checks=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def ui_session(client):
    """A websocket already registered as a UI session"""
    with client.websocket_connect("/ws") as websocket:
        websocket.send_json({"type": "register-ui"})
        registered = websocket.receive_json()
        assert registered["type"] == "registered"
        log_level = websocket.receive_json()
        assert log_level["type"] == "log-level-config"
        yield websocket
