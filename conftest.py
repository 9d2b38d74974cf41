"""
Shared pytest fixtures for the orchestration server.

Provides settings tuned for fast tests, the in-memory tunnel provider, a
worker command builder that launches plain shell commands, and a fully
wired ``OrchestratorContext``.
"""

import logging

import pytest
import pytest_asyncio

from config import ServerSettings
from orchestrator.context import OrchestratorContext
from orchestrator.tests.fakes import FakeTunnelProvider, ShellCommandBuilder

# Configure pytest-asyncio
pytest_plugins = ["pytest_asyncio"]

logger = logging.getLogger(__name__)


def pytest_configure(config):
    """Add custom markers for tests"""
    config.addinivalue_line("markers", "asyncio: mark test as an asyncio test")

    # Set asyncio mode to auto to avoid warnings
    config.option.asyncio_mode = "auto"


@pytest.fixture
def settings() -> ServerSettings:
    return ServerSettings(
        port=5555,
        stop_grace_seconds=0.5,
        port_release_delay_seconds=0.0,
        kill_wait_timeout_seconds=2.0,
        execution_retention_minutes=60,
        webhook_request_timeout_seconds=5.0,
        webhook_keepalive_timeout_seconds=5.0,
        forward_timeout_seconds=2.0,
        proxy_timeout_seconds=2.0,
    )


@pytest.fixture
def tunnel_provider() -> FakeTunnelProvider:
    return FakeTunnelProvider()


@pytest.fixture
def command_builder() -> ShellCommandBuilder:
    return ShellCommandBuilder()


@pytest_asyncio.fixture
async def context(settings, tunnel_provider, command_builder):
    ctx = OrchestratorContext.create(
        settings, tunnel_provider=tunnel_provider, command_builder=command_builder
    )
    yield ctx
    await ctx.shutdown()
