"""Tunnel route lifecycle tests with a fake provider and real listeners."""

import aiohttp
import pytest
import pytest_asyncio

from orchestrator.tests.fakes import FakeTunnelProvider, UnclosableTunnel, find_free_port
from orchestrator.errors import ProviderTokenMissingError, TunnelError, TunnelNotFoundError
from orchestrator.tunnels import TunnelManager
from orchestrator.webhook_listener import WebhookListener


class Recorder:
    def __init__(self):
        self.notifications = []

    async def __call__(self, message):
        self.notifications.append(message)


def make_manager(provider) -> TunnelManager:
    manager = TunnelManager(provider, notify=Recorder(), forward_timeout=2.0)
    manager.listener_factory = lambda port: WebhookListener(
        port,
        forward_lookup=manager.forward_target,
        notify=manager.notify,
        host="127.0.0.1",
        forward_timeout=2.0,
    )
    return manager


@pytest_asyncio.fixture
async def manager():
    manager = make_manager(FakeTunnelProvider())
    yield manager
    await manager.close_all()


class TestTunnelManager:
    @pytest.mark.asyncio
    async def test_create_records_tunnel_and_listener(self, manager):
        port = find_free_port()
        route = await manager.create_tunnel(port, "token-1234", forward_to=9000)

        assert route.public_url == f"https://tunnel-{port}.example.test"
        assert route.tunnel_id == f"tn_{port}"
        assert route.forward_to == 9000
        assert route.listener.is_running
        assert manager.state() == [
            {
                "port": port,
                "publicUrl": f"https://tunnel-{port}.example.test",
                "tunnelId": f"tn_{port}",
                "forwardTo": 9000,
            }
        ]

    @pytest.mark.asyncio
    async def test_create_then_delete_leaves_nothing(self, manager):
        port = find_free_port()
        route = await manager.create_tunnel(port, "token")
        tunnel, listener = route.tunnel, route.listener

        await manager.delete_tunnel(port)

        assert tunnel.closed is True
        assert listener.is_running is False
        assert manager.get(port) is None
        assert manager.forward_target(port) is None
        assert manager.state() == []

        # The port is free again
        probe = WebhookListener(port, forward_lookup=lambda p: None, notify=Recorder(), host="127.0.0.1")
        await probe.start()
        await probe.close()

    @pytest.mark.asyncio
    async def test_create_existing_tunnel_returns_it(self, manager):
        port = find_free_port()
        first = await manager.create_tunnel(port, "token")
        second = await manager.create_tunnel(port, "token", forward_to=1234)

        assert second is first
        assert len(manager.provider.opened) == 1

    @pytest.mark.asyncio
    async def test_missing_token(self, manager):
        port = find_free_port()
        with pytest.raises(ProviderTokenMissingError):
            await manager.create_tunnel(port, "")
        assert manager.get(port) is None

    @pytest.mark.asyncio
    async def test_provider_failure_tears_down_new_listener(self):
        manager = make_manager(FakeTunnelProvider(error=RuntimeError("auth failed")))
        port = find_free_port()

        with pytest.raises(TunnelError, match="auth failed"):
            await manager.create_tunnel(port, "token", forward_to=9000)

        assert manager.get(port) is None
        assert manager.state() == []

    @pytest.mark.asyncio
    async def test_provider_failure_preserves_existing_listener(self):
        manager = make_manager(FakeTunnelProvider(error=RuntimeError("auth failed")))
        port = find_free_port()
        assert await manager.ensure_listener(port) is True
        listener = manager.get(port).listener

        try:
            with pytest.raises(TunnelError):
                await manager.create_tunnel(port, "token", forward_to=9000)

            route = manager.get(port)
            assert route is not None
            assert route.listener is listener
            assert listener.is_running
            assert route.forward_to is None
            assert route.tunnel is None
        finally:
            await manager.close_all()

    @pytest.mark.asyncio
    async def test_ensure_listener_reuses_running_listener(self, manager):
        port = find_free_port()
        assert await manager.ensure_listener(port) is True
        listener = manager.get(port).listener

        assert await manager.ensure_listener(port) is False
        assert manager.get(port).listener is listener

    @pytest.mark.asyncio
    async def test_ensure_listener_bind_failure_forgets_route(self, manager):
        port = find_free_port()
        blocker = WebhookListener(port, forward_lookup=lambda p: None, notify=Recorder(), host="127.0.0.1")
        await blocker.start()
        try:
            with pytest.raises(OSError):
                await manager.ensure_listener(port)
            assert manager.get(port) is None
        finally:
            await blocker.close()

    @pytest.mark.asyncio
    async def test_update_forwarding_without_tunnel_is_rejected(self, manager):
        port = find_free_port()
        with pytest.raises(TunnelNotFoundError):
            manager.update_forwarding(port, 9000)
        assert manager.routes == {}

    @pytest.mark.asyncio
    async def test_update_forwarding_keeps_listener_and_tunnel(self, manager):
        port = find_free_port()
        route = await manager.create_tunnel(port, "token")
        listener, tunnel = route.listener, route.tunnel

        manager.update_forwarding(port, 9100)
        assert manager.forward_target(port) == 9100
        manager.update_forwarding(port, None)
        assert manager.forward_target(port) is None

        assert route.listener is listener
        assert route.tunnel is tunnel
        assert len(manager.provider.opened) == 1

    @pytest.mark.asyncio
    async def test_delete_with_provider_close_failure_still_frees_port(self):
        manager = make_manager(FakeTunnelProvider(tunnel_class=UnclosableTunnel))
        port = find_free_port()
        route = await manager.create_tunnel(port, "token")
        listener = route.listener

        with pytest.raises(TunnelError, match="closed by remote"):
            await manager.delete_tunnel(port)

        assert manager.get(port) is None
        assert listener.is_running is False
        assert manager.state() == []
        with pytest.raises(TunnelNotFoundError):
            await manager.delete_tunnel(port)

    @pytest.mark.asyncio
    async def test_delete_unknown_tunnel(self, manager):
        with pytest.raises(TunnelNotFoundError):
            await manager.delete_tunnel(find_free_port())

    @pytest.mark.asyncio
    async def test_listener_broadcasts_through_manager(self, manager):
        port = find_free_port()
        await manager.create_tunnel(port, "token")

        async with aiohttp.ClientSession() as client:
            async with client.post(f"http://127.0.0.1:{port}/endpoint", json={"a": 1}) as response:
                assert response.status == 200

        assert manager.notify.notifications[0]["payload"] == {"a": 1}

    @pytest.mark.asyncio
    async def test_close_all(self, manager):
        routes = []
        for _ in range(2):
            routes.append(await manager.create_tunnel(find_free_port(), "token"))

        await manager.close_all()

        assert manager.routes == {}
        for route in routes:
            assert route.listener.is_running is False
        assert all(t.closed for t in manager.provider.opened)
