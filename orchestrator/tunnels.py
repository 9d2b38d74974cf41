"""Tunnel routes: local webhook listeners, public tunnels and forwarding."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from orchestrator.errors import (
    ProviderTokenMissingError,
    TunnelError,
    TunnelNotFoundError,
)
from orchestrator.logging_utils import log_with_context
from orchestrator.tunnel_provider import TunnelProvider
from orchestrator.types import TunnelRoute
from orchestrator.webhook_listener import WebhookListener

logger = logging.getLogger(__name__)

ListenerFactory = Callable[[int], WebhookListener]


class TunnelManager:
    """Owns the TunnelRoute table.

    The listener of a route is always started before its public tunnel is
    opened and is closed only after the tunnel has been closed.
    """

    def __init__(
        self,
        provider: TunnelProvider,
        notify: Callable[[Dict[str, Any]], Awaitable[Any]],
        listener_factory: Optional[ListenerFactory] = None,
        request_timeout: float = 300.0,
        keepalive_timeout: float = 65.0,
        forward_timeout: float = 60.0,
    ):
        self.provider = provider
        self.notify = notify
        self.request_timeout = request_timeout
        self.keepalive_timeout = keepalive_timeout
        self.forward_timeout = forward_timeout
        self.listener_factory = listener_factory or self._default_listener
        self.routes: Dict[int, TunnelRoute] = {}

    def _default_listener(self, port: int) -> WebhookListener:
        return WebhookListener(
            port,
            forward_lookup=self.forward_target,
            notify=self.notify,
            request_timeout=self.request_timeout,
            keepalive_timeout=self.keepalive_timeout,
            forward_timeout=self.forward_timeout,
        )

    def forward_target(self, port: int) -> Optional[int]:
        """Current forward-to port for a listener port, read on every request"""
        route = self.routes.get(port)
        return route.forward_to if route else None

    def get(self, port: int) -> Optional[TunnelRoute]:
        return self.routes.get(port)

    async def ensure_listener(self, port: int) -> bool:
        """Make sure a running listener is bound for ``port``.

        Returns True if a listener was created by this call, False if an
        existing running listener was reused. A stopped listener is replaced.
        """
        route = self.routes.get(port)
        if route is None:
            route = TunnelRoute(port=port)
            self.routes[port] = route

        if route.listener is not None and route.listener.is_running:
            return False

        if route.listener is not None:
            logger.info(f"Replacing stopped listener on port {port}")
            await route.listener.close()
            route.listener = None

        listener = self.listener_factory(port)
        try:
            await listener.start()
        except OSError:
            if route.tunnel is None and route.listener is None:
                self.routes.pop(port, None)
            raise
        route.listener = listener
        return True

    async def create_tunnel(
        self, port: int, token: Optional[str], forward_to: Optional[int] = None
    ) -> TunnelRoute:
        """Start (or reuse) the listener for ``port`` and open a public tunnel to it"""
        log_with_context(
            logger,
            logging.INFO,
            "Creating tunnel",
            {"port": port, "forward_to": forward_to, "token": token},
        )
        if not token:
            raise ProviderTokenMissingError()

        existing = self.routes.get(port)
        if existing is not None and existing.has_tunnel:
            logger.info(f"Tunnel already exists for port {port}: {existing.public_url}")
            return existing

        previous_forward_to = existing.forward_to if existing else None
        created_listener = False
        try:
            created_listener = await self.ensure_listener(port)
            route = self.routes[port]
            if forward_to:
                route.forward_to = forward_to
            tunnel = await self.provider.open(port, token)
        except Exception as e:
            await self._rollback_failed_create(port, created_listener, previous_forward_to)
            log_with_context(
                logger,
                logging.ERROR,
                "Failed to create tunnel",
                {"port": port, "error": str(e)},
            )
            if isinstance(e, TunnelError):
                raise
            raise TunnelError(str(e)) from e

        # Re-fetch after the provider round-trip
        route = self.routes.get(port)
        if route is None or route.listener is None:
            await tunnel.close()
            raise TunnelError(f"Listener for port {port} went away while the tunnel was opening")

        route.tunnel = tunnel
        route.public_url = tunnel.url
        route.tunnel_id = tunnel.id
        log_with_context(
            logger,
            logging.INFO,
            "Tunnel created",
            {"port": port, "public_url": route.public_url, "forward_to": route.forward_to},
        )
        return route

    async def _rollback_failed_create(
        self, port: int, created_listener: bool, previous_forward_to: Optional[int]
    ) -> None:
        route = self.routes.get(port)
        if route is None:
            return
        if created_listener and route.tunnel is None:
            if route.listener is not None:
                await route.listener.close()
            self.routes.pop(port, None)
            logger.info(f"Cleaned up listener on port {port} after tunnel creation failure")
        else:
            route.forward_to = previous_forward_to

    async def delete_tunnel(self, port: int) -> None:
        """Close the public tunnel, then the listener, and forget the route"""
        route = self.routes.get(port)
        if route is None or not route.has_tunnel:
            raise TunnelNotFoundError(port)

        tunnel = route.tunnel
        route.tunnel = None
        try:
            await tunnel.close()
        except Exception as e:
            log_with_context(
                logger,
                logging.ERROR,
                "Failed to close tunnel",
                {"port": port, "error": str(e)},
            )
            raise TunnelError(str(e)) from e
        finally:
            # Re-fetch after awaiting the provider
            route = self.routes.pop(port, None)
            if route is not None and route.listener is not None:
                await route.listener.close()
        logger.info(f"Tunnel for port {port} deleted")

    def update_forwarding(self, port: int, forward_to: Optional[int]) -> TunnelRoute:
        """Change only the forward-to port of an existing tunnel route"""
        route = self.routes.get(port)
        if route is None or not route.has_tunnel:
            raise TunnelNotFoundError(port)

        route.forward_to = forward_to or None
        if route.forward_to:
            logger.info(f"Forwarding enabled for port {port} -> localhost:{route.forward_to}")
        else:
            logger.info(f"Forwarding disabled for port {port}")
        return route

    def state(self) -> List[Dict[str, Any]]:
        """Point-in-time snapshot of every route with an open tunnel"""
        return [route.snapshot() for route in self.routes.values() if route.has_tunnel]

    async def close_all(self) -> None:
        """Close every tunnel, then every listener"""
        for port, route in list(self.routes.items()):
            if route.tunnel is not None:
                try:
                    await route.tunnel.close()
                except Exception as e:
                    logger.error(f"Error closing tunnel on port {port}: {e}")
                route.tunnel = None

        for port, route in list(self.routes.items()):
            if route.listener is not None:
                try:
                    await route.listener.close()
                except Exception as e:
                    logger.error(f"Error closing listener on port {port}: {e}")
        self.routes.clear()
