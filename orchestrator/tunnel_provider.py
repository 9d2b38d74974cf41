"""Public tunnel providers.

A provider exposes a local port on a public URL. The default implementation
uses ngrok; tests substitute their own provider.
"""

import inspect
import logging
from typing import Any, Optional, Protocol

import ngrok

from orchestrator.logging_utils import log_with_context

logger = logging.getLogger(__name__)


class TunnelHandle(Protocol):
    """An open public tunnel"""

    url: str
    id: str

    async def close(self) -> None: ...


class TunnelProvider(Protocol):
    async def open(self, port: int, token: str) -> TunnelHandle: ...


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class NgrokTunnel:
    """Handle for one ngrok listener"""

    def __init__(self, listener: Any, port: int):
        self._listener = listener
        self.port = port
        self.url: str = listener.url() or ""
        self.id: str = listener.id() or f"tunnel-{port}"

    async def close(self) -> None:
        await _maybe_await(self._listener.close())


class NgrokTunnelProvider:
    """Open HTTP tunnels through ngrok"""

    def __init__(self, proto: str = "http", domain: Optional[str] = None):
        self.proto = proto
        self.domain = domain

    async def open(self, port: int, token: str) -> NgrokTunnel:
        options = {"authtoken": token, "proto": self.proto}
        if self.domain:
            options["domain"] = self.domain

        log_with_context(
            logger,
            logging.INFO,
            "Opening ngrok tunnel",
            {"port": port, "authtoken": token},
        )
        listener = await _maybe_await(ngrok.forward(port, **options))
        return NgrokTunnel(listener, port)
