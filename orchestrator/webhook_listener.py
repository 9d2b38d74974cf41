"""Per-port HTTP listener that receives webhooks and optionally forwards them.

Every inbound request is reported to UI sessions. When a forward-to port is
configured for the listener's port, the request is relayed to
``http://localhost:<forward-to>`` and the upstream response is returned to
the caller; otherwise a JSON acknowledgement is returned.
"""

import asyncio
import errno
import json
import logging
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from aiohttp import web
from multidict import CIMultiDict

from orchestrator.logging_utils import log_with_context

logger = logging.getLogger(__name__)

ForwardLookup = Callable[[int], Optional[int]]
Notifier = Callable[[Dict[str, Any]], Awaitable[Any]]

# The body is re-sent decoded and fully buffered, so framing headers are recomputed
DROP_REQUEST_HEADERS = {"host", "content-length", "transfer-encoding", "content-encoding"}
STRIP_RESPONSE_HEADERS = {
    "content-encoding",
    "transfer-encoding",
    "connection",
    "content-length",
}

MAX_BODY_SIZE = 100 * 1024 * 1024


def decode_payload(body: bytes) -> Any:
    """JSON-decode a request body, falling back to the raw text"""
    text = body.decode("utf-8", errors="replace")
    if not text:
        return text
    try:
        return json.loads(text)
    except ValueError:
        return text


def join_headers(headers) -> Dict[str, str]:
    """Collapse a multidict into lower-cased keys with comma-joined values"""
    joined: Dict[str, str] = {}
    for key in headers.keys():
        name = key.lower()
        if name not in joined:
            joined[name] = ", ".join(headers.getall(key))
    return joined


def describe_forward_error(error: BaseException) -> Dict[str, Optional[str]]:
    code = None
    os_error = getattr(error, "os_error", None)
    if os_error is not None and os_error.errno in errno.errorcode:
        code = errno.errorcode[os_error.errno]
    elif isinstance(error, asyncio.TimeoutError):
        code = "ETIMEDOUT"
    message = str(error) or type(error).__name__
    return {"code": code, "message": message, "name": type(error).__name__}


class WebhookListener:
    """An aiohttp server bound to one webhook port"""

    def __init__(
        self,
        port: int,
        forward_lookup: ForwardLookup,
        notify: Notifier,
        host: str = "0.0.0.0",
        request_timeout: float = 300.0,
        keepalive_timeout: float = 65.0,
        forward_timeout: float = 60.0,
    ):
        self.port = port
        self.host = host
        self.forward_lookup = forward_lookup
        self.notify = notify
        self.request_timeout = request_timeout
        self.keepalive_timeout = keepalive_timeout
        self.forward_timeout = forward_timeout

        self._runner: Optional[web.AppRunner] = None
        self._client: Optional[aiohttp.ClientSession] = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Bind the port. Raises OSError if it is unavailable."""
        if self._runner is not None:
            return

        app = web.Application(client_max_size=MAX_BODY_SIZE)
        app.router.add_route("*", "/{tail:.*}", self._handle)

        runner = web.AppRunner(
            app,
            keepalive_timeout=self.keepalive_timeout,
            access_log=None,
        )
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise

        self._runner = runner
        self._client = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.forward_timeout),
            auto_decompress=True,
        )

        forward_to = self.forward_lookup(self.port)
        log_with_context(
            logger,
            logging.INFO,
            "Webhook listener started",
            {"port": self.port, "forward_to": forward_to},
        )

    async def close(self) -> None:
        runner, client = self._runner, self._client
        self._runner = None
        self._client = None

        if client is not None:
            await client.close()
        if runner is not None:
            await runner.cleanup()
            log_with_context(
                logger, logging.INFO, "Webhook listener closed", {"port": self.port}
            )

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        try:
            body = await asyncio.wait_for(request.read(), timeout=self.request_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Timed out reading webhook request on port {self.port}")
            return web.json_response({"error": "Error reading request"}, status=408)

        headers = join_headers(request.headers)
        notification: Dict[str, Any] = {
            "type": "tunnel-webhook-received",
            "port": self.port,
            "method": request.method,
            "url": request.path_qs,
            "headers": headers,
            "payload": decode_payload(body),
            "timestamp": datetime.now(UTC).isoformat(),
        }

        log_with_context(
            logger,
            logging.INFO,
            "Webhook received",
            {
                "port": self.port,
                "method": request.method,
                "url": request.path_qs,
                "body_length": len(body),
            },
        )

        forward_to = self.forward_lookup(self.port)
        if forward_to:
            response = await self._forward(request, body, headers, forward_to, notification)
        else:
            response = web.json_response(
                {"success": True, "message": "Webhook received", "port": self.port}
            )

        try:
            await self.notify(notification)
        except Exception as e:
            logger.error(f"Failed to broadcast webhook from port {self.port}: {e}")

        return response

    async def _forward(
        self,
        request: web.Request,
        body: bytes,
        headers: Dict[str, str],
        forward_to: int,
        notification: Dict[str, Any],
    ) -> web.StreamResponse:
        target = f"http://localhost:{forward_to}{request.path_qs}"
        forward_headers = {
            name: value for name, value in headers.items() if name not in DROP_REQUEST_HEADERS
        }
        forward_headers["host"] = f"localhost:{forward_to}"

        try:
            async with self._client.request(
                request.method,
                target,
                headers=forward_headers,
                data=body or None,
                allow_redirects=False,
            ) as upstream:
                upstream_body = await upstream.read()
                response_headers = CIMultiDict(
                    (name, value)
                    for name, value in upstream.headers.items()
                    if name.lower() not in STRIP_RESPONSE_HEADERS
                )
                status = upstream.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            details = describe_forward_error(e)
            log_with_context(
                logger,
                logging.ERROR,
                "Forwarding failed",
                {"port": self.port, "target": target, **details},
            )
            notification["forwarded"] = False
            notification["forwardFailed"] = True
            notification["forwardError"] = f"{details['code'] or details['name']}: {details['message']}"
            return web.json_response(
                {
                    "success": False,
                    "message": "Webhook received but forwarding failed",
                    "error": details["message"],
                    "errorCode": details["code"],
                    "port": self.port,
                    "targetPort": forward_to,
                },
                status=502,
            )

        log_with_context(
            logger,
            logging.INFO,
            "Webhook forwarded",
            {"port": self.port, "target": target, "status": status},
        )
        notification["forwarded"] = True
        notification["forwardedTo"] = forward_to
        notification["forwardStatus"] = status
        return web.Response(status=status, body=upstream_body, headers=response_headers)
