"""Same-origin HTTP proxy for browsers: local webhooks and tunnel probes."""

import asyncio
import logging
from typing import Any, Dict

import aiohttp
from pydantic import ValidationError

from orchestrator.context import OrchestratorContext
from orchestrator.protocol import SendWebhookRequest, TunnelProbeRequest
from orchestrator.types import Session

from server.handlers.base import describe_validation_error, reply

logger = logging.getLogger(__name__)


async def post_json(url: str, payload: Any, timeout: float) -> Dict[str, Any]:
    """POST a JSON payload and describe the response"""
    client_timeout = aiohttp.ClientTimeout(total=timeout)
    async with aiohttp.ClientSession(timeout=client_timeout) as client:
        async with client.post(url, json=payload) as response:
            body = await response.text()
            return {
                "success": 200 <= response.status < 300,
                "status": response.status,
                "statusText": response.reason or "",
                "body": body,
            }


async def _proxy(url: str, payload: Any, ctx: OrchestratorContext) -> Dict[str, Any]:
    try:
        return await post_json(url, payload, ctx.settings.proxy_timeout_seconds)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        error = str(e) or type(e).__name__
        logger.error(f"Proxy request to {url} failed: {error}")
        return {"success": False, "error": error}


async def handle_send_webhook(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    try:
        request = SendWebhookRequest.model_validate(message)
    except ValidationError as e:
        await reply(
            ctx,
            session,
            {"type": "webhook-response", "success": False, "error": describe_validation_error(e)},
        )
        return

    url = f"http://localhost:{request.port}/endpoint"
    logger.info(f"Proxying webhook POST to {url}")
    result = await _proxy(url, request.payload, ctx)
    await reply(ctx, session, {"type": "webhook-response", **result})


async def handle_test_tunnel(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    try:
        request = TunnelProbeRequest.model_validate(message)
    except ValidationError as e:
        await reply(
            ctx,
            session,
            {
                "type": "test-tunnel-response",
                "success": False,
                "port": message.get("port"),
                "error": describe_validation_error(e),
            },
        )
        return

    logger.info(f"Sending test payload to {request.url}")
    result = await _proxy(request.url, request.payload, ctx)
    await reply(ctx, session, {"type": "test-tunnel-response", "port": request.port, **result})
