"""Handlers for public tunnels and webhook forwarding rules."""

import logging
from typing import Any, Dict

from pydantic import ValidationError

from orchestrator.context import OrchestratorContext
from orchestrator.errors import OrchestratorError
from orchestrator.protocol import (
    CreateTunnelRequest,
    DeleteTunnelRequest,
    UpdateForwardingRequest,
)
from orchestrator.types import Session

from server.handlers.base import describe_validation_error, reply

logger = logging.getLogger(__name__)


def _failure(kind: str, message: Dict[str, Any], error: Exception) -> Dict[str, Any]:
    if isinstance(error, ValidationError):
        text = describe_validation_error(error)
    else:
        text = str(error)
    return {"type": kind, "success": False, "port": message.get("port"), "error": text}


async def handle_create_tunnel(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    try:
        request = CreateTunnelRequest.model_validate(message)
        route = await ctx.tunnels.create_tunnel(
            request.port, request.provider_token, request.forward_to
        )
    except (ValidationError, OrchestratorError) as e:
        await reply(ctx, session, _failure("tunnel-created", message, e))
        return

    await reply(ctx, session, {"type": "tunnel-created", "success": True, **route.snapshot()})


async def handle_delete_tunnel(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    try:
        request = DeleteTunnelRequest.model_validate(message)
        await ctx.tunnels.delete_tunnel(request.port)
    except (ValidationError, OrchestratorError) as e:
        await reply(ctx, session, _failure("tunnel-deleted", message, e))
        return

    await reply(ctx, session, {"type": "tunnel-deleted", "success": True, "port": request.port})


async def handle_update_tunnel_forwarding(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    try:
        request = UpdateForwardingRequest.model_validate(message)
        route = ctx.tunnels.update_forwarding(request.port, request.forward_to)
    except (ValidationError, OrchestratorError) as e:
        logger.warning(f"Forwarding update rejected: {e}")
        await reply(ctx, session, _failure("tunnel-forwarding-updated", message, e))
        return

    await reply(
        ctx,
        session,
        {
            "type": "tunnel-forwarding-updated",
            "success": True,
            "port": route.port,
            "forwardTo": route.forward_to,
        },
    )


async def handle_get_tunnel_state(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    await reply(ctx, session, {"type": "tunnel-state", "tunnels": ctx.tunnels.state()})
