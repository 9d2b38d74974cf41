"""Handlers for session classification and liveness."""

import logging
from datetime import datetime, UTC
from typing import Any, Dict

from orchestrator.context import OrchestratorContext
from orchestrator.protocol import WorkerHelloRequest
from orchestrator.types import Session

from server.handlers.base import reply

logger = logging.getLogger(__name__)


async def handle_register_ui(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    ctx.sessions.mark_ui(session.id)
    logger.info(f"Session {session.id} registered as UI")

    await reply(ctx, session, {"type": "registered", "sessionId": session.id})
    if ctx.binary_found is not None:
        await reply(
            ctx,
            session,
            {"type": "binary-status", "found": ctx.binary_found, "error": ctx.binary_error},
        )
    await reply(ctx, session, {"type": "log-level-config", "logLevel": ctx.browser_log_level})


async def handle_worker_hello(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    """Bind the session to its execution and push the worker configuration"""
    request = WorkerHelloRequest.model_validate(message)
    ctx.sessions.mark_worker(session.id, request.execution_id)
    logger.info(f"Session {session.id} registered as worker for {request.execution_id}")
    await ctx.executions.attach_worker(request.execution_id, session.id)


async def handle_heartbeat(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    await reply(
        ctx, session, {"type": "heartbeat-ack", "timestamp": datetime.now(UTC).isoformat()}
    )
