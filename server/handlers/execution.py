"""Handlers for the execution lifecycle and worker events."""

import logging
import shlex
from typing import Any, Dict

from pydantic import ValidationError

from orchestrator.context import OrchestratorContext
from orchestrator.errors import ExecutionNotFoundError
from orchestrator.protocol import StartExecutionRequest, StopExecutionRequest
from orchestrator.types import ExecutionStatus, Session, SessionRole

from server.handlers.base import describe_validation_error, reply

logger = logging.getLogger(__name__)


async def handle_start_execution(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    try:
        request = StartExecutionRequest.model_validate(message)
    except ValidationError as e:
        await reply(
            ctx,
            session,
            {"type": "execution-started", "success": False, "error": describe_validation_error(e)},
        )
        return

    execution = await ctx.executions.start(request, ui_session_id=session.id)

    if execution.status == ExecutionStatus.ERROR:
        await reply(
            ctx,
            session,
            {
                "type": "execution-started",
                "success": False,
                "executionId": execution.id,
                "error": execution.error,
            },
        )
        return

    await reply(
        ctx,
        session,
        {
            "type": "execution-started",
            "success": True,
            "executionId": execution.id,
            "wsUrl": ctx.executions.command_builder.websocket_url(execution.execution_mode),
            "command": shlex.join(execution.command),
            "autoStarted": True,
        },
    )


async def handle_stop_execution(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    try:
        request = StopExecutionRequest.model_validate(message)
        await ctx.executions.stop(request.execution_id)
    except (ValidationError, ExecutionNotFoundError) as e:
        error = describe_validation_error(e) if isinstance(e, ValidationError) else str(e)
        logger.warning(f"Stop request rejected: {error}")
        await reply(
            ctx,
            session,
            {
                "type": "execution-stopped",
                "success": False,
                "executionId": message.get("executionId"),
                "error": error,
            },
        )


def _bound_execution_id(session: Session):
    return session.execution_id if session.role == SessionRole.WORKER else None


async def handle_worker_event(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    """event, job, action and shutdown messages from a worker"""
    await ctx.executions.ingest_event(message, _bound_execution_id(session))


async def handle_session_stats(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    await ctx.executions.record_stats(message, _bound_execution_id(session))
