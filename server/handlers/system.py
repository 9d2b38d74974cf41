"""Handlers for host environment checks."""

import logging
from typing import Any, Dict

from orchestrator import system_checks
from orchestrator.context import OrchestratorContext
from orchestrator.protocol import CheckBinaryRequest, ToolingRequest
from orchestrator.types import ExecutionMode, Session

from server.handlers.base import reply

logger = logging.getLogger(__name__)


def _tooling_args(message: Dict[str, Any], ctx: OrchestratorContext):
    request = ToolingRequest.model_validate(message)
    mode = request.execution_mode or ExecutionMode.CUSTOM
    image = request.container_image or ctx.settings.container_image
    worker_path = request.worker_path or ctx.settings.worker_binary
    return mode, image, worker_path


async def handle_check_binary(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    """Re-check the worker binary and tell every UI session"""
    request = CheckBinaryRequest.model_validate(message)
    result = system_checks.check_worker_binary(request.worker_path or ctx.settings.worker_binary)
    ctx.binary_found = result.found
    ctx.binary_error = result.error
    await ctx.sessions.broadcast_to_ui({"type": "binary-status", **result.to_dict()})


async def handle_check_prerequisites(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    mode, _, _ = _tooling_args(message, ctx)
    result = await system_checks.check_prerequisites(mode)
    await reply(
        ctx,
        session,
        {
            "type": "prerequisites-status",
            "executionMode": mode.value,
            "valid": result.valid,
            "missing": result.missing,
            "warnings": result.warnings,
        },
    )


async def handle_get_worker_version(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    result = await system_checks.get_worker_version(*_tooling_args(message, ctx))
    await reply(ctx, session, {"type": "worker-version-response", **result})


async def handle_get_collection_list(
    message: Dict[str, Any], session: Session, ctx: OrchestratorContext
) -> None:
    result = await system_checks.get_collection_list(*_tooling_args(message, ctx))
    await reply(ctx, session, {"type": "collection-list-response", **result})
