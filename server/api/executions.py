"""
Execution API endpoints.

Read-only views of the execution table; executions are started and stopped
over the session protocol.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse

from .base import get_context


async def api_list_executions(request: Request):
    """List all tracked executions, newest first."""
    ctx = get_context(request)
    executions = sorted(
        ctx.executions.executions.values(), key=lambda e: e.created_at, reverse=True
    )
    return JSONResponse(
        {
            "executions": [e.summary() for e in executions],
            "lastExecutionId": ctx.executions.last_execution_id,
        }
    )


async def api_get_execution(request: Request):
    """Get one execution together with its event log."""
    ctx = get_context(request)
    execution_id = request.path_params["execution_id"]
    execution = ctx.executions.get(execution_id)
    if execution is None:
        return JSONResponse({"error": f"Execution {execution_id} not found"}, status_code=404)

    detail = execution.summary()
    detail["command"] = execution.command
    detail["events"] = [event.to_dict() for event in execution.events]
    return JSONResponse(detail)
