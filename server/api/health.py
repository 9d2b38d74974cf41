"""
Health endpoint.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse

from orchestrator.types import SessionRole

from .base import get_context


async def api_health(request: Request):
    """Liveness plus a count of what the server currently tracks."""
    ctx = get_context(request)
    sessions = list(ctx.sessions.sessions.values())
    return JSONResponse(
        {
            "status": "ok",
            "binaryFound": ctx.binary_found,
            "sessions": {
                "ui": sum(1 for s in sessions if s.role == SessionRole.UI),
                "worker": sum(1 for s in sessions if s.role == SessionRole.WORKER),
                "unclassified": sum(1 for s in sessions if s.role == SessionRole.UNCLASSIFIED),
            },
            "executions": len(ctx.executions.executions),
            "runningExecutions": len(ctx.executions.running()),
            "tunnels": len(ctx.tunnels.state()),
        }
    )
