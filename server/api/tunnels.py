"""
Tunnel API endpoints.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse

from .base import get_context


async def api_list_tunnels(request: Request):
    """Current tunnel routes, same shape as the tunnel-state message."""
    ctx = get_context(request)
    return JSONResponse({"tunnels": ctx.tunnels.state()})
