"""
Configuration API endpoint.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse

from config import env


async def api_get_configuration(request: Request):
    """Get current configuration settings."""
    try:
        return JSONResponse(env.get_all_configuration())
    except Exception as e:
        return JSONResponse({"error": str(e)}, status_code=500)
