"""
Shared helpers for the read-only API endpoints.
"""

from starlette.requests import Request

from orchestrator.context import OrchestratorContext


def get_context(request: Request) -> OrchestratorContext:
    """The orchestrator state attached to the running application"""
    return request.app.state.context
