"""
API routes aggregation module.

This module imports all API endpoints from the individual modules and
aggregates them into a single api_routes list for use by the main server.
"""

from starlette.routing import Route

from .configuration import api_get_configuration
from .executions import api_get_execution, api_list_executions
from .health import api_health
from .tunnels import api_list_tunnels

# Aggregate all routes into a single list
api_routes = [
    Route("/api/health", endpoint=api_health, methods=["GET"]),
    # Execution endpoints
    Route("/api/executions", endpoint=api_list_executions, methods=["GET"]),
    Route("/api/executions/{execution_id}", endpoint=api_get_execution, methods=["GET"]),
    # Tunnel endpoints
    Route("/api/tunnels", endpoint=api_list_tunnels, methods=["GET"]),
    # Configuration endpoints
    Route("/api/configuration", endpoint=api_get_configuration, methods=["GET"]),
]
