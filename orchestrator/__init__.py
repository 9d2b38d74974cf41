"""
Orchestration core: sessions, worker executions, process trees and tunnels.
"""

from orchestrator.context import OrchestratorContext
from orchestrator.errors import (
    ExecutionNotFoundError,
    OrchestratorError,
    ProviderTokenMissingError,
    TunnelError,
    TunnelNotFoundError,
)
from orchestrator.executions import ExecutionManager
from orchestrator.process_tree import ProcessTreeSupervisor
from orchestrator.sessions import SessionRegistry
from orchestrator.tunnels import TunnelManager
from orchestrator.types import (
    Execution,
    ExecutionMode,
    ExecutionStatus,
    Session,
    SessionRole,
    TunnelRoute,
)

__all__ = [
    "OrchestratorContext",
    "OrchestratorError",
    "ExecutionNotFoundError",
    "TunnelError",
    "TunnelNotFoundError",
    "ProviderTokenMissingError",
    "ExecutionManager",
    "ProcessTreeSupervisor",
    "SessionRegistry",
    "TunnelManager",
    "Execution",
    "ExecutionMode",
    "ExecutionStatus",
    "Session",
    "SessionRole",
    "TunnelRoute",
]
