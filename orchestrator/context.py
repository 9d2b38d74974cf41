"""Shared orchestrator state handed to every message handler."""

import logging
from dataclasses import dataclass
from typing import Optional

from config import ServerSettings
from orchestrator.executions import ExecutionManager
from orchestrator.process_tree import ProcessTreeSupervisor
from orchestrator.sessions import SessionRegistry
from orchestrator.tunnel_provider import NgrokTunnelProvider, TunnelProvider
from orchestrator.tunnels import TunnelManager
from orchestrator.types import ExecutionMode
from orchestrator.worker_command import WorkerCommandBuilder

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorContext:
    """The session, execution and tunnel tables plus process-wide flags"""

    settings: ServerSettings
    sessions: SessionRegistry
    executions: ExecutionManager
    tunnels: TunnelManager
    binary_found: Optional[bool] = None
    binary_error: Optional[str] = None

    @property
    def browser_log_level(self) -> str:
        return self.settings.browser_log_level

    @classmethod
    def create(
        cls,
        settings: ServerSettings,
        tunnel_provider: Optional[TunnelProvider] = None,
        command_builder: Optional[WorkerCommandBuilder] = None,
    ) -> "OrchestratorContext":
        sessions = SessionRegistry()

        try:
            default_mode = ExecutionMode(settings.default_execution_mode)
        except ValueError:
            logger.warning(
                f"Unknown default execution mode {settings.default_execution_mode!r}, using container"
            )
            default_mode = ExecutionMode.CONTAINER

        executions = ExecutionManager(
            sessions,
            command_builder
            or WorkerCommandBuilder(
                server_port=settings.port,
                worker_binary=settings.worker_binary,
                container_image=settings.container_image,
            ),
            supervisor=ProcessTreeSupervisor(wait_timeout=settings.kill_wait_timeout_seconds),
            default_mode=default_mode,
            stop_grace_seconds=settings.stop_grace_seconds,
            port_release_delay_seconds=settings.port_release_delay_seconds,
            retention_minutes=settings.execution_retention_minutes,
        )
        tunnels = TunnelManager(
            tunnel_provider or NgrokTunnelProvider(),
            notify=sessions.broadcast_to_ui,
            request_timeout=settings.webhook_request_timeout_seconds,
            keepalive_timeout=settings.webhook_keepalive_timeout_seconds,
            forward_timeout=settings.forward_timeout_seconds,
        )
        return cls(settings=settings, sessions=sessions, executions=executions, tunnels=tunnels)

    async def shutdown(self) -> None:
        """Terminate worker process trees, then close tunnels and listeners"""
        await self.executions.shutdown()
        await self.tunnels.close_all()
