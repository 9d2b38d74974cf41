"""Core data model of the orchestration server.

Sessions, executions and tunnel routes are plain dataclasses owned by the
tables in ``OrchestratorContext``; they hold live handles (websockets,
subprocesses, listeners) so they are not pydantic models.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol


class SessionRole(str, Enum):
    """Role of a live connection, revealed by its first identifying message"""

    UNCLASSIFIED = "unclassified"
    UI = "ui"
    WORKER = "worker"


class ExecutionStatus(str, Enum):
    """Execution state machine: waiting -> running -> stopped | exited | error"""

    WAITING = "waiting"
    RUNNING = "running"
    STOPPED = "stopped"
    EXITED = "exited"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.STOPPED, ExecutionStatus.EXITED, ExecutionStatus.ERROR}
)


class ExecutionMode(str, Enum):
    """How the worker process is launched"""

    VENV = "venv"
    CUSTOM = "custom"
    CONTAINER = "container"


class Connection(Protocol):
    """Transport of a session; a Starlette WebSocket satisfies it"""

    async def send_json(self, data: Any) -> None: ...


@dataclass
class Session:
    """One live connection"""

    id: str
    connection: Connection
    role: SessionRole = SessionRole.UNCLASSIFIED
    execution_id: Optional[str] = None
    connected_at: float = field(default_factory=time.time)


@dataclass
class ExecutionEvent:
    """One message recorded against an execution"""

    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Execution:
    """One request to run the worker"""

    id: str
    rule_document: str
    extra_vars: Dict[str, Any] = field(default_factory=dict)
    env_vars: Dict[str, str] = field(default_factory=dict)
    execution_mode: ExecutionMode = ExecutionMode.CONTAINER
    container_image: str = ""
    worker_path: str = ""
    working_directory: str = ""
    heartbeat: int = 0
    extra_cli_args: str = ""
    status: ExecutionStatus = ExecutionStatus.WAITING
    events: List[ExecutionEvent] = field(default_factory=list)
    worker_connected: bool = False
    worker_session_id: Optional[str] = None
    ui_session_id: Optional[str] = None
    process: Optional[asyncio.subprocess.Process] = None
    command: List[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    error: Optional[str] = None
    last_heartbeat: Optional[datetime] = None
    stats: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def process_alive(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def transition(self, status: ExecutionStatus) -> bool:
        """Move to ``status`` unless already terminal. Returns True if changed."""
        if self.status.is_terminal:
            return False
        self.status = status
        return True

    def summary(self) -> Dict[str, Any]:
        return {
            "executionId": self.id,
            "status": self.status.value,
            "executionMode": self.execution_mode.value,
            "pid": self.pid,
            "workerConnected": self.worker_connected,
            "exitCode": self.exit_code,
            "error": self.error,
            "eventCount": len(self.events),
            "lastHeartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            "stats": self.stats,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class TunnelRoute:
    """Local listener, optional public tunnel and forwarding target for one port"""

    port: int
    listener: Any = None
    tunnel: Any = None
    public_url: Optional[str] = None
    tunnel_id: Optional[str] = None
    forward_to: Optional[int] = None

    @property
    def has_tunnel(self) -> bool:
        return self.tunnel is not None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "port": self.port,
            "publicUrl": self.public_url,
            "tunnelId": self.tunnel_id,
            "forwardTo": self.forward_to,
        }
