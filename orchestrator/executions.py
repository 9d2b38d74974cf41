"""Execution lifecycle: spawning, stopping and tracking worker processes.

At most one execution is ``running`` at a time because the worker binds
fixed ports. Starts are serialized by a lock and always stop every running
execution (and wait for its process tree to go away) before spawning.
Stops never wait: they acknowledge immediately and escalate in the
background.
"""

import asyncio
import base64
import json
import logging
import signal
import uuid
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, List, Optional, Set

from orchestrator.errors import ExecutionNotFoundError
from orchestrator.logging_utils import log_with_context, mask_secret
from orchestrator.process_tree import ProcessTreeSupervisor
from orchestrator.protocol import StartExecutionRequest
from orchestrator.sessions import SessionRegistry
from orchestrator.types import (
    Execution,
    ExecutionEvent,
    ExecutionMode,
    ExecutionStatus,
)
from orchestrator.worker_command import WorkerCommandBuilder

logger = logging.getLogger(__name__)

OUTPUT_CHUNK_SIZE = 4096

# Worker-side credential variables forwarded as controller-info
CONTROLLER_ENV_FIELDS = {
    "EDA_CONTROLLER_URL": "url",
    "EDA_CONTROLLER_TOKEN": "token",
    "EDA_CONTROLLER_SSL_VERIFY": "ssl_verify",
    "EDA_CONTROLLER_USERNAME": "username",
    "EDA_CONTROLLER_PASSWORD": "password",
}
# Sent whenever defined, even when empty
PRESENCE_FIELDS = {"EDA_CONTROLLER_SSL_VERIFY"}


def _b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def worker_configuration(execution: Execution) -> List[Dict[str, Any]]:
    """Messages pushed to a worker session once it identifies itself"""
    messages: List[Dict[str, Any]] = [
        {"type": "rule-document", "data": _b64(execution.rule_document)}
    ]

    if execution.extra_vars:
        messages.append({"type": "extra-vars", "data": _b64(json.dumps(execution.extra_vars))})

    controller_info = {
        field: execution.env_vars[name]
        for name, field in CONTROLLER_ENV_FIELDS.items()
        if execution.env_vars.get(name)
        or (name in PRESENCE_FIELDS and name in execution.env_vars)
    }
    if controller_info:
        messages.append({"type": "controller-info", **controller_info})

    messages.append({"type": "end-of-response"})
    return messages


class ExecutionManager:
    """Owns the Execution table and the worker processes behind it"""

    def __init__(
        self,
        sessions: SessionRegistry,
        command_builder: WorkerCommandBuilder,
        supervisor: Optional[ProcessTreeSupervisor] = None,
        default_mode: ExecutionMode = ExecutionMode.CONTAINER,
        stop_grace_seconds: float = 3.0,
        port_release_delay_seconds: float = 0.5,
        retention_minutes: int = 60,
    ):
        self.sessions = sessions
        self.command_builder = command_builder
        self.supervisor = supervisor or ProcessTreeSupervisor()
        self.default_mode = default_mode
        self.stop_grace_seconds = stop_grace_seconds
        self.port_release_delay_seconds = port_release_delay_seconds
        self.retention_minutes = retention_minutes

        self.executions: Dict[str, Execution] = {}
        self.last_execution_id: Optional[str] = None
        self._start_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def get(self, execution_id: Optional[str]) -> Optional[Execution]:
        if not execution_id:
            return None
        return self.executions.get(execution_id)

    def running(self) -> List[Execution]:
        return [e for e in self.executions.values() if e.status == ExecutionStatus.RUNNING]

    async def start(
        self, request: StartExecutionRequest, ui_session_id: Optional[str] = None
    ) -> Execution:
        """Stop whatever is running, then create and spawn a new execution"""
        async with self._start_lock:
            await self._stop_running_before_start()

            execution = Execution(
                id=str(uuid.uuid4()),
                rule_document=request.rule_document,
                extra_vars=request.extra_vars or {},
                env_vars=request.env_vars or {},
                execution_mode=request.execution_mode or self.default_mode,
                container_image=request.container_image or "",
                worker_path=request.worker_path or "",
                working_directory=request.working_directory or "",
                heartbeat=request.heartbeat,
                extra_cli_args=request.extra_cli_args or "",
                ui_session_id=ui_session_id,
            )
            self.executions[execution.id] = execution
            self.last_execution_id = execution.id

            await self._spawn(execution)
            return execution

    async def _stop_running_before_start(self) -> None:
        superseded = self.running()
        pids = []
        for execution in superseded:
            log_with_context(
                logger,
                logging.INFO,
                "Auto-stopping previous execution before starting a new one",
                {"execution_id": execution.id, "pid": execution.pid},
            )
            execution.transition(ExecutionStatus.STOPPED)
            if execution.process_alive:
                pids.append(execution.pid)

        if not superseded:
            return

        for execution in superseded:
            await self.sessions.broadcast_to_ui(
                {"type": "execution-stopped", "executionId": execution.id, "reason": "superseded"}
            )

        if pids:
            await asyncio.gather(
                *(self.supervisor.terminate_then_kill(pid, self.stop_grace_seconds) for pid in pids)
            )
            # Let the OS release the worker's ports
            await asyncio.sleep(self.port_release_delay_seconds)

    async def _spawn(self, execution: Execution) -> None:
        command = self.command_builder.build(execution)
        execution.command = command.argv

        log_with_context(
            logger,
            logging.INFO,
            "Spawning worker",
            {
                "execution_id": execution.id,
                "mode": execution.execution_mode.value,
                "command": command.display(),
                "cwd": command.cwd,
                "env_vars": sorted(execution.env_vars),
                "injected_env": command.injected_env,
            },
        )

        try:
            process = await asyncio.create_subprocess_exec(
                command.program,
                *command.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=command.env,
                cwd=command.cwd,
            )
        except OSError as e:
            execution.transition(ExecutionStatus.ERROR)
            execution.error = str(e)
            log_with_context(
                logger,
                logging.ERROR,
                "Failed to start worker",
                {"execution_id": execution.id, "error": str(e)},
            )
            await self.sessions.broadcast_to_ui(
                {"type": "process-error", "executionId": execution.id, "error": str(e)}
            )
            return

        execution.process = process
        if not execution.transition(ExecutionStatus.RUNNING):
            # Stopped while spawning
            self._track(self.supervisor.terminate_then_kill(process.pid, self.stop_grace_seconds))

        self._track(self._pump_output(execution.id, process.stdout, "stdout"))
        self._track(self._pump_output(execution.id, process.stderr, "stderr"))
        self._track(self._watch_exit(execution.id, process))

    async def _pump_output(self, execution_id: str, stream, name: str) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(OUTPUT_CHUNK_SIZE)
            if not chunk:
                break
            data = chunk.decode("utf-8", errors="replace")
            logger.debug(f"[{execution_id}] {name}: {data.rstrip()}")
            await self.sessions.broadcast_to_ui(
                {"type": "process-output", "executionId": execution_id, "stream": name, "data": data}
            )

    async def _watch_exit(self, execution_id: str, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        signal_name = None
        if returncode is not None and returncode < 0:
            try:
                signal_name = signal.Signals(-returncode).name
            except ValueError:
                signal_name = str(-returncode)

        log_with_context(
            logger,
            logging.INFO,
            "Worker process exited",
            {"execution_id": execution_id, "returncode": returncode, "signal": signal_name},
        )

        execution = self.executions.get(execution_id)
        if execution is not None and execution.process is process:
            execution.exit_code = returncode
            execution.transition(ExecutionStatus.EXITED)

        await self.sessions.broadcast_to_ui(
            {
                "type": "process-exited",
                "executionId": execution_id,
                "exitCode": returncode,
                "signal": signal_name,
            }
        )

    async def stop(self, execution_id: str) -> Execution:
        """Stop an execution without waiting for its process tree to exit"""
        execution = self.executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)

        if execution.worker_session_id:
            await self.sessions.send(execution.worker_session_id, {"type": "shutdown"})

        if execution.process_alive:
            log_with_context(
                logger,
                logging.INFO,
                "Killing worker process tree",
                {"execution_id": execution_id, "pid": execution.pid},
            )
            self._track(
                self.supervisor.terminate_then_kill(execution.pid, self.stop_grace_seconds)
            )

        execution.transition(ExecutionStatus.STOPPED)
        await self.sessions.broadcast_to_ui(
            {"type": "execution-stopped", "executionId": execution_id}
        )
        return execution

    async def attach_worker(self, execution_id: str, session_id: str) -> bool:
        """Bind a worker session to its execution and push its configuration"""
        execution = self.executions.get(execution_id)
        if execution is None:
            logger.warning(f"Worker connected for unknown execution: {execution_id}")
            return False

        execution.worker_connected = True
        execution.worker_session_id = session_id

        messages = worker_configuration(execution)
        for message in messages:
            await self.sessions.send(session_id, message)

        controller = next((m for m in messages if m["type"] == "controller-info"), None)
        log_with_context(
            logger,
            logging.INFO,
            "Sent worker configuration",
            {
                "execution_id": execution_id,
                "messages": [m["type"] for m in messages],
                "controller_fields": {
                    k: mask_secret(v) if k in ("token", "password") else v
                    for k, v in (controller or {}).items()
                    if k != "type"
                },
            },
        )

        await self.sessions.broadcast_to_ui(
            {"type": "worker-connected", "executionId": execution_id}
        )
        return True

    async def detach_worker(self, execution_id: Optional[str], session_id: str) -> None:
        """The worker's link closed; the process itself is left alone"""
        execution = self.get(execution_id)
        if execution is None or execution.worker_session_id != session_id:
            return
        execution.worker_connected = False
        execution.worker_session_id = None
        logger.info(f"Worker link closed for {execution_id}, process continues running")
        await self.sessions.broadcast_to_ui(
            {"type": "worker-disconnected", "executionId": execution_id}
        )

    def resolve_execution_id(
        self, message: Dict[str, Any], bound_execution_id: Optional[str] = None
    ) -> Optional[str]:
        """Explicit id, else the sender's bound execution, else the latest start"""
        explicit = message.get("executionId")
        if explicit:
            return explicit
        return bound_execution_id or self.last_execution_id

    async def ingest_event(
        self, message: Dict[str, Any], bound_execution_id: Optional[str] = None
    ) -> bool:
        """Record a worker event and rebroadcast it. Returns False if discarded."""
        execution_id = self.resolve_execution_id(message, bound_execution_id)
        execution = self.get(execution_id)
        if execution is None:
            logger.info(
                f"Event received but no execution found: {message.get('type')}, "
                f"executionId: {execution_id}"
            )
            return False

        execution.events.append(ExecutionEvent(type=message["type"], data=message))
        await self.sessions.broadcast_to_ui(
            {"type": "worker-event", "executionId": execution_id, "event": message}
        )
        logger.debug(f"Event {message['type']} broadcast for execution {execution_id}")
        return True

    async def record_stats(
        self, message: Dict[str, Any], bound_execution_id: Optional[str] = None
    ) -> bool:
        execution_id = self.resolve_execution_id(message, bound_execution_id)
        execution = self.get(execution_id)
        if execution is None:
            logger.info(f"Session stats received for unknown execution: {execution_id}")
            return False

        execution.last_heartbeat = datetime.now(UTC)
        execution.stats = message.get("stats")
        execution.events.append(ExecutionEvent(type=message["type"], data=message))
        await self.sessions.broadcast_to_ui(
            {
                "type": "session-stats",
                "executionId": execution_id,
                "stats": execution.stats,
                "reportedAt": message.get("reportedAt"),
            }
        )
        return True

    async def sweep_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Forget terminal executions older than the retention period"""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=self.retention_minutes)
        removed = []

        for execution_id, execution in list(self.executions.items()):
            if not execution.status.is_terminal or execution.created_at > cutoff:
                continue
            if execution.process_alive:
                await self.supervisor.terminate_tree(execution.pid, force=True, wait=False)
            self.executions.pop(execution_id, None)
            removed.append(execution_id)
            logger.info(f"Cleaning up old execution: {execution_id}")

        if self.last_execution_id in removed:
            self.last_execution_id = None
        return removed

    async def run_cleanup_loop(self, interval_seconds: float) -> None:
        """Periodic retention sweep; runs until cancelled"""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep_expired()
            except Exception as e:
                logger.error(f"Error during execution cleanup: {e}", exc_info=True)

    async def shutdown(self) -> None:
        """Terminate every live worker process tree"""
        pids = [e.pid for e in self.executions.values() if e.process_alive]
        for pid in pids:
            logger.info(f"Killing worker process tree (PID: {pid})")
        if pids:
            await asyncio.gather(
                *(self.supervisor.terminate_then_kill(pid, self.stop_grace_seconds) for pid in pids),
                return_exceptions=True,
            )
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
