"""Build the command line and environment used to launch the worker."""

import logging
import os
import platform
import re
import shlex
import shutil
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

import psutil
import yaml

from orchestrator.types import Execution, ExecutionMode

logger = logging.getLogger(__name__)

COLLECTIONS_PATH_VAR = "ANSIBLE_COLLECTIONS_PATH"

_VENV_BINARY_RE = re.compile(r"[/\\](bin|Scripts)[/\\][^/\\]+?(\.exe)?$")


@dataclass
class WorkerCommand:
    """Everything needed to spawn one worker process"""

    program: str
    args: List[str]
    env: Dict[str, str]
    cwd: Optional[str] = None
    websocket_url: str = ""
    injected_env: Dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> List[str]:
        return [self.program] + self.args

    def display(self) -> str:
        return shlex.join(self.argv)


def split_extra_args(extra_cli_args: str) -> List[str]:
    """Split free-form extra arguments, respecting quoted substrings"""
    if not extra_cli_args or not extra_cli_args.strip():
        return []
    try:
        return shlex.split(extra_cli_args)
    except ValueError as e:
        # Unbalanced quotes: fall back to whitespace splitting
        logger.warning(f"Could not parse extra CLI arguments {extra_cli_args!r}: {e}")
        return extra_cli_args.split()


def detect_host_ip() -> str:
    """First non-loopback IPv4 address of this host, or 127.0.0.1"""
    try:
        interfaces = psutil.net_if_addrs()
    except OSError:
        return "127.0.0.1"

    for addresses in interfaces.values():
        for addr in addresses:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                return addr.address
    return "127.0.0.1"


def detect_container_runtime() -> str:
    """Prefer podman, fall back to docker"""
    return "podman" if shutil.which("podman") else "docker"


def find_webhook_ports(rule_document: str) -> List[int]:
    """Ports declared by event sources in a rule document.

    The document is a YAML list of rulesets; any source configuration
    mapping that carries a ``port`` key is treated as a webhook receiver.
    """
    try:
        parsed = yaml.safe_load(rule_document)
    except yaml.YAMLError as e:
        logger.warning(f"Could not parse rule document for webhook ports: {e}")
        return []

    ports: Set[int] = set()
    if not isinstance(parsed, list):
        return []

    for ruleset in parsed:
        if not isinstance(ruleset, dict):
            continue
        for source in ruleset.get("sources") or []:
            if not isinstance(source, dict):
                continue
            for key, config in source.items():
                if key in ("name", "filters") or not isinstance(config, dict):
                    continue
                port = config.get("port")
                if port is None:
                    continue
                try:
                    ports.add(int(port))
                except (TypeError, ValueError):
                    logger.warning(f"Ignoring non-numeric port {port!r} in source {key}")

    return sorted(ports)


def venv_collections_path(worker_path: str) -> Optional[str]:
    """Collections directory next to a worker installed in a virtualenv, if present"""
    if not _VENV_BINARY_RE.search(worker_path):
        return None
    venv_dir = _VENV_BINARY_RE.sub("", worker_path)
    collections = Path(venv_dir) / "collections"
    if collections.is_dir():
        return str(collections)
    logger.warning(f"Collections directory does not exist: {collections}")
    return None


class WorkerCommandBuilder:
    """Translate an Execution into a WorkerCommand"""

    def __init__(
        self,
        server_port: int,
        worker_binary: str = "ansible-rulebook",
        container_image: str = "quay.io/ansible/ansible-rulebook:main",
        base_env: Optional[Dict[str, str]] = None,
        system: Optional[str] = None,
    ):
        self.server_port = server_port
        self.worker_binary = worker_binary
        self.container_image = container_image
        self.base_env = base_env
        self.system = (system or platform.system()).lower()

    def websocket_url(self, mode: ExecutionMode) -> str:
        if mode == ExecutionMode.CONTAINER:
            return f"ws://{detect_host_ip()}:{self.server_port}"
        return f"ws://localhost:{self.server_port}"

    def worker_args(self, execution: Execution, websocket_url: str) -> List[str]:
        args = ["--worker", "--id", execution.id, "--websocket-url", websocket_url]
        if execution.heartbeat and execution.heartbeat > 0:
            args += ["--heartbeat", str(execution.heartbeat)]
        args += split_extra_args(execution.extra_cli_args)
        return args

    def build(self, execution: Execution) -> WorkerCommand:
        inherited = dict(self.base_env if self.base_env is not None else os.environ)
        websocket_url = self.websocket_url(execution.execution_mode)
        worker_args = self.worker_args(execution, websocket_url)

        if execution.execution_mode == ExecutionMode.CONTAINER:
            return self._build_container(execution, inherited, websocket_url, worker_args)

        worker_path = execution.worker_path or self.worker_binary
        env = {**inherited, **execution.env_vars}
        injected: Dict[str, str] = {}

        if execution.execution_mode == ExecutionMode.VENV:
            collections = venv_collections_path(worker_path)
            if collections:
                injected[COLLECTIONS_PATH_VAR] = collections
                env.update(injected)

        cwd = execution.working_directory.strip() or None
        return WorkerCommand(
            program=worker_path,
            args=worker_args,
            env=env,
            cwd=cwd,
            websocket_url=websocket_url,
            injected_env=injected,
        )

    def _build_container(
        self,
        execution: Execution,
        inherited: Dict[str, str],
        websocket_url: str,
        worker_args: List[str],
    ) -> WorkerCommand:
        runtime = detect_container_runtime()
        args = ["run", "--rm", "-i"]

        if self.system == "darwin":
            # Host networking is unavailable when the runtime lives in a VM
            for port in find_webhook_ports(execution.rule_document):
                args += ["-p", f"{port}:{port}"]
        else:
            args += ["--network", "host"]

        for key, value in execution.env_vars.items():
            args += ["-e", f"{key}={value}"]

        working_directory = execution.working_directory.strip()
        if working_directory:
            args += ["-v", f"{working_directory}:/workspace", "-w", "/workspace"]

        image = execution.container_image or self.container_image
        # Inside the image the worker is on PATH under its bare name
        args += [image, os.path.basename(self.worker_binary)] + worker_args

        return WorkerCommand(
            program=runtime,
            args=args,
            env=inherited,
            cwd=None,
            websocket_url=websocket_url,
        )
