"""Probes of the host environment: worker binary, prerequisites, versions.

Each probe is an independent coroutine; composite checks join them with
``asyncio.gather`` and aggregate the results.
"""

import asyncio
import logging
import os
import re
import shutil
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from orchestrator.types import ExecutionMode
from orchestrator.worker_command import detect_container_runtime

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 60.0


@dataclass
class BinaryCheckResult:
    found: bool
    error: Optional[str]
    is_full_path: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"found": self.found, "error": self.error, "isFullPath": self.is_full_path}


@dataclass
class PrerequisitesResult:
    valid: bool
    missing: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class VersionInfo:
    version: str = ""
    executableLocation: str = ""
    droolsJpyVersion: str = ""
    javaHome: str = ""
    javaVersion: str = ""
    ansibleCoreVersion: str = ""
    pythonVersion: str = ""
    pythonExecutable: str = ""
    platform: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


_VERSION_FIELDS = {
    "Executable location": "executableLocation",
    "Drools_jpy version": "droolsJpyVersion",
    "Java home": "javaHome",
    "Java version": "javaVersion",
    "Ansible core version": "ansibleCoreVersion",
    "Python version": "pythonVersion",
    "Python executable": "pythonExecutable",
    "Platform": "platform",
}

_SEPARATOR_RE = re.compile(r"^-+\s+-+$")


async def run_command(
    *argv: str, timeout: float = COMMAND_TIMEOUT
) -> Tuple[int, str, str]:
    """Run a program and capture its output. Missing programs give return code 127."""
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return 127, "", str(e)

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return -1, "", f"Command timed out after {timeout} seconds: {' '.join(argv)}"

    return (
        process.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


def check_worker_binary(path: str = "ansible-rulebook") -> BinaryCheckResult:
    """Check that a worker binary is on PATH or exists and is executable"""
    is_full_path = os.sep in path or "/" in path
    if not is_full_path:
        found = shutil.which(path) is not None
        return BinaryCheckResult(
            found=found,
            error=None
            if found
            else f"Command '{path}' not found in PATH. Please configure the full path in Settings.",
            is_full_path=False,
        )

    found = os.path.isfile(path) and os.access(path, os.X_OK)
    return BinaryCheckResult(
        found=found,
        error=None if found else f"Binary not found or not executable at: {path}",
        is_full_path=True,
    )


async def _probe_which(name: str) -> Optional[str]:
    return shutil.which(name)


async def _probe_works(*argv: str) -> bool:
    code, _, _ = await run_command(*argv)
    return code == 0


async def check_prerequisites(mode: ExecutionMode) -> PrerequisitesResult:
    """Check that the tools an execution mode needs are installed"""
    missing: List[str] = []
    warnings: List[str] = []

    if mode == ExecutionMode.CONTAINER:
        podman, docker = await asyncio.gather(_probe_which("podman"), _probe_which("docker"))
        runtime = "podman" if podman else "docker" if docker else None
        if runtime is None:
            missing.append("podman or docker")
        elif not await _probe_works(runtime, "--version"):
            warnings.append(f"{runtime} found but not working")
        return PrerequisitesResult(valid=not missing, missing=missing, warnings=warnings)

    python3, java = await asyncio.gather(_probe_which("python3"), _probe_which("java"))
    probes = []
    if python3 is None:
        missing.append("python3")
    else:
        probes.append(("python3 found but not working", _probe_works("python3", "--version")))
    if java is None:
        missing.append("java")
    else:
        probes.append(("java found but not working", _probe_works("java", "-version")))
    if mode == ExecutionMode.VENV and python3 is not None:
        probes.append(
            (
                "pip not available (python3 -m pip failed)",
                _probe_works("python3", "-m", "pip", "--version"),
            )
        )

    results = await asyncio.gather(*(probe for _, probe in probes))
    for (warning, _), ok in zip(probes, results):
        if not ok:
            warnings.append(warning)

    return PrerequisitesResult(valid=not missing, missing=missing, warnings=warnings)


def parse_version_output(output: str, location_prefix: str = "") -> VersionInfo:
    """Parse ``<worker> --version`` output into its named fields"""
    lines = output.splitlines()
    info = VersionInfo(version=lines[0].strip() if lines else "")
    if location_prefix:
        info.executableLocation = location_prefix

    for line in lines:
        name, sep, value = line.strip().partition("=")
        if not sep:
            continue
        attr = _VERSION_FIELDS.get(name.strip())
        if attr is None:
            continue
        value = value.strip()
        if attr == "executableLocation" and location_prefix:
            value = f"{location_prefix} ({value})"
        setattr(info, attr, value)
    return info


def parse_collection_list(output: str) -> List[Dict[str, str]]:
    """Parse ``ansible-galaxy collection list`` output into name/version pairs"""
    collections = []
    in_section = False

    for line in output.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        if _SEPARATOR_RE.match(trimmed):
            in_section = True
            continue
        if trimmed.startswith("Collection") and "Version" in trimmed:
            continue
        if in_section or "." in trimmed:
            parts = trimmed.split()
            if len(parts) >= 2 and "." in parts[0]:
                collections.append({"name": parts[0], "version": parts[1]})

    return collections


def _galaxy_path(worker_path: str) -> str:
    directory = os.path.dirname(worker_path)
    return os.path.join(directory, "ansible-galaxy") if directory else "ansible-galaxy"


async def get_worker_version(
    mode: ExecutionMode, container_image: str, worker_path: str
) -> Dict[str, Any]:
    if mode == ExecutionMode.CONTAINER:
        runtime = detect_container_runtime()
        argv = [runtime, "run", "--rm", container_image, os.path.basename(worker_path), "--version"]
        prefix = f"Container: {container_image}"
    else:
        argv = [worker_path, "--version"]
        prefix = ""

    logger.info(f"Getting worker version: {' '.join(argv)}")
    code, stdout, stderr = await run_command(*argv)
    if code != 0:
        error = stderr.strip() or f"Exit code {code}"
        return {
            "success": False,
            "version": "Unknown",
            "fullVersion": "Unable to retrieve version information",
            "error": error,
        }

    info = parse_version_output(stdout, prefix)
    return {
        "success": True,
        "version": info.version,
        "fullVersion": stdout.strip(),
        "versionInfo": info.to_dict(),
    }


async def get_collection_list(
    mode: ExecutionMode, container_image: str, worker_path: str
) -> Dict[str, Any]:
    if mode == ExecutionMode.CONTAINER:
        runtime = detect_container_runtime()
        argv = [runtime, "run", "--rm", container_image, "ansible-galaxy", "collection", "list"]
    else:
        argv = [_galaxy_path(worker_path), "collection", "list"]

    logger.info(f"Getting collection list: {' '.join(argv)}")
    code, stdout, stderr = await run_command(*argv)
    if code != 0:
        return {
            "success": False,
            "collections": [],
            "error": stderr.strip() or f"Exit code {code}",
        }

    collections = parse_collection_list(stdout)
    logger.info(f"Found {len(collections)} collections")
    return {"success": True, "collections": collections}
