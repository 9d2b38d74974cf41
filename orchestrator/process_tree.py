"""Termination of a process together with all of its descendants.

The worker may start its own sub-processes (a container runtime, for
example), so descendants are signalled before the root. Terminating a pid
that is already gone is a successful no-op.
"""

import asyncio
import logging
import time
from typing import List, Optional

import psutil

from orchestrator.logging_utils import log_with_context

logger = logging.getLogger(__name__)


class ProcessTreeSupervisor:
    """Graceful-then-forced termination of process trees"""

    def __init__(self, wait_timeout: float = 5.0, poll_interval: float = 0.05):
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval

    @staticmethod
    def _signal(proc: psutil.Process, force: bool) -> bool:
        """Send TERM or KILL to one process. Returns False if it was already gone."""
        try:
            if force:
                proc.kill()
            else:
                proc.terminate()
            return True
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied as e:
            log_with_context(
                logger,
                logging.WARNING,
                "Access denied while signalling process",
                {"pid": proc.pid, "force": force, "error": str(e)},
            )
            return False

    @staticmethod
    def _is_gone(proc: psutil.Process) -> bool:
        try:
            return (
                not proc.is_running()
                or proc.status() == psutil.STATUS_ZOMBIE
            )
        except psutil.NoSuchProcess:
            return True

    async def _wait_gone(self, procs: List[psutil.Process], timeout: float) -> List[psutil.Process]:
        """Poll until every process is gone or the timeout expires; return survivors.

        Polling is used instead of ``psutil.wait_procs`` so that our own child
        processes are never reaped here; asyncio's child watcher owns that.
        """
        deadline = time.monotonic() + timeout
        alive = [p for p in procs if not self._is_gone(p)]
        while alive and time.monotonic() < deadline:
            await asyncio.sleep(self.poll_interval)
            alive = [p for p in alive if not self._is_gone(p)]
        return alive

    def descendants(self, pid: int) -> List[psutil.Process]:
        try:
            return psutil.Process(pid).children(recursive=True)
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return []

    async def terminate_tree(
        self, pid: Optional[int], force: bool = False, wait: bool = True
    ) -> bool:
        """Terminate all descendants of ``pid`` and then ``pid`` itself.

        Args:
            pid: Root process id; None is accepted and ignored
            force: Send SIGKILL instead of SIGTERM
            wait: Wait (bounded by ``wait_timeout``) for the tree to disappear

        Returns:
            True if no process of the tree is left running afterwards
        """
        if pid is None:
            return True

        try:
            root = psutil.Process(pid)
        except psutil.NoSuchProcess:
            log_with_context(
                logger, logging.INFO, "Process already terminated", {"pid": pid}
            )
            return True

        children = self.descendants(pid)
        log_with_context(
            logger,
            logging.INFO,
            "Terminating process tree",
            {
                "pid": pid,
                "force": force,
                "descendants": [c.pid for c in children],
            },
        )

        for child in children:
            self._signal(child, force)

        if not self._signal(root, force):
            log_with_context(
                logger, logging.INFO, "Process already terminated", {"pid": pid}
            )

        if not wait:
            return True

        survivors = await self._wait_gone(children + [root], self.wait_timeout)
        if survivors:
            log_with_context(
                logger,
                logging.WARNING,
                "Processes still alive after termination signal",
                {"pid": pid, "survivors": [p.pid for p in survivors], "force": force},
            )
            return False
        return True

    async def terminate_then_kill(self, pid: Optional[int], grace: float) -> bool:
        """Send SIGTERM to the tree, escalating to SIGKILL after ``grace`` seconds"""
        if pid is None:
            return True

        children = self.descendants(pid)
        await self.terminate_tree(pid, force=False, wait=False)

        try:
            root = [psutil.Process(pid)]
        except psutil.NoSuchProcess:
            root = []

        survivors = await self._wait_gone(children + root, grace)
        if not survivors:
            return True

        log_with_context(
            logger,
            logging.WARNING,
            "Escalating to forced termination",
            {"pid": pid, "survivors": [p.pid for p in survivors]},
        )
        for proc in survivors:
            self._signal(proc, force=True)
        return not await self._wait_gone(survivors, self.wait_timeout)
