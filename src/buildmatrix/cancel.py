# cancel.py
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import CancellationError
from .proctable import ProcessInfo, ProcessTable, not_older, same_process

if TYPE_CHECKING:
    from .job import JobContext

logger = logging.getLogger(__name__)

POLL_SECONDS = 0.1


# ---------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------

class CancellationToken:
    """
    Shared cancelled flag plus a one-shot wake-all event.

    cancel() may be called from any thread; waiters on the owning loop
    are woken through call_soon_threadsafe.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._event = asyncio.Event()
        self._flag = False
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._flag

    def cancel(self) -> bool:
        """Set the flag. Returns True only for the call that flipped it."""
        with self._lock:
            if self._flag:
                return False
            self._flag = True

        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if loop is None or loop is running:
            self._event.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._event.set)
        return True

    async def wait(self) -> None:
        await self._event.wait()


# ---------------------------------------------------------------------
# Process-tree termination
# ---------------------------------------------------------------------

@dataclass
class TerminationReport:
    root_pid: int
    root_found: bool = True
    root_alive: bool = False
    stopped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    swept: List[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.root_alive and not self.failed


def _descendants(
    snapshot: Iterable[ProcessInfo], parents: Iterable[int]
) -> List[ProcessInfo]:
    """Depth-first walk of the parent links starting below `parents`."""
    children: Dict[int, List[ProcessInfo]] = {}
    for info in snapshot:
        children.setdefault(info.ppid, []).append(info)

    out: List[ProcessInfo] = []
    seen: set[int] = set()
    stack = list(parents)
    while stack:
        pid = stack.pop()
        for child in children.get(pid, []):
            if child.pid in seen or child.pid == pid:
                continue
            seen.add(child.pid)
            out.append(child)
            stack.append(child.pid)
    return out


class TreeTerminator:
    """
    Stop a process and everything it spawned:

      1. snapshot the process table, remember the descendants
      2. graceful stop, wait, escalate to force kill (root first)
      3. re-snapshot, union with newly visible descendants, stop each
      4. sweep processes named like the build tool that started after the root
    """

    def __init__(
        self,
        table: ProcessTable,
        *,
        soft_stop_seconds: float = 5.0,
        force_stop_seconds: float = 2.0,
        sweep_names: Tuple[str, ...] = (),
    ):
        self.table = table
        self.soft_stop_seconds = soft_stop_seconds
        self.force_stop_seconds = force_stop_seconds
        self.sweep_names = tuple(n.lower() for n in sweep_names if n)

    async def _wait_gone(self, pid: int, create_time: Optional[float], timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            if not self.table.is_alive(pid, create_time):
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(POLL_SECONDS)

    async def stop_one(
        self,
        pid: int,
        create_time: Optional[float] = None,
        *,
        log: Callable[[str], object] = logger.info,
        warn: Callable[[str], object] = logger.warning,
    ) -> bool:
        """Graceful stop, bounded wait, forceful kill. True when the process is gone."""
        if not self.table.is_alive(pid, create_time):
            return True

        if self.table.soft_stop(pid, create_time):
            log(f"Sent graceful stop to process PID {pid}")
            if await self._wait_gone(pid, create_time, self.soft_stop_seconds):
                log(f"Process PID {pid} stopped after graceful stop")
                return True
            log(f"Process PID {pid} still running after graceful stop, killing")

        self.table.force_stop(pid, create_time)
        if await self._wait_gone(pid, create_time, self.force_stop_seconds):
            log(f"Process PID {pid} killed")
            return True

        warn(f"Failed to terminate process PID {pid}")
        return False

    async def terminate_tree(
        self,
        root_pid: int,
        root_create_time: Optional[float] = None,
        *,
        log: Callable[[str], object] = logger.info,
        warn: Callable[[str], object] = logger.warning,
        sweep_names: Optional[Tuple[str, ...]] = None,
    ) -> TerminationReport:
        report = TerminationReport(root_pid=root_pid)
        names = self.sweep_names if sweep_names is None else tuple(n.lower() for n in sweep_names if n)

        before = self.table.list_processes()
        root = next((p for p in before if p.pid == root_pid), None)
        floor = root_create_time if root_create_time is not None else (root.create_time if root else None)
        trusted = root is not None and same_process(root.create_time, root_create_time)

        if root is None:
            log(f"Process PID {root_pid} not found, it may have exited already")
            report.root_found = False
        elif not trusted:
            log(f"Process PID {root_pid} now belongs to {root.name}, not touching it or its children")
            report.root_found = False
        elif not self.table.is_alive(root_pid, root_create_time):
            log(f"Process PID {root_pid} has already exited")
            report.root_found = False
        else:
            log(f"Terminating process PID {root_pid} ({root.name})")

        known: Dict[int, ProcessInfo] = {}
        if trusted:
            known = {p.pid: p for p in _descendants(before, [root_pid]) if not_older(p.create_time, floor)}

        if report.root_found:
            if await self.stop_one(root_pid, root_create_time, log=log, warn=warn):
                report.stopped.append(root_pid)
            else:
                report.failed.append(root_pid)

        # re-walk only from parents whose identity still checks out; the
        # root pid may already be reaped and handed to another process
        parents = [pid for pid, info in known.items() if self.table.is_alive(pid, info.create_time)]
        if report.root_found and self.table.is_alive(root_pid, root_create_time):
            parents.append(root_pid)
        if parents:
            for info in _descendants(self.table.list_processes(), parents):
                if not_older(info.create_time, floor):
                    known.setdefault(info.pid, info)

        for info in known.values():
            log(f"Terminating child process PID {info.pid} ({info.name})")
            if await self.stop_one(info.pid, info.create_time, log=log, warn=warn):
                report.stopped.append(info.pid)
            else:
                report.failed.append(info.pid)

        if names:
            for info in self.table.list_processes():
                if info.pid in known or info.pid == root_pid:
                    continue
                if floor is None or info.create_time is None or not not_older(info.create_time, floor):
                    continue
                name = info.name.lower()
                if not any(n in name for n in names):
                    continue
                log(f"Found remaining process PID {info.pid} ({info.name})")
                if await self.stop_one(info.pid, info.create_time, log=log, warn=warn):
                    report.swept.append(info.pid)
                else:
                    report.failed.append(info.pid)

        report.root_alive = report.root_found and self.table.is_alive(root_pid, root_create_time)
        return report


# ---------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------

class CancellationController:
    """
    Single cancellation entry point for the active job.

    request_cancel() marks the job cancelled, wakes the orchestrator and
    kills the tracked process tree. It never raises for termination
    problems; those are logged and returned in the report.
    """

    def __init__(self, terminator: TreeTerminator):
        self.terminator = terminator

    async def request_cancel(self, ctx: Optional[JobContext]) -> Optional[TerminationReport]:
        if ctx is None:
            return None
        if ctx.token.cancel():
            ctx.log.info("Cancellation requested")
        else:
            ctx.log.debug("Cancellation already requested")
        return await self.terminate_active(ctx)

    async def terminate_active(self, ctx: JobContext) -> Optional[TerminationReport]:
        async with ctx.process_lock:
            handle = ctx.process
            if handle is None or handle.exited:
                ctx.log.debug("No active build process to terminate")
                return None

            report = await self.terminator.terminate_tree(
                handle.pid, handle.create_time, log=ctx.log.info, warn=ctx.log.warning,
                sweep_names=ctx.sweep_names or None,
            )

            if report.root_alive:
                err = CancellationError(f"Process PID {handle.pid} is still running after kill attempts")
                ctx.log.error(str(err))
                ctx.termination_error = err
            else:
                if report.failed:
                    ctx.log.warning(f"Could not confirm termination of PIDs {report.failed}")
                ctx.log.info("Build process terminated")
                ctx.process = None
            return report
