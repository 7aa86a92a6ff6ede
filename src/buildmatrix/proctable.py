# proctable.py
# Platform-neutral view of the OS process table. The tree-walk and
# escalation logic in cancel.py is written once against ProcessTable.

from __future__ import annotations

import logging
import signal
import sys
from dataclasses import dataclass
from typing import List, Optional, Protocol

import psutil

logger = logging.getLogger(__name__)

# psutil create times are rounded to clock ticks
CREATE_TIME_TOLERANCE = 0.01


def same_process(actual: Optional[float], expected: Optional[float]) -> bool:
    """True unless both create times are known and disagree (the pid was reused)."""
    if actual is None or expected is None:
        return True
    return abs(actual - expected) <= CREATE_TIME_TOLERANCE


def not_older(create_time: Optional[float], floor: Optional[float]) -> bool:
    """A process started before `floor` cannot descend from the process started at `floor`."""
    if create_time is None or floor is None:
        return True
    return create_time + CREATE_TIME_TOLERANCE >= floor


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    ppid: int
    name: str
    create_time: Optional[float] = None


class ProcessTable(Protocol):
    def list_processes(self) -> List[ProcessInfo]: ...

    def create_time(self, pid: int) -> Optional[float]: ...

    def is_alive(self, pid: int, create_time: Optional[float] = None) -> bool: ...

    def soft_stop(self, pid: int, create_time: Optional[float] = None) -> bool: ...

    def force_stop(self, pid: int, create_time: Optional[float] = None) -> bool: ...


class PsutilProcessTable:
    """
    psutil-backed table. Every call re-reads live OS state; a pid whose
    create_time no longer matches is treated as gone (it was reused).
    """

    def list_processes(self) -> List[ProcessInfo]:
        out: List[ProcessInfo] = []
        for proc in psutil.process_iter(["pid", "ppid", "name", "create_time"]):
            info = proc.info
            out.append(
                ProcessInfo(
                    pid=info["pid"],
                    ppid=info.get("ppid") or 0,
                    name=info.get("name") or "",
                    create_time=info.get("create_time"),
                )
            )
        return out

    def create_time(self, pid: int) -> Optional[float]:
        try:
            return psutil.Process(pid).create_time()
        except psutil.Error:
            return None

    def _lookup(self, pid: int, create_time: Optional[float]) -> Optional[psutil.Process]:
        try:
            proc = psutil.Process(pid)
            if not same_process(proc.create_time(), create_time):
                logger.debug("pid %s was reused, not touching it", pid)
                return None
            return proc
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return None

    def is_alive(self, pid: int, create_time: Optional[float] = None) -> bool:
        proc = self._lookup(pid, create_time)
        if proc is None:
            return False
        try:
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return False

    def _signal(self, pid: int, create_time: Optional[float], action) -> bool:
        proc = self._lookup(pid, create_time)
        if proc is None:
            return False
        try:
            action(proc)
            return True
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return False
        except psutil.AccessDenied as e:
            logger.warning("access denied signalling pid %s: %s", pid, e)
            return False

    def soft_stop(self, pid: int, create_time: Optional[float] = None) -> bool:
        return self._signal(pid, create_time, self._soft)

    def force_stop(self, pid: int, create_time: Optional[float] = None) -> bool:
        return self._signal(pid, create_time, lambda p: p.kill())

    def _soft(self, proc: psutil.Process) -> None:
        proc.terminate()


class PosixProcessTable(PsutilProcessTable):
    """SIGINT as the graceful stop, SIGKILL as the forceful one."""

    def _soft(self, proc: psutil.Process) -> None:
        proc.send_signal(signal.SIGINT)


class WindowsProcessTable(PsutilProcessTable):
    """
    CTRL_BREAK to the process group as the graceful stop (the tool is
    started with CREATE_NEW_PROCESS_GROUP), TerminateProcess as the
    forceful one.
    """

    def _soft(self, proc: psutil.Process) -> None:
        proc.send_signal(signal.CTRL_BREAK_EVENT)


def default_process_table() -> PsutilProcessTable:
    if sys.platform == "win32":
        return WindowsProcessTable()
    return PosixProcessTable()
