# job.py
from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .buildlog import BuildLog
from .cancel import CancellationToken
from .errors import BuildInProgressError, CancellationError
from .model import BuildRequest, BuildState, ProcessHandle


@dataclass
class JobContext:
    """
    State of the one in-flight build, passed explicitly through the
    orchestrator and the cancellation controller.

    `process` is only read or replaced while holding `process_lock`.
    """
    request: BuildRequest
    log: BuildLog
    token: CancellationToken
    state: BuildState = BuildState.IDLE
    process: Optional[ProcessHandle] = None
    process_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    termination_error: Optional[CancellationError] = None
    sweep_names: Tuple[str, ...] = ()
    started_at: float = field(default_factory=time.time)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def transition(self, state: BuildState) -> None:
        if state is not self.state:
            self.log.debug(f"State {self.state.value} -> {state.value}")
            self.state = state


class JobSlot:
    """Holds at most one active JobContext; a second open() is rejected."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Optional[JobContext] = None

    @property
    def active(self) -> Optional[JobContext]:
        return self._active

    def open(self, request: BuildRequest, log: BuildLog) -> JobContext:
        with self._lock:
            if self._active is not None:
                raise BuildInProgressError("Another build is already running")
            # called from the orchestrator's coroutine; the token wakes that loop
            token = CancellationToken(asyncio.get_running_loop())
            ctx = JobContext(request=request, log=log, token=token)
            self._active = ctx
            return ctx

    def close(self, ctx: JobContext) -> None:
        with self._lock:
            if self._active is ctx:
                self._active = None
