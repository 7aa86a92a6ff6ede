# model.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import DEFAULT_CONFIG_NAME


@dataclass(frozen=True)
class BuildRequest:
    """
    Everything the caller supplies for one build run.

    `settings` is the raw value map: setting id -> string (range/select)
    or list of strings (checkbox_group). Missing keys are fine for
    optional settings.
    """
    project_path: str
    output_dir: str
    tool_path: str
    workspace_path: str
    project_name: Optional[str] = None
    config_name: Optional[str] = None
    clean_build: bool = False
    extra_args: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def effective_config(self) -> str:
        return self.config_name or DEFAULT_CONFIG_NAME

    def extra_argv(self) -> List[str]:
        # split on whitespace only, no shell quoting
        return (self.extra_args or "").split()


class BuildState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    EXPANDING = "expanding"
    PREPARING = "preparing"
    LAUNCHING = "launching"
    RUNNING = "running"
    VERIFYING = "verifying"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ProcessHandle:
    """The one live external build process of a job."""
    process: asyncio.subprocess.Process
    pid: int
    create_time: Optional[float] = None  # guards against pid reuse

    @property
    def exited(self) -> bool:
        return self.process.returncode is not None


@dataclass(frozen=True)
class BuildOutcome:
    """Result of one build run. Every path, failure included, ends here."""
    success: bool
    result: str
    logs: Tuple[str, ...] = ()
    stages: Tuple[str, ...] = ()
    state: BuildState = BuildState.IDLE
    error_kind: Optional[str] = None
    combinations_built: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "result": self.result,
            "logs": list(self.logs),
            "stages": list(self.stages),
            "state": self.state.value,
            "error_kind": self.error_kind,
            "combinations_built": self.combinations_built,
            "duration_seconds": self.duration_seconds,
        }
