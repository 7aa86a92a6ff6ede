# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional


@dataclass(eq=False)
class BuildError(Exception):
    """
    Structured build error with enough context for:
      - the result message handed back to the caller
      - clean CLI output
      - knowing which combination was being built
    """
    message: str
    combination: Optional[str] = None
    details: dict = field(default_factory=dict)

    kind: ClassVar[str] = "build_error"

    def __str__(self) -> str:
        text = self.message
        if self.combination:
            text = f"{text} (combination: {self.combination})"
        return text


@dataclass(eq=False)
class SchemaError(BuildError):
    kind: ClassVar[str] = "schema"


@dataclass(eq=False)
class ValidationError(BuildError):
    missing: List[str] = field(default_factory=list)
    problems: Dict[str, str] = field(default_factory=dict)

    kind: ClassVar[str] = "validation"


@dataclass(eq=False)
class PathError(BuildError):
    kind: ClassVar[str] = "path"


@dataclass(eq=False)
class GenerationError(BuildError):
    kind: ClassVar[str] = "generation"


@dataclass(eq=False)
class ProcessSpawnError(BuildError):
    kind: ClassVar[str] = "process_spawn"


@dataclass(eq=False)
class ProcessExitError(BuildError):
    exit_code: int = -1

    kind: ClassVar[str] = "process_exit"


@dataclass(eq=False)
class ArtifactMissingError(BuildError):
    kind: ClassVar[str] = "artifact_missing"


@dataclass(eq=False)
class IoError(BuildError):
    kind: ClassVar[str] = "io"


@dataclass(eq=False)
class CancellationError(BuildError):
    """The tracked process was still alive after every escalation."""
    kind: ClassVar[str] = "cancellation"


@dataclass(eq=False)
class BuildCancelled(BuildError):
    kind: ClassVar[str] = "cancelled"


@dataclass(eq=False)
class BuildInProgressError(BuildError):
    kind: ClassVar[str] = "busy"
