"""Console output formatting utilities for buildmatrix."""

from __future__ import annotations

import sys
from typing import List, Optional

from buildmatrix.buildlog import LogLevel


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show Debug log lines and stack traces
            quiet: If True, suppress live log lines (summary only)
        """
        self.debug = debug
        self.quiet = quiet

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_build_started(
        self,
        project: str,
        config: str,
        combination_count: int,
    ) -> None:
        """Print build start information."""
        print("\nBUILD STARTED")
        print(f"Project: {project}")
        print(f"Configuration: {config}")
        print(f"Combinations: {combination_count}")
        print()

    def print_log_line(self, level: LogLevel, line: str) -> None:
        """Live sink for BuildLog lines."""
        if self.quiet:
            return
        if level is LogLevel.DEBUG and not self.debug:
            return
        stream = sys.stderr if level in (LogLevel.WARNING, LogLevel.ERROR) else sys.stdout
        print(line, file=stream)

    def print_plan_combination(self, index: int, description: str, directory: str, binary: str) -> None:
        """Print one planned combination."""
        print(f"  {index:>3}. {description}")
        print(f"       -> {directory}/{binary}")

    def print_stages(self, stages: List[str]) -> None:
        if not stages:
            return
        self.print_header("STAGES")
        for stage in stages:
            print(f"  {stage}")

    def print_result(
        self,
        success: bool,
        message: str,
        built: int,
        error_kind: Optional[str] = None,
        duration: Optional[float] = None,
    ) -> None:
        """Print final result summary."""
        print("\n" + "=" * 40)
        print("RESULT")
        print("=" * 40)
        print(f"  Status: {'SUCCESS' if success else 'FAILED'}")
        print(f"  Combinations built: {built}")
        if duration is not None:
            print(f"  Duration: {duration:.1f}s")
        if error_kind:
            print(f"  Error kind: {error_kind}")
        print(f"  {message}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
