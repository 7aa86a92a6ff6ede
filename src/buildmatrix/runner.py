# runner.py
from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from . import project as project_files
from .buildlog import BuildLog, LogLevel
from .cancel import CancellationController, TerminationReport, TreeTerminator
from .combinations import Combination, generate_combinations
from .config import AGGREGATE_LOG_NAME, HEADLESS_APPLICATION, RunnerOptions
from .errors import (
    ArtifactMissingError,
    BuildCancelled,
    BuildError,
    BuildInProgressError,
    CancellationError,
    GenerationError,
    IoError,
    PathError,
    ProcessExitError,
    ProcessSpawnError,
)
from .header import render_build_config
from .job import JobContext, JobSlot
from .model import BuildOutcome, BuildRequest, BuildState, ProcessHandle
from .naming import resolve_names
from .proctable import ProcessTable, default_process_table
from .schema import SettingsSchema, load_schema
from .validation import unknown_keys, validate_values

logger = logging.getLogger(__name__)

STREAM_LIMIT = 1024 * 1024  # longest single tool output line we buffer

PREPARATORY_STAGES = (
    "Starting project build",
    "Validating build tool path",
    "Checking and creating directories",
    "Checking project files",
    "Extracting project name",
    "Forming build parameter",
)


# ----------------------------------------------------------------------
# Command line of the headless build tool
# ----------------------------------------------------------------------

def build_arguments(request: BuildRequest, project_name: str, header_path: str) -> List[str]:
    target = f"{project_name}/{request.config_name}" if request.config_name else project_name
    args = [
        "-nosplash",
        "-application",
        HEADLESS_APPLICATION,
        "-include",
        header_path,
        "-cleanBuild" if request.clean_build else "-build",
        target,
        "-data",
        request.workspace_path,
    ]
    args.extend(request.extra_argv())
    return args


def format_command(tool: str, args: List[str]) -> str:
    # quoting is for the log line only; the tool gets the argv as-is
    return " ".join(f'"{a}"' if " " in a else a for a in [tool, *args])


def _dir_listing(path: Path) -> List[str]:
    try:
        return sorted(p.name for p in path.iterdir())
    except OSError:
        return []


@dataclass(frozen=True)
class ResolvedPaths:
    project_dir: Path
    output_dir: Path
    tool: Path
    workspace: Path
    header_file: Path
    project_name: str


# ----------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------

class BuildOrchestrator:
    """
    Runs one build request: validate -> expand combinations -> for each
    combination write the header, run the tool, verify and rename the
    binary. Only one build may be active per orchestrator.
    """

    def __init__(
        self,
        options: Optional[RunnerOptions] = None,
        *,
        process_table: Optional[ProcessTable] = None,
        sink: Optional[Callable[[LogLevel, str], None]] = None,
    ):
        self.options = options or RunnerOptions.from_env()
        self.slot = JobSlot()
        self.terminator = TreeTerminator(
            process_table or default_process_table(),
            soft_stop_seconds=self.options.soft_stop_seconds,
            force_stop_seconds=self.options.force_stop_seconds,
            sweep_names=self.options.sweep_names,
        )
        self.controller = CancellationController(self.terminator)
        self._sink = sink
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ---- cancellation entry points ----

    async def cancel(self) -> Optional[TerminationReport]:
        """Cancel the active build, if any. Safe to call repeatedly."""
        return await self.controller.request_cancel(self.slot.active)

    def cancel_threadsafe(self) -> Optional[concurrent.futures.Future]:
        """cancel() for callers on another thread than the build's loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return None
        return asyncio.run_coroutine_threadsafe(self.cancel(), loop)

    # ---- public API ----

    async def run(self, request: BuildRequest, schema: Optional[SettingsSchema] = None) -> BuildOutcome:
        self._loop = asyncio.get_running_loop()
        log = BuildLog(sink=self._sink)

        try:
            ctx = self.slot.open(request, log)
        except BuildInProgressError as e:
            log.error(str(e))
            return BuildOutcome(
                success=False,
                result=str(e),
                logs=tuple(log.lines),
                state=BuildState.FAILED,
                error_kind=e.kind,
            )

        try:
            return await self._execute(ctx, schema)
        finally:
            self.slot.close(ctx)

    # ---- state machine ----

    async def _execute(self, ctx: JobContext, schema: Optional[SettingsSchema]) -> BuildOutcome:
        request = ctx.request
        stages: List[str] = []
        built = 0

        try:
            ctx.transition(BuildState.VALIDATING)
            if schema is None:
                schema = load_schema(self.options.schema_path)
            self._log_inputs(ctx, schema)
            validate_values(schema, request.settings)
            paths = self._resolve_paths(ctx)
            ctx.sweep_names = (*self.options.sweep_names, paths.tool.stem.lower())

            if ctx.cancelled:
                raise BuildCancelled("Build was cancelled before starting")

            # path checks above passed; record them as progress only now
            ctx.log.info("Starting project build")
            stages.extend(PREPARATORY_STAGES)

            ctx.transition(BuildState.EXPANDING)
            combinations = generate_combinations(schema, request.settings)
            if not combinations:
                raise GenerationError(
                    "No build combinations generated. At least one build parameter has no values."
                )
            ctx.log.info(f"{len(combinations)} build combination(s) to build")

            for index, combination in enumerate(combinations, 1):
                if ctx.cancelled:
                    raise BuildCancelled("Build cancelled", combination=combination.describe())
                await self._build_combination(ctx, schema, paths, combination, index, len(combinations), stages)
                built += 1

            if ctx.cancelled:
                raise BuildCancelled("Build cancelled after the last combination finished")

            stages.append("Writing logs")
            stages.append("Build process completed")
            message = "Build process completed successfully"
            ctx.log.info(message)
            ctx.transition(BuildState.COMPLETED)
            self._write_aggregate_log(ctx)
            return self._outcome(ctx, stages, True, message, None, built)

        except BuildCancelled as e:
            ctx.transition(BuildState.CANCELLED)
            message = str(e)
            ctx.log.info(message)
            kind = e.kind
            if ctx.termination_error is not None:
                message = f"{message}; {ctx.termination_error}"
                kind = ctx.termination_error.kind
            self._write_aggregate_log(ctx)
            return self._outcome(ctx, stages, False, message, kind, built)

        except BuildError as e:
            ctx.transition(BuildState.FAILED)
            ctx.log.error(str(e))
            for key, value in e.details.items():
                ctx.log.debug(f"{key}: {value}")
            self._write_aggregate_log(ctx)
            return self._outcome(ctx, stages, False, str(e), e.kind, built)

        except Exception as e:
            logger.exception("unexpected error during build")
            ctx.transition(BuildState.FAILED)
            message = f"Unexpected error: {e}"
            ctx.log.error(message)
            self._write_aggregate_log(ctx)
            return self._outcome(ctx, stages, False, message, type(e).__name__, built)

    def _outcome(
        self,
        ctx: JobContext,
        stages: List[str],
        success: bool,
        message: str,
        kind: Optional[str],
        built: int,
    ) -> BuildOutcome:
        return BuildOutcome(
            success=success,
            result=message,
            logs=tuple(ctx.log.lines),
            stages=tuple(stages),
            state=ctx.state,
            error_kind=kind,
            combinations_built=built,
            duration_seconds=round(time.time() - ctx.started_at, 3),
        )

    # ---- validating ----

    def _log_inputs(self, ctx: JobContext, schema: SettingsSchema) -> None:
        settings = ctx.request.settings
        ctx.log.debug(f"Received settings:\n{json.dumps(settings, indent=2, default=str)}")
        ctx.log.debug(
            "Loaded build settings schema: "
            + ", ".join(f"{s.id} ({s.field_type})" for s in schema.build_settings)
        )
        for key in unknown_keys(schema, settings):
            ctx.log.warning(f"Setting '{key}' is not defined in the schema, ignoring it")
        for setting in schema.build_settings:
            if setting.id not in settings:
                ctx.log.debug(f"Setting '{setting.id}' is missing in settings object")

    def _resolve_paths(self, ctx: JobContext) -> ResolvedPaths:
        request = ctx.request
        fields = {
            "project path": request.project_path,
            "output directory": request.output_dir,
            "build tool path": request.tool_path,
            "workspace path": request.workspace_path,
        }
        empty = [name for name, value in fields.items() if not value or not value.strip()]
        if empty:
            raise PathError(f"Required paths are empty: {', '.join(empty)}")

        workspace = Path(request.workspace_path).expanduser().resolve()
        if not workspace.is_dir():
            raise PathError(f"Workspace '{request.workspace_path}' does not exist")
        ctx.log.info(f"Using workspace: {workspace}")

        tool = Path(request.tool_path).expanduser().resolve()
        if not tool.is_file():
            raise PathError(f"Build tool '{request.tool_path}' not found")

        project_dir = Path(request.project_path).expanduser().resolve()
        if not project_dir.is_dir():
            raise PathError(f"Project directory '{request.project_path}' not found")

        output_dir = Path(request.output_dir).expanduser().resolve()
        if not output_dir.is_dir():
            raise PathError(f"Output directory '{request.output_dir}' not found")

        project_files.check_descriptors(project_dir)
        configurations = project_files.build_configurations(project_dir)
        if request.effective_config not in configurations:
            raise PathError(f"Configuration '{request.effective_config}' not found in .cproject")

        name = request.project_name or project_files.project_name(project_dir)
        ctx.log.info(f"Project: {name}, configuration: {request.effective_config}")

        return ResolvedPaths(
            project_dir=project_dir,
            output_dir=output_dir,
            tool=tool,
            workspace=workspace,
            header_file=project_dir / self.options.header_relative_path,
            project_name=name,
        )

    # ---- per combination ----

    async def _build_combination(
        self,
        ctx: JobContext,
        schema: SettingsSchema,
        paths: ResolvedPaths,
        combination: Combination,
        index: int,
        total: int,
        stages: List[str],
    ) -> None:
        request = ctx.request
        label = combination.describe()
        names = resolve_names(paths.project_name, schema, combination, request.config_name)
        combo_dir = paths.output_dir / names.directory
        bin_dst = combo_dir / names.binary
        ctx.log.info(f"[{index}/{total}] Building combination {label}")

        # ---- preparing ----
        ctx.transition(BuildState.PREPARING)
        try:
            combo_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IoError(f"Error creating directory '{combo_dir}': {e}", combination=label) from e

        stages.append(f"Checking and removing existing artifact for combination {label}")
        if bin_dst.exists():
            try:
                bin_dst.unlink()
            except OSError as e:
                raise IoError(f"Error removing existing file '{bin_dst}': {e}", combination=label) from e

        stages.append(f"Generating build_config.h for combination {label}")
        header = render_build_config(schema, combination)
        try:
            paths.header_file.parent.mkdir(parents=True, exist_ok=True)
            paths.header_file.write_text(header, encoding="utf-8")
        except OSError as e:
            raise IoError(f"Error writing '{paths.header_file}': {e}", combination=label) from e

        # ---- launching / running ----
        if ctx.cancelled:
            raise BuildCancelled("Build cancelled", combination=label)

        ctx.transition(BuildState.LAUNCHING)
        stages.append(f"Launching build for combination {label}")
        args = build_arguments(request, paths.project_name, self.options.header_relative_path)
        ctx.log.info(f"Executing command: {format_command(str(paths.tool), args)}")

        exit_code, stdout_lines, stderr_lines = await self._run_tool(ctx, paths, args, label)
        self._write_combo_log(ctx, combo_dir / names.text_log, stdout_lines, stderr_lines)

        level = LogLevel.INFO if exit_code == 0 else LogLevel.ERROR
        ctx.log.log(f"Build process exited with code: {exit_code}", level)
        if exit_code != 0:
            raise ProcessExitError(
                f"Build failed with exit code: {exit_code}", combination=label, exit_code=exit_code
            )

        # ---- verifying ----
        ctx.transition(BuildState.VERIFYING)
        await asyncio.sleep(self.options.settle_seconds)

        stages.append(f"Checking build directory contents for combination {label}")
        build_dir = paths.project_dir / request.effective_config
        artifact = build_dir / f"{paths.project_name.lower()}.bin"
        try:
            size = artifact.stat().st_size
        except OSError as e:
            raise ArtifactMissingError(
                f"Output file '{artifact.name}' not found in '{build_dir}'",
                combination=label,
                details={"expected": str(artifact), "found": _dir_listing(build_dir)},
            ) from e
        if size == 0:
            raise ArtifactMissingError(
                f"Output file '{artifact}' is empty", combination=label, details={"expected": str(artifact)}
            )
        ctx.log.info(f"Output file size: {size} bytes")

        # ---- finalizing ----
        ctx.transition(BuildState.FINALIZING)
        stages.append(f"Renaming output file for combination {label}")
        try:
            shutil.move(str(artifact), str(bin_dst))
        except OSError as e:
            raise IoError(f"Error moving '{artifact}': {e}", combination=label) from e
        ctx.log.info(f"Saved {bin_dst}")

    # ---- subprocess ----

    async def _run_tool(
        self, ctx: JobContext, paths: ResolvedPaths, args: List[str], label: str
    ) -> Tuple[int, List[str], List[str]]:
        kwargs = {}
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW
        else:
            kwargs["start_new_session"] = True

        try:
            process = await asyncio.create_subprocess_exec(
                str(paths.tool),
                *args,
                cwd=str(paths.project_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
                **kwargs,
            )
        except OSError as e:
            raise ProcessSpawnError(f"Failed to start build tool process: {e}", combination=label) from e

        handle = ProcessHandle(
            process=process,
            pid=process.pid,
            create_time=self.terminator.table.create_time(process.pid),
        )
        async with ctx.process_lock:
            ctx.process = handle
        ctx.log.debug(f"Build tool started with PID {process.pid}")

        ctx.transition(BuildState.RUNNING)
        stdout_lines: List[str] = []
        stderr_lines: List[str] = []
        capture = asyncio.ensure_future(self._capture(process, stdout_lines, stderr_lines))
        cancelled = asyncio.ensure_future(ctx.token.wait())

        try:
            done, _ = await asyncio.wait({capture, cancelled}, return_when=asyncio.FIRST_COMPLETED)
            if capture in done and not ctx.cancelled:
                return capture.result(), stdout_lines, stderr_lines

            if capture not in done:
                capture.cancel()
                await self._stop_cancelled(ctx, handle)
            raise BuildCancelled("Build cancelled", combination=label)
        finally:
            cancelled.cancel()
            if not capture.done():
                capture.cancel()
            await asyncio.gather(capture, cancelled, return_exceptions=True)
            if process.returncode is None:
                # our own task was cancelled or failed mid-run; leave nothing behind
                await self.controller.terminate_active(ctx)
            async with ctx.process_lock:
                if ctx.process is handle:
                    ctx.process = None

    async def _capture(
        self, process: asyncio.subprocess.Process, stdout_lines: List[str], stderr_lines: List[str]
    ) -> int:
        await asyncio.gather(
            _read_lines(process.stdout, "STDOUT", stdout_lines),
            _read_lines(process.stderr, "STDERR", stderr_lines),
        )
        return await process.wait()

    async def _stop_cancelled(self, ctx: JobContext, handle: ProcessHandle) -> None:
        # request_cancel may still hold the lock while it kills the tree;
        # this waits for it and only acts if the process survived
        await self.controller.terminate_active(ctx)
        timeout = self.options.soft_stop_seconds + self.options.force_stop_seconds
        try:
            await asyncio.wait_for(handle.process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            if ctx.termination_error is None:
                ctx.termination_error = CancellationError(
                    f"Process PID {handle.pid} did not exit after cancellation"
                )
            ctx.log.error(str(ctx.termination_error))

    # ---- log files ----

    def _write_combo_log(self, ctx: JobContext, path: Path, stdout_lines: List[str], stderr_lines: List[str]) -> None:
        try:
            with path.open("w", encoding="utf-8") as f:
                for line in stdout_lines:
                    f.write(line + "\n")
                for line in stderr_lines:
                    f.write(line + "\n")
        except OSError as e:
            ctx.log.warning(f"Failed to create log file '{path}': {e}")

    def _write_aggregate_log(self, ctx: JobContext) -> bool:
        output = (ctx.request.output_dir or "").strip()
        if not output:
            return False
        output_dir = Path(output).expanduser()
        if not output_dir.is_dir():
            return False

        path = output_dir / AGGREGATE_LOG_NAME
        try:
            path.write_text("".join(line + "\n" for line in ctx.log.lines), encoding="utf-8")
        except OSError as e:
            ctx.log.warning(str(IoError(f"Failed to write logs to '{path}': {e}")))
            return False
        return True


async def _read_lines(stream: Optional[asyncio.StreamReader], tag: str, sink: List[str]) -> None:
    if stream is None:
        return
    while True:
        try:
            raw = await stream.readline()
        except ValueError:
            sink.append(f"[{tag}] <line longer than {STREAM_LIMIT} bytes dropped>")
            continue
        if not raw:
            break
        sink.append(f"[{tag}] {raw.decode('utf-8', errors='replace').strip()}")
