# cli.py
from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable

import click

from buildmatrix import project as project_files
from buildmatrix.combinations import expected_count, generate_combinations
from buildmatrix.config import RunnerOptions
from buildmatrix.errors import BuildError, ValidationError
from buildmatrix.header import render_build_config
from buildmatrix.model import BuildRequest, BuildState
from buildmatrix.naming import resolve_names
from buildmatrix.runner import BuildOrchestrator
from buildmatrix.schema import SettingsSchema, load_schema, write_default_schema
from buildmatrix.ui.console import Console, get_console, set_console
from buildmatrix.validation import validate_values

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


# ----------------------------------------------------------------------
# Raw value map assembly
# ----------------------------------------------------------------------

def load_values_file(path: str) -> Dict[str, Any]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise click.BadParameter(f"could not read values file {path}: {e}", param_hint="--values")
    if not isinstance(data, dict):
        raise click.BadParameter("values file must hold a JSON object", param_hint="--values")
    return data


def apply_set_options(schema: SettingsSchema, values: Dict[str, Any], pairs: Iterable[str]) -> Dict[str, Any]:
    """
    Merge `ID=VALUE` pairs into the raw value map.

    checkbox_group ids accumulate into a list; every other id takes the
    last value given.
    """
    out = dict(values)
    seen_checkbox = set()
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected ID=VALUE, got '{pair}'", param_hint="--set")
        key, value = pair.split("=", 1)
        key = key.strip()
        setting = schema.setting(key)
        if setting is not None and setting.field_type == "checkbox_group":
            # --set replaces whatever --values said for this id
            if key not in seen_checkbox:
                out[key] = []
                seen_checkbox.add(key)
            out[key].append(value)
        else:
            out[key] = value
    return out


def _load_schema_or_exit(path: str) -> SettingsSchema:
    console = get_console()
    console.print_debug(f"Using settings schema {path}")
    try:
        return load_schema(path)
    except BuildError as e:
        console.print_error("Invalid settings schema", str(e))
        sys.exit(EXIT_FAILED)


def _quiet_build_logger() -> None:
    # the console sink already prints build log lines
    build_logger = logging.getLogger("buildmatrix.build")
    if not any(isinstance(h, logging.NullHandler) for h in build_logger.handlers):
        build_logger.addHandler(logging.NullHandler())
    build_logger.propagate = False


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show Debug log lines and stack traces)",
)
@click.pass_context
def cli(ctx, debug):
    """buildmatrix - build firmware for every combination of build settings."""
    console = Console(debug=debug)
    set_console(console)
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    _quiet_build_logger()
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--project", "project_path", required=True, help="IDE project directory (holds .project/.cproject)")
@click.option("--output", "output_dir", required=True, help="Existing directory receiving per-combination folders")
@click.option("--tool", "tool_path", required=True, help="Headless build tool executable")
@click.option("--workspace", "workspace_path", required=True, help="IDE workspace directory")
@click.option("--project-name", default=None, help="Project name (defaults to the name in .project)")
@click.option("--config", "config_name", default=None, help="Build configuration (defaults to Debug)")
@click.option("--clean/--no-clean", default=False, show_default=True, help="Clean build instead of incremental")
@click.option("--extra-args", default=None, help="Extra tool arguments, split on whitespace")
@click.option("--set", "set_pairs", multiple=True, metavar="ID=VALUE", help="Setting value (repeatable)")
@click.option("--values", "values_file", default=None, help="JSON file with the raw value map")
@click.option("--schema", "schema_path", default=None, help="Settings schema file (JSON)")
@click.option("--quiet", is_flag=True, default=False, help="Only print the final result")
@click.pass_context
def run(
    ctx,
    project_path,
    output_dir,
    tool_path,
    workspace_path,
    project_name,
    config_name,
    clean,
    extra_args,
    set_pairs,
    values_file,
    schema_path,
    quiet,
):
    """Build every combination of the given setting values."""
    console = get_console()
    console.quiet = quiet

    options = RunnerOptions.from_env()
    if schema_path:
        options = replace(options, schema_path=schema_path)
    schema = _load_schema_or_exit(options.schema_path)

    values = load_values_file(values_file) if values_file else {}
    values = apply_set_options(schema, values, set_pairs)

    request = BuildRequest(
        project_path=project_path,
        output_dir=output_dir,
        tool_path=tool_path,
        workspace_path=workspace_path,
        project_name=project_name,
        config_name=config_name,
        clean_build=clean,
        extra_args=extra_args,
        settings=values,
    )

    if not quiet:
        console.print_build_started(
            project=project_name or Path(project_path).name,
            config=request.effective_config,
            combination_count=expected_count(schema, values),
        )

    orchestrator = BuildOrchestrator(options, sink=console.print_log_line)
    try:
        outcome = asyncio.run(_run_with_signals(orchestrator, request, schema))
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_CANCELLED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILED)

    console.print_stages(list(outcome.stages))
    console.print_result(
        outcome.success, outcome.result, outcome.combinations_built, outcome.error_kind, outcome.duration_seconds
    )

    if outcome.success:
        sys.exit(EXIT_OK)
    if outcome.state is BuildState.CANCELLED:
        sys.exit(EXIT_CANCELLED)
    sys.exit(EXIT_FAILED)


async def _run_with_signals(orchestrator: BuildOrchestrator, request: BuildRequest, schema: SettingsSchema):
    console = get_console()
    loop = asyncio.get_running_loop()
    pending = []
    installed = []

    def _on_signal(signum):
        console.print_info(f"\nReceived signal {signum}, cancelling build...")
        pending.append(asyncio.ensure_future(orchestrator.cancel()))

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
            installed.append(sig)
        except NotImplementedError:
            # Windows event loops: plain handler, hop onto the loop thread-safely
            signal.signal(sig, lambda signum, frame: orchestrator.cancel_threadsafe())

    try:
        outcome = await orchestrator.run(request, schema)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return outcome
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


@cli.command()
@click.option("--project", "project_path", default=None, help="Project directory to read the project name from")
@click.option("--project-name", default=None, help="Project name used for derived names")
@click.option("--config", "config_name", default=None, help="Build configuration (defaults to Debug)")
@click.option("--set", "set_pairs", multiple=True, metavar="ID=VALUE", help="Setting value (repeatable)")
@click.option("--values", "values_file", default=None, help="JSON file with the raw value map")
@click.option("--schema", "schema_path", default=None, help="Settings schema file (JSON)")
@click.option("--show-header", is_flag=True, default=False, help="Print the generated build_config.h per combination")
def plan(project_path, project_name, config_name, set_pairs, values_file, schema_path, show_header):
    """Validate values and list the combinations a run would build."""
    console = get_console()
    options = RunnerOptions.from_env()
    schema = _load_schema_or_exit(schema_path or options.schema_path)

    values = load_values_file(values_file) if values_file else {}
    values = apply_set_options(schema, values, set_pairs)

    if not project_name:
        if not project_path:
            raise click.UsageError("one of --project or --project-name is required")
        try:
            project_name = project_files.project_name(project_path)
        except BuildError as e:
            console.print_error("Cannot read project", str(e))
            sys.exit(EXIT_FAILED)

    try:
        validate_values(schema, values)
    except ValidationError as e:
        details = [f"missing: {sid}" for sid in e.missing]
        details += [f"{sid}: {msg}" for sid, msg in e.problems.items()]
        console.print_error("Invalid build settings", e.message, details=details)
        sys.exit(EXIT_FAILED)

    combinations = generate_combinations(schema, values)
    console.print_header(f"PLAN ({len(combinations)} combination(s))")
    for index, combination in enumerate(combinations, 1):
        names = resolve_names(project_name, schema, combination, config_name)
        console.print_plan_combination(index, combination.describe(), names.directory, names.binary)
        if show_header:
            console.print_info(render_build_config(schema, combination))


@cli.command("init-schema")
@click.option("--schema", "schema_path", default=None, help="Where to write the schema (JSON)")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file")
def init_schema(schema_path, force):
    """Write the built-in default settings schema."""
    console = get_console()
    path = Path(schema_path or RunnerOptions.from_env().schema_path)
    if path.exists() and not force:
        console.print_error(
            "Schema file exists",
            f"{path} already exists.",
            suggestion="Use --force to overwrite it.",
        )
        sys.exit(EXIT_FAILED)
    try:
        write_default_schema(path)
    except BuildError as e:
        console.print_error("Could not write schema", str(e))
        sys.exit(EXIT_FAILED)
    console.print_info(f"Wrote default schema to {path}")


if __name__ == "__main__":
    cli()
