from .combinations import Combination, generate_combinations
from .config import RunnerOptions
from .errors import BuildError
from .header import render_build_config
from .model import BuildOutcome, BuildRequest, BuildState
from .naming import resolve_names
from .runner import BuildOrchestrator
from .schema import SettingsSchema, load_schema
from .validation import validate_values

__all__ = [
    "BuildError",
    "BuildOrchestrator",
    "BuildOutcome",
    "BuildRequest",
    "BuildState",
    "Combination",
    "RunnerOptions",
    "SettingsSchema",
    "generate_combinations",
    "load_schema",
    "render_build_config",
    "resolve_names",
    "validate_values",
]
