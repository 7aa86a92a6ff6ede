# config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple


def _names(raw: str) -> Tuple[str, ...]:
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())


SCHEMA_PATH = os.environ.get("BUILDMATRIX_SCHEMA", "build_settings.json")
SETTLE_SECONDS = float(os.environ.get("BUILDMATRIX_SETTLE_SECONDS", "2"))
SOFT_STOP_SECONDS = float(os.environ.get("BUILDMATRIX_SOFT_STOP_SECONDS", "5"))
FORCE_STOP_SECONDS = float(os.environ.get("BUILDMATRIX_FORCE_STOP_SECONDS", "2"))
SWEEP_NAMES = _names(os.environ.get("BUILDMATRIX_SWEEP_NAMES", "stm32cubeide,arm-none-eabi"))

HEADER_RELATIVE_PATH = "Inc/build_config.h"
DEFAULT_CONFIG_NAME = "Debug"
AGGREGATE_LOG_NAME = "build_log.txt"
HEADLESS_APPLICATION = "org.eclipse.cdt.managedbuilder.core.headlessbuild"


@dataclass(frozen=True)
class RunnerOptions:
    """Knobs for one orchestrator instance. Defaults come from the environment."""
    schema_path: str = SCHEMA_PATH
    settle_seconds: float = SETTLE_SECONDS
    soft_stop_seconds: float = SOFT_STOP_SECONDS
    force_stop_seconds: float = FORCE_STOP_SECONDS
    sweep_names: Tuple[str, ...] = SWEEP_NAMES
    header_relative_path: str = HEADER_RELATIVE_PATH

    @classmethod
    def from_env(cls) -> RunnerOptions:
        # re-read so a changed environment is picked up after import
        return cls(
            schema_path=os.environ.get("BUILDMATRIX_SCHEMA", SCHEMA_PATH),
            settle_seconds=float(os.environ.get("BUILDMATRIX_SETTLE_SECONDS", SETTLE_SECONDS)),
            soft_stop_seconds=float(os.environ.get("BUILDMATRIX_SOFT_STOP_SECONDS", SOFT_STOP_SECONDS)),
            force_stop_seconds=float(os.environ.get("BUILDMATRIX_FORCE_STOP_SECONDS", FORCE_STOP_SECONDS)),
            sweep_names=_names(os.environ["BUILDMATRIX_SWEEP_NAMES"])
            if "BUILDMATRIX_SWEEP_NAMES" in os.environ
            else SWEEP_NAMES,
        )
