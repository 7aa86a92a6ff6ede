# naming.py
from __future__ import annotations

from dataclasses import dataclass

from .combinations import Combination
from .config import DEFAULT_CONFIG_NAME
from .schema import SettingsSchema

SEPARATOR = "_"


@dataclass(frozen=True)
class ComboNames:
    directory: str
    artifact_base: str

    @property
    def binary(self) -> str:
        return f"{self.artifact_base}.bin"

    @property
    def text_log(self) -> str:
        return f"{self.artifact_base}.txt"


def resolve_names(
    project_name: str,
    schema: SettingsSchema,
    combination: Combination,
    config_name: str | None = None,
) -> ComboNames:
    """
    Deterministic names for one combination.

    directory:     <project>_<token>_<value>_<token>_<value>
    artifact base: <project[:6]>_<token>-<value>_..._<config[:5]>
    """
    dir_parts = [project_name]
    file_parts = [project_name[:6]]

    for setting_id, value in combination:
        setting = schema.setting(setting_id)
        if setting is None:
            continue
        dir_parts.append(f"{setting.naming_token}{SEPARATOR}{value}")
        if value:
            file_parts.append(f"{setting.naming_token}-{value}")

    file_parts.append((config_name or DEFAULT_CONFIG_NAME)[:5])

    return ComboNames(
        directory=SEPARATOR.join(dir_parts),
        artifact_base=SEPARATOR.join(file_parts),
    )
