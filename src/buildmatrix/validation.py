# validation.py
from __future__ import annotations

from typing import Dict, List

from .combinations import RawValueMap, resolve_candidates
from .errors import ValidationError
from .schema import SettingDefinition, SettingsSchema


def check_setting(setting: SettingDefinition, raw) -> List[str]:
    """
    Apply the field-type rule for one setting and return its candidates.
    Raises ValueError describing the first problem found.
    """
    values = resolve_candidates(setting, raw)

    if setting.field_type in ("select", "checkbox_group") and setting.options:
        allowed = setting.option_values()
        for v in values:
            if v not in allowed:
                raise ValueError(f"Invalid value '{v}' for {setting.id}. Valid options: {allowed}")

    return values


def required_count(setting: SettingDefinition) -> int:
    if setting.field_type == "select":
        return 1
    return setting.min_selected


def validate_values(schema: SettingsSchema, raw_values: RawValueMap) -> Dict[str, List[str]]:
    """
    Check every schema setting against the raw value map.

    Returns the resolved candidates per setting id. Raises a single
    ValidationError listing every missing required setting and every
    malformed value.
    """
    missing: List[str] = []
    problems: Dict[str, str] = {}
    resolved: Dict[str, List[str]] = {}

    for setting in schema.build_settings:
        try:
            values = check_setting(setting, raw_values.get(setting.id))
        except ValueError as e:
            problems[setting.id] = str(e)
            continue

        resolved[setting.id] = values
        if len(values) < required_count(setting):
            missing.append(setting.id)

    if missing or problems:
        parts = []
        if missing:
            parts.append(
                f"No values provided for required build parameters: {', '.join(missing)}. "
                "Please fill all required build settings."
            )
        for sid, msg in problems.items():
            parts.append(f"Validation error for {sid}: {msg}")
        raise ValidationError(" ".join(parts), missing=missing, problems=problems)

    return resolved


def unknown_keys(schema: SettingsSchema, raw_values: RawValueMap) -> List[str]:
    known = {s.id for s in schema.build_settings}
    return sorted(k for k in raw_values if k not in known)
