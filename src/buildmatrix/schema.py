# schema.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from .errors import SchemaError

logger = logging.getLogger(__name__)

FieldType = Literal["range", "select", "checkbox_group"]


# ---------------------------------------------------------------------
# Schema models
# ---------------------------------------------------------------------

class SettingOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str = ""
    value: str
    define: Optional[str] = None
    description: Optional[str] = None


class RangeValidation(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int
    max: int

    @model_validator(mode="after")
    def _ordered(self) -> RangeValidation:
        if self.min > self.max:
            raise ValueError(f"validation min {self.min} > max {self.max}")
        return self


class SettingDefinition(BaseModel):
    """
    One configurable build parameter.

    `value` in the schema file is the naming token used in derived
    directory and file names; it is exposed as `naming_token`.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    label: str = ""
    naming_token: str = Field(alias="value")
    description: str = ""
    field_type: FieldType
    format: str = ""
    define: Optional[str] = None
    options: List[SettingOption] = Field(default_factory=list)
    validation: Optional[RangeValidation] = None
    exclusive: Optional[bool] = None
    min_selected: int = 0

    @model_validator(mode="after")
    def _check(self) -> SettingDefinition:
        values = [o.value for o in self.options]
        dupes = sorted({v for v in values if values.count(v) > 1})
        if dupes:
            raise ValueError(f"setting '{self.id}' has duplicate option values: {dupes}")
        if self.field_type == "range" and self.validation is None:
            raise ValueError(f"range setting '{self.id}' needs validation bounds")
        if self.min_selected < 0:
            raise ValueError(f"setting '{self.id}' has negative min_selected")
        return self

    @property
    def is_optional(self) -> bool:
        # select always carries exactly one value
        return self.field_type != "select" and self.min_selected == 0

    def option_values(self) -> List[str]:
        return [o.value for o in self.options]


class SettingsSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str = "1.0"
    build_settings: List[SettingDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> SettingsSchema:
        ids = [s.id for s in self.build_settings]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ValueError(f"duplicate setting ids: {dupes}")
        return self

    def setting(self, setting_id: str) -> Optional[SettingDefinition]:
        for s in self.build_settings:
            if s.id == setting_id:
                return s
        return None


# ---------------------------------------------------------------------
# Range strings ("4,7-9,12")
# ---------------------------------------------------------------------

class RangeParseError(ValueError):
    pass


def parse_range_string(text: str, lo: int, hi: int) -> List[int]:
    """
    Expand a comma separated list of integers and `a-b` ranges into the
    sorted set of included integers. Any bad token fails the whole string.
    """
    result: set[int] = set()
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_s, end_s = part.split("-", 1)
            start = _to_int(start_s)
            end = _to_int(end_s)
            if start > end:
                raise RangeParseError(f"Range start {start} > end {end}")
            if start < lo or end > hi:
                raise RangeParseError(f"Range {start}-{end} out of bounds [{lo}, {hi}]")
            result.update(range(start, end + 1))
        else:
            n = _to_int(part)
            if n < lo or n > hi:
                raise RangeParseError(f"Value {n} out of bounds [{lo}, {hi}]")
            result.add(n)
    return sorted(result)


def _to_int(token: str) -> int:
    token = token.strip()
    if not (token.isascii() and token.isdigit()):
        raise RangeParseError(f"Invalid number '{token}'")
    return int(token)


# ---------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------

DEFAULT_SCHEMA = {
    "version": "1.0",
    "build_settings": [
        {
            "id": "device_type",
            "label": "Device Type",
            "value": "type",
            "define": "DEVICE_TYPE",
            "description": "Device type number (4-32). Each number represents a specific hardware variant.",
            "field_type": "range",
            "format": "number",
            "validation": {"min": 4, "max": 32},
        },
        {
            "id": "device_mode",
            "label": "Device Mode",
            "value": "mode",
            "description": "Operating mode that determines device behavior and available features",
            "field_type": "select",
            "format": "string",
            "options": [
                {"label": "GPIO_EN", "value": "GPIO", "define": "DEVICE_MODE_GPIO", "description": "Any text"},
                {"label": "adc_ext", "value": "ADC_EXT", "define": "DEVICE_MODE_ADC_EXT", "description": "Any text"},
            ],
        },
        {
            "id": "languages",
            "label": "Languages",
            "value": "lang",
            "description": "Supported interface languages. At least one language must be selected.",
            "field_type": "checkbox_group",
            "format": "string[]",
            "min_selected": 1,
            "options": [
                {"label": "English", "value": "en", "define": "LANG_EN", "description": "English language support"},
                {"label": "Armenian", "value": "ar", "define": "LANG_AR", "description": "Armenian language support"},
                {"label": "Kazakh", "value": "kz", "define": "LANG_KZ", "description": "Kazakh language support"},
            ],
        },
    ],
}


def default_schema() -> SettingsSchema:
    return SettingsSchema.model_validate(DEFAULT_SCHEMA)


def write_default_schema(path: str | Path) -> Path:
    p = Path(path)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(DEFAULT_SCHEMA, indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        raise SchemaError(f"Failed to create default schema '{p}': {e}") from e
    return p


def load_schema(path: str | Path) -> SettingsSchema:
    """
    Load the settings schema from a JSON file.

    A missing file is first materialised with the built-in default.
    Any read/parse/validation problem raises SchemaError.
    """
    p = Path(path)
    if not p.exists():
        logger.info("schema %s not found, writing default", p)
        write_default_schema(p)

    try:
        content = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SchemaError(f"Error reading schema '{p}': {e}") from e

    try:
        return SettingsSchema.model_validate_json(content)
    except PydanticValidationError as e:
        raise SchemaError(f"Error parsing schema '{p}': {e}") from e
