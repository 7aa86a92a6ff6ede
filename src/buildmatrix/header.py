# header.py
from __future__ import annotations

from typing import List

from .combinations import Combination
from .schema import SettingsSchema, parse_range_string

GUARD = "BUILD_CONFIG_H_"
DEBUG_SYMBOL = "DEBUG_SET"  # generated headers are never debug builds


def render_build_config(schema: SettingsSchema, combination: Combination) -> str:
    """
    Render the generated preprocessor header for one combination.

    range    -> `#define SYMBOL <max of the expanded value>` (guarded)
    select / checkbox_group -> `#define` for the chosen option,
                               `#undef` for every other declared option
    """
    lines: List[str] = [f"#ifndef {GUARD}", f"#define {GUARD}", ""]

    for setting in schema.build_settings:
        value = combination.value_for(setting.id)

        if setting.field_type == "range":
            if value is None or not setting.define:
                continue
            numbers = parse_range_string(value, setting.validation.min, setting.validation.max)
            if not numbers:
                continue
            lines.append(f"#ifndef {setting.define}")
            lines.append(f"#define {setting.define} {numbers[-1]}")
            lines.append("#endif")
            continue

        for option in setting.options:
            if not option.define:
                continue
            if value is not None and option.value == value:
                lines.append(f"#define {option.define}")
            else:
                lines.append(f"#undef {option.define}")

    lines.append(f"#undef {DEBUG_SYMBOL}")
    lines.append("")
    lines.append(f"#endif // {GUARD}")
    return "\n".join(lines) + "\n"
