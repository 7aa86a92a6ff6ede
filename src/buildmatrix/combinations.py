# combinations.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Tuple

from .schema import SettingDefinition, SettingsSchema, parse_range_string

RawValueMap = Mapping[str, Any]


@dataclass(frozen=True)
class Combination:
    """One concrete assignment of values; one external build per combination."""
    pairs: Tuple[Tuple[str, str], ...] = ()

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self.pairs)

    def __len__(self) -> int:
        return len(self.pairs)

    def value_for(self, setting_id: str) -> Optional[str]:
        for sid, value in self.pairs:
            if sid == setting_id:
                return value
        return None

    def describe(self) -> str:
        if not self.pairs:
            return "<defaults>"
        return ", ".join(f"{sid}={value}" for sid, value in self.pairs)


# ---------------------------------------------------------------------
# Candidate values per setting
# ---------------------------------------------------------------------

def resolve_candidates(setting: SettingDefinition, raw: Any) -> List[str]:
    """
    Strict resolution of one raw value into the ordered candidate list.
    Raises ValueError on a value of the wrong shape or a bad range string.
    """
    if raw is None:
        return []

    if setting.field_type == "range":
        if isinstance(raw, (list, tuple)):
            if not all(isinstance(v, str) for v in raw):
                raise ValueError(f"Expected string for range setting {setting.id}")
            raw = ",".join(raw)
        if not isinstance(raw, str):
            raise ValueError(f"Expected string for range setting {setting.id}")
        bounds = setting.validation
        return [str(n) for n in parse_range_string(raw, bounds.min, bounds.max)]

    if setting.field_type == "select":
        if not isinstance(raw, str):
            raise ValueError(f"Expected string for select setting {setting.id}")
        return [raw] if raw.strip() else []

    # checkbox_group
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"Expected array for checkbox_group setting {setting.id}")
    values: List[str] = []
    for v in raw:
        if not isinstance(v, str):
            raise ValueError(f"Expected strings in checkbox_group setting {setting.id}")
        if v.strip() and v.strip() not in values:
            values.append(v.strip())
    return values


def candidate_values(setting: SettingDefinition, raw: Any) -> List[str]:
    """All-or-nothing: a malformed value yields no candidates."""
    try:
        return resolve_candidates(setting, raw)
    except ValueError:
        return []


# ---------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------

def generate_combinations(schema: SettingsSchema, raw_values: RawValueMap) -> List[Combination]:
    """
    Cartesian product over the schema's settings, in declaration order.

    Optional settings without values contribute a placeholder so they do
    not collapse the product; a required setting without values yields
    an empty result (validation rejects that case before we get here).
    """
    acc: List[Tuple[Tuple[str, str], ...]] = [()]

    for setting in schema.build_settings:
        values: Sequence[Optional[str]] = candidate_values(setting, raw_values.get(setting.id))
        if not values and setting.is_optional:
            values = [None]

        expanded: List[Tuple[Tuple[str, str], ...]] = []
        for partial in acc:
            for value in values:
                if value is None:
                    expanded.append(partial)
                else:
                    expanded.append(partial + ((setting.id, value),))
        acc = expanded

    return [Combination(pairs) for pairs in acc]


def expected_count(schema: SettingsSchema, raw_values: RawValueMap) -> int:
    total = 1
    for setting in schema.build_settings:
        n = len(candidate_values(setting, raw_values.get(setting.id)))
        if n == 0 and setting.is_optional:
            n = 1
        total *= n
    return total
