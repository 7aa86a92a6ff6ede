import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from buildmatrix.errors import SchemaError
from buildmatrix.schema import (
    DEFAULT_SCHEMA,
    RangeParseError,
    SettingDefinition,
    SettingsSchema,
    load_schema,
    parse_range_string,
)


class TestParseRangeString:
    def test_mixed_list_and_ranges(self):
        assert parse_range_string("4,7-9,12", 4, 32) == [4, 7, 8, 9, 12]

    def test_whitespace_and_empty_parts(self):
        assert parse_range_string(" 5 , ,6- 8,", 4, 32) == [5, 6, 7, 8]

    def test_overlaps_are_collapsed(self):
        assert parse_range_string("4-6,5,6-7", 4, 32) == [4, 5, 6, 7]

    def test_single_value_range(self):
        assert parse_range_string("9-9", 4, 32) == [9]

    def test_empty_string(self):
        assert parse_range_string("", 4, 32) == []

    @pytest.mark.parametrize("text", ["9-7", "3", "30-33", "x", "4-a", "1.5", "-4", "４"])
    def test_rejects_bad_tokens(self, text):
        with pytest.raises(RangeParseError):
            parse_range_string(text, 4, 32)

    def test_one_bad_token_fails_whole_string(self):
        with pytest.raises(RangeParseError):
            parse_range_string("4,5,99", 4, 32)


class TestSchemaModels:
    def test_default_schema_parses(self, schema):
        assert [s.id for s in schema.build_settings] == ["device_type", "device_mode", "languages"]
        mode = schema.setting("device_mode")
        assert mode.naming_token == "mode"
        assert mode.option_values() == ["GPIO", "ADC_EXT"]
        assert not mode.is_optional
        assert not schema.setting("languages").is_optional
        assert schema.setting("device_type").is_optional

    def test_unknown_setting_lookup(self, schema):
        assert schema.setting("nope") is None

    def test_duplicate_ids_rejected(self):
        doc = {"build_settings": [DEFAULT_SCHEMA["build_settings"][1]] * 2}
        with pytest.raises(PydanticValidationError):
            SettingsSchema.model_validate(doc)

    def test_range_requires_bounds(self):
        with pytest.raises(PydanticValidationError):
            SettingDefinition.model_validate({"id": "x", "value": "x", "field_type": "range"})

    def test_range_bounds_ordered(self):
        with pytest.raises(PydanticValidationError):
            SettingDefinition.model_validate(
                {"id": "x", "value": "x", "field_type": "range", "validation": {"min": 5, "max": 1}}
            )

    def test_duplicate_option_values_rejected(self):
        with pytest.raises(PydanticValidationError):
            SettingDefinition.model_validate(
                {
                    "id": "x",
                    "value": "x",
                    "field_type": "select",
                    "options": [{"value": "a"}, {"value": "a"}],
                }
            )


class TestLoadSchema:
    def test_missing_file_gets_default(self, tmp_path):
        path = tmp_path / "nested" / "build_settings.json"
        schema = load_schema(path)
        assert path.exists()
        assert json.loads(path.read_text()) == DEFAULT_SCHEMA
        assert len(schema.build_settings) == 3

    def test_bad_json(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text("{ not json")
        with pytest.raises(SchemaError):
            load_schema(path)

    def test_invalid_field_type(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text(json.dumps({"build_settings": [{"id": "a", "value": "a", "field_type": "slider"}]}))
        with pytest.raises(SchemaError) as exc:
            load_schema(path)
        assert exc.value.kind == "schema"

    def test_file_that_is_not_utf8(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_bytes(b"\xff\xfe{\x00}\x00")
        with pytest.raises(SchemaError) as exc:
            load_schema(path)
        assert "Error reading schema" in str(exc.value)
