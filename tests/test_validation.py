import pytest

from buildmatrix.errors import ValidationError
from buildmatrix.validation import unknown_keys, validate_values


class TestValidateValues:
    def test_valid_values_resolve(self, schema):
        resolved = validate_values(
            schema, {"device_type": "4-5", "device_mode": "GPIO", "languages": ["en"]}
        )
        assert resolved == {"device_type": ["4", "5"], "device_mode": ["GPIO"], "languages": ["en"]}

    def test_missing_required_settings_are_aggregated(self, schema):
        with pytest.raises(ValidationError) as exc:
            validate_values(schema, {"device_type": "4"})
        err = exc.value
        assert err.missing == ["device_mode", "languages"]
        assert "device_mode, languages" in err.message
        assert "Please fill all required build settings" in err.message

    def test_unknown_option(self, schema):
        with pytest.raises(ValidationError) as exc:
            validate_values(schema, {"device_mode": "UART", "languages": ["en"]})
        assert "device_mode" in exc.value.problems
        assert "UART" in exc.value.problems["device_mode"]

    def test_bad_range_and_missing_reported_together(self, schema):
        with pytest.raises(ValidationError) as exc:
            validate_values(schema, {"device_type": "2-40", "languages": ["en"]})
        assert exc.value.missing == ["device_mode"]
        assert set(exc.value.problems) == {"device_type"}

    def test_checkbox_min_selected(self, schema):
        with pytest.raises(ValidationError) as exc:
            validate_values(schema, {"device_mode": "GPIO", "languages": ["", " "]})
        assert exc.value.missing == ["languages"]

    def test_range_is_optional(self, schema):
        validate_values(schema, {"device_mode": "GPIO", "languages": ["kz"]})

    def test_wrong_type_is_a_problem(self, schema):
        with pytest.raises(ValidationError) as exc:
            validate_values(schema, {"device_mode": "GPIO", "languages": "en"})
        assert "languages" in exc.value.problems


def test_unknown_keys(schema):
    assert unknown_keys(schema, {"device_mode": "GPIO", "zeta": 1, "alpha": 2}) == ["alpha", "zeta"]
