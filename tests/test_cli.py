import json

import pytest
from click.testing import CliRunner

from buildmatrix.cli import apply_set_options, cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def fast_env(monkeypatch):
    monkeypatch.setenv("BUILDMATRIX_SETTLE_SECONDS", "0")
    monkeypatch.setenv("BUILDMATRIX_SOFT_STOP_SECONDS", "1")
    monkeypatch.setenv("BUILDMATRIX_FORCE_STOP_SECONDS", "1")


class TestApplySetOptions:
    def test_checkbox_ids_accumulate(self, schema):
        values = apply_set_options(
            schema,
            {"languages": ["kz"], "device_mode": "ADC_EXT"},
            ["languages=en", "device_mode=GPIO", "languages=ar"],
        )
        assert values == {"languages": ["en", "ar"], "device_mode": "GPIO"}

    def test_value_may_contain_equals(self, schema):
        assert apply_set_options(schema, {}, ["extra=a=b"]) == {"extra": "a=b"}


class TestInitSchema:
    def test_writes_default(self, runner, tmp_path):
        path = tmp_path / "s.json"
        result = runner.invoke(cli, ["init-schema", "--schema", str(path)])
        assert result.exit_code == 0, result.output
        assert json.loads(path.read_text())["build_settings"][0]["id"] == "device_type"

    def test_refuses_to_overwrite(self, runner, schema_file):
        result = runner.invoke(cli, ["init-schema", "--schema", str(schema_file)])
        assert result.exit_code == 1
        assert "--force" in result.output


class TestPlan:
    def test_lists_combinations(self, runner, schema_file):
        result = runner.invoke(
            cli,
            [
                "plan",
                "--schema", str(schema_file),
                "--project-name", "BlinkyFW",
                "--set", "device_type=4-5",
                "--set", "device_mode=GPIO",
                "--set", "languages=en",
                "--set", "languages=ar",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "PLAN (4 combination(s))" in result.output
        assert "BlinkyFW_type_5_mode_GPIO_lang_ar/Blinky_type-5_mode-GPIO_lang-ar_Debug.bin" in result.output

    def test_reads_values_file_and_project(self, runner, schema_file, fake_project, tmp_path):
        values = tmp_path / "values.json"
        values.write_text(json.dumps({"device_mode": "ADC_EXT", "languages": ["kz"]}))
        result = runner.invoke(
            cli,
            ["plan", "--schema", str(schema_file), "--project", str(fake_project), "--values", str(values), "--show-header"],
        )
        assert result.exit_code == 0, result.output
        assert "BlinkyFW_mode_ADC_EXT_lang_kz" in result.output
        assert "#define LANG_KZ" in result.output

    def test_invalid_values(self, runner, schema_file):
        result = runner.invoke(
            cli, ["plan", "--schema", str(schema_file), "--project-name", "P", "--set", "device_mode=UART"]
        )
        assert result.exit_code == 1
        assert "Invalid build settings" in result.output
        assert "missing: languages" in result.output

    def test_needs_a_project(self, runner, schema_file):
        result = runner.invoke(cli, ["plan", "--schema", str(schema_file)])
        assert result.exit_code == 2


class TestRun:
    def _args(self, schema_file, fake_project, fake_tool, output_dir):
        return [
            "run",
            "--schema", str(schema_file),
            "--project", str(fake_project),
            "--output", str(output_dir),
            "--tool", str(fake_tool),
            "--workspace", str(fake_project.parent),
            "--set", "device_type=7",
            "--set", "device_mode=GPIO",
            "--set", "languages=en",
        ]

    def test_success(self, runner, schema_file, fake_project, fake_tool, output_dir, fake_mode):
        result = runner.invoke(cli, self._args(schema_file, fake_project, fake_tool, output_dir))
        assert result.exit_code == 0, result.output
        assert "BUILD STARTED" in result.output
        assert "Status: SUCCESS" in result.output
        assert "Duration: " in result.output
        assert (output_dir / "BlinkyFW_type_7_mode_GPIO_lang_en" / "Blinky_type-7_mode-GPIO_lang-en_Debug.bin").exists()

    def test_failure_exit_code(self, runner, schema_file, fake_project, fake_tool, output_dir, fake_mode):
        fake_mode("fail")
        result = runner.invoke(cli, self._args(schema_file, fake_project, fake_tool, output_dir) + ["--quiet"])
        assert result.exit_code == 1
        assert "Status: FAILED" in result.output
        assert "process_exit" in result.output

    def test_bad_set_syntax(self, runner, schema_file, fake_project, fake_tool, output_dir):
        result = runner.invoke(cli, self._args(schema_file, fake_project, fake_tool, output_dir) + ["--set", "oops"])
        assert result.exit_code == 2

    def test_broken_schema(self, runner, tmp_path, fake_project, fake_tool, output_dir):
        bad = tmp_path / "bad.json"
        bad.write_text("{")
        result = runner.invoke(cli, self._args(bad, fake_project, fake_tool, output_dir))
        assert result.exit_code == 1
        assert "Invalid settings schema" in result.output

    def test_schema_that_is_not_utf8(self, runner, tmp_path, fake_project, fake_tool, output_dir):
        bad = tmp_path / "bad.json"
        bad.write_bytes(b"\xff\xfe{\x00}\x00")
        result = runner.invoke(cli, self._args(bad, fake_project, fake_tool, output_dir))
        assert result.exit_code == 1
        assert "Invalid settings schema" in result.output

    def test_values_file_that_is_not_utf8(self, runner, schema_file, tmp_path, fake_project, fake_tool, output_dir):
        values = tmp_path / "values.json"
        values.write_bytes(b"\xff\xfe{}")
        args = self._args(schema_file, fake_project, fake_tool, output_dir) + ["--values", str(values)]
        result = runner.invoke(cli, args)
        assert result.exit_code == 2
        assert "could not read values file" in result.output

    def test_debug_names_the_schema(self, runner, schema_file, fake_project, fake_tool, output_dir, fake_mode):
        args = ["--debug"] + self._args(schema_file, fake_project, fake_tool, output_dir)
        result = runner.invoke(cli, args)
        assert result.exit_code == 0, result.output
        assert f"[DEBUG] Using settings schema {schema_file}" in result.output
