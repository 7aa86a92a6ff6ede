"""Shared fixtures: settings schema, fake IDE project, fake headless build tool."""

import stat
import sys
import textwrap
from pathlib import Path

import pytest

from buildmatrix.config import RunnerOptions
from buildmatrix.schema import SettingsSchema, default_schema, write_default_schema

PROJECT_NAME = "BlinkyFW"

PROJECT_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<projectDescription>
    <name>{PROJECT_NAME}</name>
    <comment></comment>
    <projects></projects>
</projectDescription>
"""

CPROJECT_XML = """<?xml version="1.0" encoding="UTF-8" standalone="no"?>
<cproject storage_type_id="org.eclipse.cdt.core.XmlProjectDescriptionStorage">
    <storageModule moduleId="org.eclipse.cdt.core.settings">
        <cconfiguration id="cfg.debug">
            <storageModule moduleId="cdtBuildSystem">
                <configuration name="Debug" artifactName="${ProjName}"/>
            </storageModule>
        </cconfiguration>
        <cconfiguration id="cfg.release">
            <storageModule moduleId="cdtBuildSystem">
                <configuration name="Release" artifactName="${ProjName}"/>
            </storageModule>
        </cconfiguration>
    </storageModule>
</cproject>
"""

# Stand-in for the headless IDE. Behaviour is picked by FAKEIDE_MODE:
#   ok    write <cwd>/<config>/<name>.bin (contents: the generated header)
#   fail  print an error and exit 2
#   nobin exit 0 without producing a binary
#   hang  start a sleeping child, record both pids, sleep forever
FAKE_TOOL = textwrap.dedent(
    """\
    #!{python}
    import os
    import subprocess
    import sys
    import time
    from pathlib import Path

    args = sys.argv[1:]
    mode = os.environ.get("FAKEIDE_MODE", "ok")
    calls = os.environ.get("FAKEIDE_CALLS")
    if calls:
        with open(calls, "a") as f:
            f.write(" ".join(args) + "\\n")

    flag = "-cleanBuild" if "-cleanBuild" in args else "-build"
    target = args[args.index(flag) + 1]
    name, _, config = target.partition("/")
    config = config or "Debug"
    header = Path(args[args.index("-include") + 1])

    print("fakeide building " + target)
    sys.stderr.write("fakeide warning: nothing to see\\n")
    sys.stdout.flush()

    if mode == "fail":
        print("error: compilation failed")
        sys.exit(2)

    if mode == "hang":
        child = subprocess.Popen(
            [sys.executable, "-c", "import time; time.sleep(600)"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        Path(os.environ["FAKEIDE_PIDS"]).write_text("%d %d" % (os.getpid(), child.pid))
        while True:
            time.sleep(0.1)

    if mode == "ok":
        out = Path.cwd() / config
        out.mkdir(parents=True, exist_ok=True)
        (out / (name.lower() + ".bin")).write_bytes(header.read_bytes())

    sys.exit(0)
    """
)


@pytest.fixture
def schema() -> SettingsSchema:
    return default_schema()


@pytest.fixture
def schema_file(tmp_path) -> Path:
    return write_default_schema(tmp_path / "build_settings.json")


@pytest.fixture
def fake_project(tmp_path) -> Path:
    project = tmp_path / "workspace" / PROJECT_NAME
    project.mkdir(parents=True)
    (project / ".project").write_text(PROJECT_XML, encoding="utf-8")
    (project / ".cproject").write_text(CPROJECT_XML, encoding="utf-8")
    (project / "Debug").mkdir()
    return project


@pytest.fixture
def fake_tool(tmp_path) -> Path:
    if sys.platform == "win32":
        pytest.skip("fake build tool relies on a shebang line")
    tool = tmp_path / "bin" / "fakeide"
    tool.parent.mkdir()
    tool.write_text(FAKE_TOOL.replace("{python}", sys.executable), encoding="utf-8")
    tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return tool


@pytest.fixture
def output_dir(tmp_path) -> Path:
    out = tmp_path / "out"
    out.mkdir()
    return out


@pytest.fixture
def fake_mode(monkeypatch):
    def _set(mode: str) -> None:
        monkeypatch.setenv("FAKEIDE_MODE", mode)
    _set("ok")
    return _set


@pytest.fixture
def options(schema_file) -> RunnerOptions:
    return RunnerOptions(
        schema_path=str(schema_file),
        settle_seconds=0,
        soft_stop_seconds=1.0,
        force_stop_seconds=1.0,
        sweep_names=(),
    )


@pytest.fixture
def make_request(fake_project, fake_tool, output_dir):
    from buildmatrix.model import BuildRequest

    def _make(settings, **overrides):
        fields = dict(
            project_path=str(fake_project),
            output_dir=str(output_dir),
            tool_path=str(fake_tool),
            workspace_path=str(fake_project.parent),
            settings=settings,
        )
        fields.update(overrides)
        return BuildRequest(**fields)

    return _make

