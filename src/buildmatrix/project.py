# project.py
# Reads the two IDE project descriptors that must sit in the project directory.

from __future__ import annotations

import xml.etree.ElementTree as ET
from pathlib import Path
from typing import List

from .errors import PathError

PROJECT_FILE = ".project"
CPROJECT_FILE = ".cproject"


def _parse(path: Path) -> ET.Element:
    if not path.is_file():
        raise PathError(f"Project descriptor '{path.name}' not found in '{path.parent}'")
    try:
        return ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        raise PathError(f"Error reading '{path}': {e}") from e


def check_descriptors(project_dir: str | Path) -> None:
    root = Path(project_dir)
    for name in (PROJECT_FILE, CPROJECT_FILE):
        if not (root / name).is_file():
            raise PathError(f"Project descriptor '{name}' not found in '{root}'")


def project_name(project_dir: str | Path) -> str:
    """Name from the first <name> element of .project."""
    root = _parse(Path(project_dir) / PROJECT_FILE)
    for el in root.iter("name"):
        if el.text and el.text.strip():
            return el.text.strip()
    raise PathError(f"Project name not found in '{Path(project_dir) / PROJECT_FILE}'")


def build_configurations(project_dir: str | Path) -> List[str]:
    """`name` attributes of every <configuration> element in .cproject."""
    root = _parse(Path(project_dir) / CPROJECT_FILE)
    names: List[str] = []
    for el in root.iter("configuration"):
        name = el.get("name")
        if name and name not in names:
            names.append(name)
    return names
