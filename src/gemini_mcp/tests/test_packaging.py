"""Tests for the project metadata shipped alongside the source tree."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from gemini_mcp import __version__

PYPROJECT = Path(__file__).resolve().parents[3] / "pyproject.toml"


@pytest.fixture
def project() -> dict:
    if not PYPROJECT.is_file():
        pytest.skip("not running from a source checkout")
    return tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))["project"]


def test_metadata_matches_package(project: dict) -> None:
    assert project["name"] == "gemini-mcp"
    assert project["version"] == __version__
    assert project["scripts"]["gemini-mcp"] == "gemini_mcp.cli:main"


def test_readme_if_declared_is_a_shipped_readme(project: dict) -> None:
    readme = project.get("readme")
    if readme is None:
        return
    path = readme if isinstance(readme, str) else readme["file"]
    assert Path(path).name.lower().startswith("readme")
    assert (PYPROJECT.parent / path).is_file()
