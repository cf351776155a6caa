"""Shared fixtures."""

import os
import textwrap
from pathlib import Path

import pytest

from jobnet.config import reload_settings


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch, tmp_path):
    """Run every test with default settings, isolated from the caller's env and .env."""
    for key in list(os.environ):
        if key.startswith("JOBNET_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    reload_settings()


class JobnetHome:
    """A temporary jobnet home: ``<home>/<subsystem>/<name>.jobnet`` and ``.job`` files."""

    def __init__(self, path: Path):
        self.path = path

    def write(self, relpath: str, text: str) -> Path:
        path = self.path / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")
        return path

    def job(self, relpath: str, job_class: str = "noop", **params) -> Path:
        lines = [f"class: {job_class}"]
        for key, value in params.items():
            lines.append(f"{key}: {value!r}" if isinstance(value, str) else f"{key}: {value}")
        return self.write(relpath, "\n".join(lines) + "\n")


@pytest.fixture
def home(tmp_path) -> JobnetHome:
    path = tmp_path / "home"
    path.mkdir()
    return JobnetHome(path)
