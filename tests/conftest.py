"""Pytest fixtures for pipeshell tests."""

import io

import pytest

from pipeshell import config
from pipeshell.dirs import DirectoryContext
from pipeshell.jobs import JobTable
from pipeshell.registry import CommandRegistry
from pipeshell.runner import ProcessController
from pipeshell.ui import console as console_mod
from pipeshell.ui.console import Console


@pytest.fixture(autouse=True)
def quiet_console(monkeypatch):
    """Fresh settings and a silent console for every test."""
    monkeypatch.delenv("PIPESHELL_DEBUG", raising=False)
    monkeypatch.delenv("PIPESHELL_VERBOSE", raising=False)
    con = Console(debug=False, verbose=False, stream=io.StringIO())
    monkeypatch.setattr(config, "_settings", None)
    monkeypatch.setattr(console_mod, "_console", con)
    return con


@pytest.fixture
def registry():
    return CommandRegistry()


@pytest.fixture
def dirs(tmp_path):
    return DirectoryContext(tmp_path)


@pytest.fixture
def controller(registry, dirs):
    return ProcessController(registry=registry, dirs=dirs, jobs=JobTable())


