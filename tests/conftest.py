# tests/conftest.py

import pytest
from typer.testing import CliRunner

from claude_task_master.cli.common import set_project_dir
from claude_task_master.state_store import StateStore


@pytest.fixture(autouse=True)
def reset_project_dir():
    """Clear the --project override so tests do not leak it."""
    set_project_dir(None)
    yield
    set_project_dir(None)


@pytest.fixture
def project_dir(tmp_path):
    """Empty project directory."""
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def state(project_dir):
    """State store for the project, not yet initialized."""
    return StateStore(project_dir)


@pytest.fixture
def initialized_state(state):
    """State store after init("Build X", "tests pass")."""
    state.init("Build X", "tests pass")
    return state


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()
