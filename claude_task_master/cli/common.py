"""Common utilities and global state for the CLI.

Contains project directory management, config loading, and builders for
the components a command needs.
This module should NOT import from app.py to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from rich.console import Console

if TYPE_CHECKING:
    from claude_task_master.config import TaskMasterConfig
    from claude_task_master.github import GitHubClient
    from claude_task_master.llm_clients import ClaudeCliRunner
    from claude_task_master.logger import EventLogger
    from claude_task_master.state_store import StateStore

# ============================================================================
# Global State
# ============================================================================

# Global project directory override (set via --project flag)
_project_dir: Optional[str] = None

# Console singleton
_console: Optional[Console] = None


def get_project_dir() -> str:
    """Get the project directory, defaulting to the current directory."""
    return _project_dir or str(Path.cwd())


def set_project_dir(path: Optional[str]) -> None:
    """Set the project directory override."""
    global _project_dir
    _project_dir = path


def get_console() -> Console:
    """Get or create the console singleton."""
    global _console
    if _console is None:
        _console = Console()
    return _console


# ============================================================================
# Component Builders
# ============================================================================


def load_project_config() -> "TaskMasterConfig":
    """
    Load task-master.yaml from the project directory, or defaults.

    Raises:
        ConfigError: If the config file exists but is invalid.
    """
    from claude_task_master.config import load_config

    return load_config(project_dir=get_project_dir())


def build_logger(config: "TaskMasterConfig") -> Optional["EventLogger"]:
    """Create the event logger, or None when logging is disabled."""
    from claude_task_master.logger import EventLogger

    if not config.logging.enabled:
        return None
    return EventLogger(config.logs_path, min_level=config.logging.level)


def build_state_store(
    config: "TaskMasterConfig",
    logger: Optional["EventLogger"] = None,
) -> "StateStore":
    """Create the state store for the project directory."""
    from claude_task_master.state_store import StateStore

    return StateStore(config.project_dir, logger=logger, state_dir=config.state_dir)


def build_github(
    config: "TaskMasterConfig",
    logger: Optional["EventLogger"] = None,
) -> "GitHubClient":
    """Create the GitHub client bound to the project directory."""
    from claude_task_master.github import GitHubClient

    return GitHubClient(config.github, project_dir=config.project_dir, logger=logger)


def build_runner(
    config: "TaskMasterConfig",
    model: Optional[str] = None,
    logger: Optional["EventLogger"] = None,
    verbose: bool = False,
) -> "ClaudeCliRunner":
    """Create the Claude runner, echoing tool calls to the console when verbose."""
    from claude_task_master.llm_clients import ClaudeCliRunner

    claude_config = config.claude
    if model:
        claude_config = replace(claude_config, model=model)

    on_progress = None
    if verbose:
        console = get_console()

        def on_progress(line: str) -> None:
            console.print(f"  {line.rstrip()}", style="dim", markup=False, highlight=False)

    return ClaudeCliRunner(config=claude_config, logger=logger, on_progress=on_progress)
