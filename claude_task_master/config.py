"""
Configuration loading and validation for Claude Task Master.

This module handles:
- Loading task-master.yaml from the project directory (optional)
- Environment variable resolution (${VAR} syntax)
- Default values for every field
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from claude_task_master import STATE_DIR
from claude_task_master.errors import ConfigError

CONFIG_FILENAME = "task-master.yaml"

__all__ = [
    "CONFIG_FILENAME",
    "ClaudeConfig",
    "ConfigError",
    "GitHubConfig",
    "LoggingConfig",
    "LoopConfig",
    "TaskMasterConfig",
    "load_config",
]


@dataclass
class ClaudeConfig:
    """Claude CLI configuration."""
    binary: str = "claude"                     # Path to claude binary
    model: str = "sonnet"                      # Model passed via --model
    timeout_seconds: int = 3600                # Max time one invocation may run
    allowed_tools: Optional[list[str]] = None  # None keeps the CLI default tool set


@dataclass
class LoopConfig:
    """Work loop behaviour."""
    no_merge: bool = False                     # Leave PRs for a human to merge
    max_sessions: Optional[int] = None         # Stop after N work sessions per run
    pause_on_pr: bool = False                  # Stop after each newly created PR
    verbose: bool = False
    sleep_seconds: float = 2.0                 # Pause between loop passes


@dataclass
class GitHubConfig:
    """GitHub CLI configuration."""
    binary: str = "gh"                         # Path to gh binary
    timeout_seconds: int = 30                  # Per-command timeout
    ci_wait_timeout_seconds: int = 600         # Timeout for wait_for_ci


@dataclass
class LoggingConfig:
    """Structured event log configuration."""
    enabled: bool = True
    level: str = "info"                        # Minimum level written


@dataclass
class TaskMasterConfig:
    """
    Top-level configuration.

    Loaded from task-master.yaml when present; every field has a default so
    the tool also runs without any config file.
    """
    project_dir: str = "."
    state_dir: str = STATE_DIR

    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        """Convert the project directory to an absolute path."""
        self.project_dir = str(Path(self.project_dir).absolute())

    @property
    def project_path(self) -> Path:
        """Absolute path to the project directory."""
        return Path(self.project_dir)

    @property
    def state_path(self) -> Path:
        """Absolute path to the state directory."""
        return self.project_path / self.state_dir

    @property
    def logs_path(self) -> Path:
        """Absolute path to the session and event logs."""
        return self.state_path / "logs"


def _resolve_env_vars(value: Any) -> Any:
    """
    Resolve environment variables in a value.

    Supports ${VAR} syntax for environment variable substitution.
    Returns the original value if it's not a string.
    """
    if isinstance(value, str):
        pattern = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

        def replace(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable ${{{var_name}}} is not set")
            return env_value

        return pattern.sub(replace, value)

    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]

    return value


def _parse_claude_config(data: dict[str, Any]) -> ClaudeConfig:
    """Parse Claude configuration from dict."""
    allowed_tools = data.get("allowed_tools")
    if allowed_tools is not None and not isinstance(allowed_tools, list):
        raise ConfigError("claude.allowed_tools must be a list")
    return ClaudeConfig(
        binary=data.get("binary", "claude"),
        model=data.get("model", "sonnet"),
        timeout_seconds=data.get("timeout_seconds", 3600),
        allowed_tools=allowed_tools,
    )


def _parse_loop_config(data: dict[str, Any]) -> LoopConfig:
    """Parse loop configuration from dict."""
    max_sessions = data.get("max_sessions")
    if max_sessions is not None and (not isinstance(max_sessions, int) or max_sessions < 1):
        raise ConfigError(f"loop.max_sessions must be a positive integer, got: {max_sessions}")
    return LoopConfig(
        no_merge=data.get("no_merge", False),
        max_sessions=max_sessions,
        pause_on_pr=data.get("pause_on_pr", False),
        verbose=data.get("verbose", False),
        sleep_seconds=float(data.get("sleep_seconds", 2.0)),
    )


def _parse_github_config(data: dict[str, Any]) -> GitHubConfig:
    """Parse GitHub configuration from dict."""
    return GitHubConfig(
        binary=data.get("binary", "gh"),
        timeout_seconds=data.get("timeout_seconds", 30),
        ci_wait_timeout_seconds=data.get("ci_wait_timeout_seconds", 600),
    )


def _parse_logging_config(data: dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration from dict."""
    return LoggingConfig(
        enabled=data.get("enabled", True),
        level=data.get("level", "info"),
    )


def load_config(
    config_path: Optional[str] = None,
    project_dir: Optional[str] = None,
) -> TaskMasterConfig:
    """
    Load configuration from task-master.yaml.

    Args:
        config_path: Optional explicit path to a config file. It must exist.
        project_dir: Project directory. Defaults to the current directory.
                     Used to find task-master.yaml when no path is given.

    Returns:
        TaskMasterConfig: Loaded configuration, or defaults if the project
        has no config file.

    Raises:
        ConfigError: If config is invalid or an explicit path is missing.
    """
    project = Path(project_dir) if project_dir else Path.cwd()

    if config_path is None:
        path = project / CONFIG_FILENAME
        if not path.exists():
            return TaskMasterConfig(project_dir=str(project))
    else:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r") as f:
            raw_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if not raw_data:
        return TaskMasterConfig(project_dir=str(project))

    if not isinstance(raw_data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    data = _resolve_env_vars(raw_data)

    return TaskMasterConfig(
        project_dir=str(project),
        state_dir=data.get("state_dir", STATE_DIR),
        claude=_parse_claude_config(data.get("claude") or {}),
        loop=_parse_loop_config(data.get("loop") or {}),
        github=_parse_github_config(data.get("github") or {}),
        logging=_parse_logging_config(data.get("logging") or {}),
    )
