"""
Exception taxonomy for Claude Task Master.

- TaskMasterError is the common base
- ConfigError is raised for missing state or invalid configuration
- AgentError is raised when the planning phase cannot produce a plan
- GitHubError is raised when a GitHub mutation reports errors
"""

from __future__ import annotations


class TaskMasterError(Exception):
    """Base exception for Claude Task Master."""
    pass


class ConfigError(TaskMasterError):
    """Raised when configuration is invalid or required state is missing."""
    pass


class AgentError(TaskMasterError):
    """
    Raised when an Agent invocation fails in a way that must stop the run.

    Only the planning phase raises this; work-iteration failures are
    recorded in progress.md and retried on the next loop pass.
    """

    def __init__(self, message: str, output: str = "", exit_code: int = -1) -> None:
        super().__init__(message)
        self.output = output
        self.exit_code = exit_code


class GitHubError(TaskMasterError):
    """Raised when a GitHub GraphQL mutation returns errors."""
    pass
