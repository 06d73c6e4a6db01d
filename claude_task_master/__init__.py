"""
Claude Task Master - keep an AI coding agent working until the goal is met.

Drives the Claude CLI through a planning phase and a resumable work loop,
persisting all progress in a plain-file state directory.
"""

__version__ = "0.1.0"
__all__ = ["__version__", "STATE_DIR"]

STATE_DIR = ".claude-task-master"
