"""CLI package for claude-task-master.

Modules:
    app.py      - Main Typer app, version callback and all commands
    display.py  - Rich formatting utilities (format_status, comments_table)
    common.py   - Shared helpers (get_console, get_project_dir, component builders)

Usage:
    from claude_task_master.cli import app, cli_main  # Main exports
    from claude_task_master.cli.display import format_status
    from claude_task_master.cli.common import get_console, get_project_dir
"""
from claude_task_master.cli.app import app, cli_main

__all__ = ["app", "cli_main"]
