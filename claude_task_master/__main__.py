"""
Entry point for running claude_task_master as a module.

Allows running as: python -m claude_task_master
"""

from claude_task_master.cli import cli_main

if __name__ == "__main__":
    cli_main()
