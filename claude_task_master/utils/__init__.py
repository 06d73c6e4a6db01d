"""Utility modules for Claude Task Master."""

from claude_task_master.utils.formatting import now_iso, tail, truncate
from claude_task_master.utils.fs import (
    FileSystemError,
    dir_exists,
    ensure_dir,
    file_exists,
    list_files,
    read_file,
    remove_dir,
    safe_write,
)

__all__ = [
    "FileSystemError",
    "dir_exists",
    "ensure_dir",
    "file_exists",
    "list_files",
    "now_iso",
    "read_file",
    "remove_dir",
    "safe_write",
    "tail",
    "truncate",
]
