"""
File system utilities for Claude Task Master.

This module provides safe file operations including:
- Atomic writes (write to temp file, then rename)
- Directory creation and removal
- File reading with encoding handling
- Glob pattern matching
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path


class FileSystemError(Exception):
    """Raised when a file system operation fails."""
    pass


def ensure_dir(path: str | Path) -> Path:
    """
    Create a directory if it does not exist.

    Creates parent directories as needed (like mkdir -p).

    Args:
        path: Path to the directory to create.

    Returns:
        Path: The path object for the created/existing directory.

    Raises:
        FileSystemError: If directory creation fails.
    """
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except OSError as e:
        raise FileSystemError(f"Failed to create directory {path}: {e}")


def safe_write(path: str | Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to a file atomically.

    The content goes to a temporary file in the same directory which is
    then renamed over the target, so readers never see a partial file.

    Args:
        path: Path to the file to write.
        content: Content to write to the file.
        encoding: Character encoding to use. Defaults to utf-8.

    Raises:
        FileSystemError: If write operation fails.
    """
    path = Path(path)
    ensure_dir(path.parent)

    try:
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding=encoding) as f:
                f.write(content)

            shutil.move(temp_path, path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
    except OSError as e:
        raise FileSystemError(f"Failed to write file {path}: {e}")


def file_exists(path: str | Path) -> bool:
    """Return True if path exists and is a regular file."""
    return Path(path).is_file()


def dir_exists(path: str | Path) -> bool:
    """Return True if path exists and is a directory."""
    return Path(path).is_dir()


def read_file(path: str | Path, encoding: str = "utf-8") -> str:
    """
    Read a file's contents with encoding handling.

    Args:
        path: Path to the file to read.
        encoding: Character encoding. Defaults to utf-8.

    Returns:
        str: Contents of the file.

    Raises:
        FileSystemError: If file cannot be read.
    """
    path = Path(path)

    if not path.exists():
        raise FileSystemError(f"File not found: {path}")

    if not path.is_file():
        raise FileSystemError(f"Not a file: {path}")

    try:
        return path.read_text(encoding=encoding)
    except UnicodeDecodeError as e:
        raise FileSystemError(f"Failed to decode file {path} with encoding {encoding}: {e}")
    except OSError as e:
        raise FileSystemError(f"Failed to read file {path}: {e}")


def list_files(directory: str | Path, pattern: str = "*") -> list[Path]:
    """
    List files matching a glob pattern in a directory.

    Args:
        directory: Directory to search in.
        pattern: Glob pattern to match. Defaults to "*" (all files).

    Returns:
        list[Path]: Matching file paths sorted alphabetically. Empty if the
        directory does not exist.
    """
    directory = Path(directory)

    if not directory.is_dir():
        return []

    return sorted(p for p in directory.glob(pattern) if p.is_file())


def remove_dir(path: str | Path) -> bool:
    """
    Remove a directory and everything below it.

    Args:
        path: Path to the directory to remove.

    Returns:
        bool: True if directory was removed, False if it didn't exist.

    Raises:
        FileSystemError: If removal fails.
    """
    path = Path(path)

    if not path.exists():
        return False

    if not path.is_dir():
        raise FileSystemError(f"Not a directory: {path}")

    try:
        shutil.rmtree(path)
        return True
    except OSError as e:
        raise FileSystemError(f"Failed to remove directory {path}: {e}")
