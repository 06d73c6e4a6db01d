"""
State persistence for Claude Task Master.

This module handles the .claude-task-master/ directory:
- goal.txt / criteria.txt written once at init
- plan.md owned by the Agent
- progress.md / context.md append-only notes
- state.json machine state, merged on partial updates
- logs/session-NNN.md one transcript per Agent invocation

All state is plain files so it can be inspected by hand and resumed later.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from claude_task_master import STATE_DIR
from claude_task_master.models import Status
from claude_task_master.utils.formatting import now_iso
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

if TYPE_CHECKING:
    from claude_task_master.logger import EventLogger


class StateStoreError(Exception):
    """Raised when state store operations fail."""
    pass


class StateStore:
    """
    File-backed project state.

    Readers for the text files return None when a file is missing rather
    than raising, so callers can run against a partially written directory.
    """

    GOAL_FILE = "goal.txt"
    CRITERIA_FILE = "criteria.txt"
    PLAN_FILE = "plan.md"
    STATE_FILE = "state.json"
    PROGRESS_FILE = "progress.md"
    CONTEXT_FILE = "context.md"
    LOGS_DIR = "logs"
    SESSION_LOG_PATTERN = "session-*.md"

    def __init__(
        self,
        project_dir: str | Path = ".",
        logger: Optional[EventLogger] = None,
        state_dir: str = STATE_DIR,
    ) -> None:
        """
        Initialize the state store.

        Args:
            project_dir: Project root holding the state directory.
            logger: Optional logger for recording operations.
            state_dir: Name of the state directory below project_dir.
        """
        self._project_dir = Path(project_dir).absolute()
        self._dir = self._project_dir / state_dir
        self._logger = logger

    @property
    def dir(self) -> Path:
        """Absolute path to the state directory."""
        return self._dir

    @property
    def project_dir(self) -> Path:
        """Absolute path to the project root."""
        return self._project_dir

    @property
    def logs_dir(self) -> Path:
        """Directory holding the session records."""
        return self._dir / self.LOGS_DIR

    @property
    def state_path(self) -> Path:
        return self._dir / self.STATE_FILE

    def _log(
        self,
        event_type: str,
        data: Optional[dict] = None,
        level: str = "info"
    ) -> None:
        """Log an event if logger is configured."""
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def _read(self, filename: str) -> Optional[str]:
        path = self._dir / filename
        if not file_exists(path):
            return None
        try:
            return read_file(path)
        except FileSystemError as e:
            self._log("state_read_error", {"file": filename, "error": str(e)}, level="error")
            return None

    def _write(self, filename: str, content: str) -> None:
        try:
            safe_write(self._dir / filename, content)
        except FileSystemError as e:
            self._log("state_write_error", {"file": filename, "error": str(e)}, level="error")
            raise StateStoreError(f"Failed to write {filename}: {e}")

    # Lifecycle

    def init(self, goal: str, criteria: str) -> None:
        """
        Create a fresh state directory for a new goal.

        Re-running replaces any previous goal, criteria, progress, context
        and machine state.

        Raises:
            StateStoreError: If the directories cannot be created.
        """
        try:
            ensure_dir(self._dir)
            ensure_dir(self.logs_dir)
        except FileSystemError as e:
            raise StateStoreError(f"Failed to create state directory {self._dir}: {e}")

        started_at = now_iso()
        self._write(self.GOAL_FILE, goal)
        self._write(self.CRITERIA_FILE, criteria)
        self._write(self.PROGRESS_FILE, f"# Progress\n\n_Started: {started_at}_\n\n")
        self._write(self.CONTEXT_FILE, "# Context\n\n_Learnings accumulated across sessions._\n\n")

        self.save_state({
            "status": Status.PLANNING,
            "current_task": None,
            "session_count": 0,
            "pr_number": None,
            "started_at": started_at,
            "updated_at": started_at,
        })
        self._log("state_initialized", {"dir": str(self._dir)})

    def exists(self) -> bool:
        """True if the directory and state.json are both present."""
        return dir_exists(self._dir) and file_exists(self.state_path)

    def clean(self) -> bool:
        """
        Delete the whole state directory.

        Returns:
            True if something was removed.
        """
        try:
            removed = remove_dir(self._dir)
        except FileSystemError as e:
            raise StateStoreError(str(e))
        if removed:
            self._log("state_cleaned", {"dir": str(self._dir)})
        return removed

    # Machine state

    def load_state(self) -> Optional[dict[str, Any]]:
        """
        Load state.json.

        Returns:
            The state mapping, or None if the file is missing or unreadable.
        """
        content = self._read(self.STATE_FILE)
        if content is None:
            return None

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            self._log("state_corrupted", {
                "error": str(e),
                "path": str(self.state_path),
            }, level="error")
            return None

        if not isinstance(data, dict):
            self._log("state_invalid", {"path": str(self.state_path)}, level="error")
            return None
        return data

    def save_state(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Replace state.json with data, stamping updated_at.

        Returns:
            The mapping that was written.
        """
        state = dict(data)
        state["updated_at"] = now_iso()
        self._write(self.STATE_FILE, json.dumps(state, indent=2))
        self._log("state_saved", {"status": state.get("status")}, level="debug")
        return state

    def update_state(self, **fields: Any) -> dict[str, Any]:
        """Merge fields into the current state and save it."""
        current = self.load_state() or {}
        current.update(fields)
        return self.save_state(current)

    # Text files

    @property
    def goal(self) -> Optional[str]:
        return self._read(self.GOAL_FILE)

    @property
    def criteria(self) -> Optional[str]:
        return self._read(self.CRITERIA_FILE)

    @property
    def plan(self) -> Optional[str]:
        return self._read(self.PLAN_FILE)

    @property
    def progress(self) -> Optional[str]:
        return self._read(self.PROGRESS_FILE)

    @property
    def context(self) -> Optional[str]:
        return self._read(self.CONTEXT_FILE)

    def save_plan(self, content: str) -> None:
        self._write(self.PLAN_FILE, content)

    def append_progress(self, content: str) -> None:
        """Append to progress.md, separated from existing text by a newline."""
        current = self.progress or ""
        self._write(self.PROGRESS_FILE, f"{current}\n{content}")

    def append_context(self, content: str) -> None:
        """Append to context.md, separated from existing text by a newline."""
        current = self.context or ""
        self._write(self.CONTEXT_FILE, f"{current}\n{content}")

    # Session logs

    def session_log_path(self, session_num: int) -> Path:
        return self.logs_dir / f"session-{session_num:03d}.md"

    def log_session(self, session_num: int, content: str) -> Path:
        """Write (or overwrite) the transcript for one session."""
        path = self.session_log_path(session_num)
        try:
            safe_write(path, content)
        except FileSystemError as e:
            raise StateStoreError(f"Failed to write session log {path.name}: {e}")
        self._log("session_logged", {"session": session_num, "bytes": len(content)})
        return path

    def session_log_paths(self) -> list[Path]:
        """All session records, sorted by file name."""
        return list_files(self.logs_dir, self.SESSION_LOG_PATTERN)

    def read_session_log(self, session_num: int) -> Optional[str]:
        path = self.session_log_path(session_num)
        if not file_exists(path):
            return None
        return read_file(path)

    def next_session_number(self) -> int:
        """
        Number for the next session record.

        This is the count of existing records plus one, not the highest
        number plus one: deleting a record makes the next session reuse a
        number that may already be taken.
        """
        return len(self.session_log_paths()) + 1

    # Status checks

    def is_success(self) -> bool:
        state = self.load_state()
        return bool(state) and state.get("status") == Status.SUCCESS

    def is_blocked(self) -> bool:
        state = self.load_state()
        return bool(state) and state.get("status") == Status.BLOCKED

    def blocked_reason(self) -> Optional[str]:
        """Agent-supplied reason for blocking, or None without any state."""
        state = self.load_state()
        if state is None:
            return None
        return _or(state.get("notes"), _or(state.get("blocked_reason"), "No reason provided"))

    # Agent context

    def build_context(self) -> str:
        """
        Assemble the document handed to the Agent at the start of a session.

        Works with any subset of the state files missing.
        """
        state = self.load_state() or {}
        pr_number = state.get("pr_number")
        session_count = state.get("session_count")

        phase = _or(state.get("status"), "unknown")
        current_task = _or(state.get("current_task"), "none")
        pr = f"#{pr_number}" if pr_number is not None else "none"
        session = 0 if session_count is None else session_count

        return (
            "# Current State\n"
            "\n"
            "## Goal\n"
            f"{self.goal or ''}\n"
            "\n"
            "## Success Criteria\n"
            f"{self.criteria or ''}\n"
            "\n"
            "## Status\n"
            f"- Phase: {phase}\n"
            f"- Current task: {current_task}\n"
            f"- PR: {pr}\n"
            f"- Session: {session}\n"
            "\n"
            "## Plan\n"
            f"{_or(self.plan, '_No plan yet. Generate one first._')}\n"
            "\n"
            "## Context from Previous Sessions\n"
            f"{_or(self.context, '_No context yet._')}\n"
            "\n"
            "## Recent Progress\n"
            f"{_or(self.progress, '_No progress yet._')}\n"
        )


def _or(value: Any, default: Any) -> Any:
    return default if value is None else value
