"""
Structured JSONL logging for Claude Task Master.

This module provides:
- JSONL event logging for debugging and audit trails
- One log file per day under .claude-task-master/logs/
- Log levels (debug, info, warn, error) with a minimum level filter
- Context manager for session-scoped logging
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional


class LogLevel:
    """Log level constants."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_LEVEL_ORDER = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}


class EventLogger:
    """
    JSONL event logger.

    Writes structured log entries to <logs_dir>/events-YYYY-MM-DD.jsonl

    Each log entry is a JSON object with:
    - timestamp: ISO format timestamp (UTC)
    - level: Log level (debug, info, warn, error)
    - event_type: Type of event being logged
    - data: Additional event data (dict)
    - session_id: Present inside session_context()
    """

    FILE_PREFIX = "events"

    def __init__(self, logs_dir: str | Path, min_level: str = LogLevel.INFO) -> None:
        """
        Initialize the logger.

        Args:
            logs_dir: Directory the daily log files are written to.
            min_level: Entries below this level are dropped.
        """
        self.logs_dir = Path(logs_dir)
        self.min_level = min_level
        self._current_session_id: Optional[str] = None

    def _get_log_path(self, date: Optional[str] = None) -> Path:
        """Get the log file path for a date (today by default)."""
        if date is None:
            date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.logs_dir / f"{self.FILE_PREFIX}-{date}.jsonl"

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Append a log entry to today's JSONL file."""
        log_path = self._get_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        with open(log_path, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def _enabled_for(self, level: str) -> bool:
        return _LEVEL_ORDER.get(level, 20) >= _LEVEL_ORDER.get(self.min_level, 20)

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = LogLevel.INFO,
    ) -> None:
        """
        Log an event.

        Args:
            event_type: Type of event (e.g., "agent_invocation_start", "state_saved").
            data: Additional data to include in the log entry.
            level: Log level (debug, info, warn, error).
        """
        if not self._enabled_for(level):
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event_type": event_type,
            "data": data or {},
        }

        if self._current_session_id:
            entry["session_id"] = self._current_session_id

        self._write_entry(entry)

    def debug(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log a debug event."""
        self.log(event_type, data, LogLevel.DEBUG)

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log an info event."""
        self.log(event_type, data, LogLevel.INFO)

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log a warning event."""
        self.log(event_type, data, LogLevel.WARN)

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        """Log an error event."""
        self.log(event_type, data, LogLevel.ERROR)

    @contextmanager
    def session_context(self, session_id: str) -> Iterator[EventLogger]:
        """
        Context manager for session-scoped logging.

        All logs within this context will include the session_id.

        Example:
            with logger.session_context("session-003") as log:
                log.info("agent_invocation_start", {"prompt_length": 1200})
        """
        old_session_id = self._current_session_id
        self._current_session_id = session_id
        self.info("session_start", {"session_id": session_id})
        try:
            yield self
        finally:
            self.info("session_end", {"session_id": session_id})
            self._current_session_id = old_session_id

    def read_logs(
        self,
        date: Optional[str] = None,
        level: Optional[str] = None,
        event_type: Optional[str] = None,
        session_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Read log entries with optional filtering.

        Args:
            date: Date string (YYYY-MM-DD) to read. If None, reads today's logs.
            level: Filter by log level.
            event_type: Filter by event type.
            session_id: Filter by session ID.
            limit: Maximum number of entries to return.

        Returns:
            List of log entries matching the filters.
        """
        log_path = self._get_log_path(date)
        if not log_path.exists():
            return []

        entries = []
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if level and entry.get("level") != level:
                    continue
                if event_type and entry.get("event_type") != event_type:
                    continue
                if session_id and entry.get("session_id") != session_id:
                    continue

                entries.append(entry)

                if limit and len(entries) >= limit:
                    break

        return entries

    def get_log_files(self) -> list[Path]:
        """Return all event log files, newest first."""
        if not self.logs_dir.exists():
            return []

        files = list(self.logs_dir.glob(f"{self.FILE_PREFIX}-*.jsonl"))
        files.sort(reverse=True)
        return files
