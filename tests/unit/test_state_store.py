"""Tests for StateStore file layout, merging and context assembly."""
import json
from unittest.mock import patch

import pytest

from claude_task_master.state_store import StateStore, StateStoreError


class TestInit:
    """Tests for creating a fresh state directory."""

    def test_creates_state_files(self, state):
        """init writes goal, criteria, progress, context and state.json."""
        state.init("Build X", "tests pass")

        assert (state.dir / "goal.txt").read_text() == "Build X"
        assert (state.dir / "criteria.txt").read_text() == "tests pass"
        assert (state.dir / "progress.md").exists()
        assert (state.dir / "context.md").exists()
        assert state.logs_dir.is_dir()

    def test_initial_machine_state(self, state):
        """A new state starts in planning with no sessions or PR."""
        state.init("Build X", "tests pass")
        data = state.load_state()

        assert data["status"] == "planning"
        assert data["current_task"] is None
        assert data["session_count"] == 0
        assert data["pr_number"] is None
        assert data["started_at"]
        assert data["updated_at"]

    def test_state_dir_name(self, project_dir):
        """The state lives in .claude-task-master below the project."""
        store = StateStore(project_dir)
        assert store.dir == project_dir.absolute() / ".claude-task-master"

    def test_exists_only_after_init(self, state):
        """exists() needs both the directory and state.json."""
        assert state.exists() is False
        state.init("Build X", "tests pass")
        assert state.exists() is True

    def test_exists_false_without_state_file(self, state):
        """A bare directory is not an existing state."""
        state.dir.mkdir(parents=True)
        assert state.exists() is False

    def test_write_failure_raises(self, state):
        """A file where the state dir should be fails with StateStoreError."""
        state.dir.parent.mkdir(parents=True, exist_ok=True)
        state.dir.write_text("not a directory")

        with pytest.raises(StateStoreError):
            state.init("Build X", "tests pass")


class TestMachineState:
    """Tests for load_state, save_state and update_state."""

    def test_load_missing_returns_none(self, state):
        """No state.json means no state."""
        assert state.load_state() is None

    def test_load_corrupt_returns_none(self, initialized_state):
        """Invalid JSON is treated like a missing file."""
        initialized_state.state_path.write_text("{not json")
        assert initialized_state.load_state() is None

    def test_load_non_object_returns_none(self, initialized_state):
        """A JSON array is not a valid state."""
        initialized_state.state_path.write_text("[1, 2]")
        assert initialized_state.load_state() is None

    def test_save_is_pretty_printed(self, initialized_state):
        """state.json is indented for humans."""
        initialized_state.save_state({"status": "ready"})
        content = initialized_state.state_path.read_text()
        assert '\n  "status": "ready"' in content

    def test_update_merges_and_preserves_unknown_keys(self, initialized_state):
        """Partial updates keep keys written by the Agent."""
        initialized_state.update_state(pr_ready=True, notes="checking CI")
        initialized_state.update_state(status="working")

        data = initialized_state.load_state()
        assert data["status"] == "working"
        assert data["pr_ready"] is True
        assert data["notes"] == "checking CI"
        assert data["session_count"] == 0

    def test_update_stamps_time_of_last_call(self, initialized_state):
        """updated_at always reflects the latest update."""
        times = iter(["2024-01-01T10:00:00+00:00", "2024-01-01T11:00:00+00:00"])
        with patch("claude_task_master.state_store.now_iso", side_effect=lambda: next(times)):
            initialized_state.update_state(status="ready")
            initialized_state.update_state(current_task="Task 1.1")

        data = initialized_state.load_state()
        assert data["updated_at"] == "2024-01-01T11:00:00+00:00"
        assert data["status"] == "ready"
        assert data["current_task"] == "Task 1.1"

    def test_state_json_round_trips_extra_keys(self, initialized_state):
        """Keys unknown to the tool are kept verbatim on disk."""
        initialized_state.update_state(custom={"a": 1})
        raw = json.loads(initialized_state.state_path.read_text())
        assert raw["custom"] == {"a": 1}

    def test_update_without_state_creates_it(self, state):
        """Updating a missing state starts from an empty mapping."""
        result = state.update_state(status="ready")
        assert result["status"] == "ready"
        assert state.load_state()["status"] == "ready"


class TestTextFiles:
    """Tests for the markdown and text files."""

    def test_missing_files_read_as_none(self, state):
        """Readers return None instead of raising."""
        assert state.goal is None
        assert state.criteria is None
        assert state.plan is None
        assert state.progress is None
        assert state.context is None

    def test_save_plan(self, initialized_state):
        initialized_state.save_plan("# Plan\n- [ ] Task 1")
        assert initialized_state.plan == "# Plan\n- [ ] Task 1"

    def test_append_progress_to_missing_file_starts_with_newline(self, state):
        """Appending to nothing yields a leading newline and the content."""
        state.append_progress("first entry")
        assert state.progress == "\nfirst entry"

    def test_append_context_to_missing_file_starts_with_newline(self, state):
        state.append_context("learned something")
        assert state.context == "\nlearned something"

    def test_append_progress_keeps_existing_text(self, initialized_state):
        """New content goes after the existing text and a newline."""
        before = initialized_state.progress
        initialized_state.append_progress("did a thing")
        assert initialized_state.progress == f"{before}\ndid a thing"


class TestSessionLogs:
    """Tests for session log naming and numbering."""

    def test_session_log_path_is_zero_padded(self, state):
        assert state.session_log_path(1).name == "session-001.md"
        assert state.session_log_path(42).name == "session-042.md"

    def test_session_log_path_grows_past_999(self, state):
        assert state.session_log_path(1000).name == "session-1000.md"

    def test_log_session_writes_file(self, initialized_state):
        path = initialized_state.log_session(1, "# Session\n")
        assert path.read_text() == "# Session\n"
        assert initialized_state.read_session_log(1) == "# Session\n"

    def test_read_missing_session_log(self, initialized_state):
        assert initialized_state.read_session_log(9) is None

    def test_next_session_number_empty(self, state):
        """No logs directory at all means session 1."""
        assert state.next_session_number() == 1

    def test_next_session_number_counts_records(self, initialized_state):
        """The next number is the count plus one, not the highest plus one."""
        initialized_state.log_session(1, "one")
        initialized_state.log_session(5, "five")
        assert initialized_state.next_session_number() == 3

    def test_event_logs_do_not_count_as_sessions(self, initialized_state):
        """Only session-*.md files are session records."""
        (initialized_state.logs_dir / "events-2024-01-01.jsonl").write_text("{}\n")
        initialized_state.log_session(1, "one")
        assert initialized_state.next_session_number() == 2

    def test_session_log_paths_sorted(self, initialized_state):
        initialized_state.log_session(2, "two")
        initialized_state.log_session(1, "one")
        names = [p.name for p in initialized_state.session_log_paths()]
        assert names == ["session-001.md", "session-002.md"]


class TestStatusChecks:
    """Tests for success/blocked detection."""

    def test_no_state_is_neither_success_nor_blocked(self, state):
        assert state.is_success() is False
        assert state.is_blocked() is False

    def test_success(self, initialized_state):
        initialized_state.update_state(status="success")
        assert initialized_state.is_success() is True
        assert initialized_state.is_blocked() is False

    def test_blocked(self, initialized_state):
        initialized_state.update_state(status="blocked")
        assert initialized_state.is_blocked() is True

    def test_blocked_reason_prefers_notes(self, initialized_state):
        initialized_state.update_state(notes="CI failing", blocked_reason="other")
        assert initialized_state.blocked_reason() == "CI failing"

    def test_blocked_reason_falls_back(self, initialized_state):
        initialized_state.update_state(blocked_reason="needs API key")
        assert initialized_state.blocked_reason() == "needs API key"

    def test_blocked_reason_keeps_empty_notes(self, initialized_state):
        initialized_state.update_state(notes="", blocked_reason="needs API key")
        assert initialized_state.blocked_reason() == ""

    def test_blocked_reason_default(self, initialized_state):
        assert initialized_state.blocked_reason() == "No reason provided"

    def test_blocked_reason_without_state(self, state):
        assert state.blocked_reason() is None


class TestBuildContext:
    """Tests for the context document handed to the Agent."""

    def test_placeholders_without_any_state(self, state):
        """Every section is present even when nothing has been written."""
        context = state.build_context()

        for marker in (
            "## Goal",
            "## Success Criteria",
            "## Status",
            "## Plan",
            "## Context from Previous Sessions",
            "## Recent Progress",
        ):
            assert marker in context

        assert "- Phase: unknown" in context
        assert "- Current task: none" in context
        assert "- PR: none" in context
        assert "- Session: 0" in context
        assert "_No plan yet. Generate one first._" in context
        assert "_No context yet._" in context
        assert "_No progress yet._" in context

    def test_uses_state_values(self, initialized_state):
        initialized_state.update_state(
            status="working",
            current_task="Task 1.2: Add models",
            pr_number=42,
            session_count=3,
        )
        initialized_state.save_plan("# Plan for: Build X")

        context = initialized_state.build_context()

        assert context.startswith("# Current State\n\n## Goal\nBuild X\n")
        assert "## Success Criteria\ntests pass\n" in context
        assert "- Phase: working" in context
        assert "- Current task: Task 1.2: Add models" in context
        assert "- PR: #42" in context
        assert "- Session: 3" in context
        assert "# Plan for: Build X" in context
        assert "# Progress" in context


class TestClean:
    """Tests for removing the state directory."""

    def test_clean_removes_directory(self, initialized_state):
        assert initialized_state.clean() is True
        assert not initialized_state.dir.exists()
        assert initialized_state.exists() is False

    def test_clean_without_directory(self, state):
        assert state.clean() is False
