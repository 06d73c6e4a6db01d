"""Tests for the planning phase and work loop with a scripted Agent."""
import io
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from claude_task_master.config import LoopConfig
from claude_task_master.errors import AgentError, ConfigError
from claude_task_master.models import AgentResult, CIStatus, LoopOutcome, PRStatus, ReviewThread
from claude_task_master.work_loop import LoopOptions, WorkLoop


class FakeRunner:
    """
    Scripted Agent.

    Each step is None or a callable taking (state, prompt) and returning
    an AgentResult, or None for a plain success. Once the script runs out
    every call succeeds without touching state.
    """

    def __init__(self, state, steps=()):
        self.state = state
        self.steps = list(steps)
        self.prompts = []

    def invoke(self, prompt):
        self.prompts.append(prompt)
        step = self.steps.pop(0) if self.steps else None
        if step is not None:
            result = step(self.state, prompt)
            if result is not None:
                return result
        return AgentResult(True, f"output {len(self.prompts)}", 0)

    @property
    def calls(self):
        return len(self.prompts)


def set_state(**fields):
    def step(state, prompt):
        state.update_state(**fields)
    return step


def fail(output="something broke"):
    def step(state, prompt):
        return AgentResult(False, output, 1)
    return step


def interrupt(state, prompt):
    raise KeyboardInterrupt


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def make_loop(output):
    def make(state, runner, **kwargs):
        options = kwargs.pop("options", LoopOptions(sleep_seconds=0))
        console = Console(file=output, width=200)
        return WorkLoop(state, runner, options=options, console=console, **kwargs)
    return make


@pytest.fixture
def ready_state(initialized_state):
    """State as left by a finished planning phase, with no session records."""
    initialized_state.update_state(status="ready", current_task="Task 1.1")
    return initialized_state


class TestRun:
    """Tests for starting from scratch."""

    def test_full_run(self, state, make_loop):
        """Planning marks the state ready, then the work loop runs until success."""
        seen_status = []

        def plan(st, prompt):
            seen_status.append(st.load_state()["status"])
            st.save_plan("# Plan for: Build X\n- [ ] Task 1.1")

        runner = FakeRunner(state, [plan, set_state(status="success")])
        outcome = make_loop(state, runner).run("Build X", "tests pass")

        assert outcome is LoopOutcome.SUCCESS
        assert seen_status == ["planning"]
        assert runner.calls == 2
        assert "Build X" in runner.prompts[0]
        assert state.load_state()["status"] == "success"
        assert [p.name for p in state.session_log_paths()] == ["session-001.md", "session-002.md"]
        assert state.read_session_log(1).startswith("# Planning Session\n\noutput 1")

    def test_planning_forces_ready(self, state, make_loop):
        """If the Agent forgets to set ready, the loop does it."""
        runner = FakeRunner(state, [set_state(status="working"), set_state(status="success")])

        loop = make_loop(state, runner)
        with patch.object(loop, "_work_loop", return_value=LoopOutcome.SUCCESS):
            loop.run("Build X", "tests pass")

        assert state.load_state()["status"] == "ready"

    def test_planning_records_session_count(self, state, make_loop):
        runner = FakeRunner(state)
        loop = make_loop(state, runner)
        with patch.object(loop, "_work_loop", return_value=LoopOutcome.SUCCESS):
            loop.run("Build X", "tests pass")
        assert state.load_state()["session_count"] == 1

    def test_planning_failure(self, state, make_loop):
        """A failed planning session blocks the run and raises."""
        runner = FakeRunner(state, [fail("x" * 600 + "fatal: no repo")])

        with pytest.raises(AgentError, match="Planning failed. Check logs."):
            make_loop(state, runner).run("Build X", "tests pass")

        assert state.load_state()["status"] == "blocked"
        progress = state.progress
        assert "\n## Blocked in Planning\n\n" in progress
        assert progress.endswith("fatal: no repo")
        tail = progress.split("## Blocked in Planning\n\n", 1)[1]
        assert len(tail) == 500
        assert state.read_session_log(1) is not None

    def test_claude_md_included_in_planning_prompt(self, state, project_dir, make_loop):
        (project_dir / "CLAUDE.md").write_text("Always use tabs.")
        runner = FakeRunner(state, [None, set_state(status="success")])

        make_loop(state, runner).run("Build X", "tests pass")

        assert "Always use tabs." in runner.prompts[0]

    def test_no_merge_reaches_prompts(self, state, make_loop):
        runner = FakeRunner(state, [None, set_state(status="success")])
        options = LoopOptions(no_merge=True, sleep_seconds=0)

        make_loop(state, runner, options=options).run("Build X", "tests pass")

        assert all("DO NOT MERGE" in p for p in runner.prompts)


class TestResume:
    """Tests for re-entering existing state."""

    def test_without_state_raises(self, state, make_loop):
        with pytest.raises(ConfigError):
            make_loop(state, FakeRunner(state)).resume()

    def test_corrupt_state_raises_without_overwriting(self, initialized_state, make_loop):
        initialized_state.state_path.write_text("{not json")
        runner = FakeRunner(initialized_state)

        with pytest.raises(ConfigError, match="unreadable"):
            make_loop(initialized_state, runner).resume()

        assert runner.calls == 0
        assert initialized_state.state_path.read_text() == "{not json"

    def test_blocked_state_stops_immediately(self, initialized_state, make_loop, output):
        """A blocked state reports the reason without invoking the Agent."""
        initialized_state.update_state(status="blocked", notes="CI failing")
        runner = FakeRunner(initialized_state)

        outcome = make_loop(initialized_state, runner).resume()

        assert outcome is LoopOutcome.BLOCKED
        assert outcome.is_failure
        assert runner.calls == 0
        assert "CI failing" in output.getvalue()

    def test_success_state_stops_immediately(self, initialized_state, make_loop):
        initialized_state.update_state(status="success")
        runner = FakeRunner(initialized_state)

        assert make_loop(initialized_state, runner).resume() is LoopOutcome.SUCCESS
        assert runner.calls == 0

    def test_planning_status_replans(self, initialized_state, make_loop):
        """Resuming a state that never finished planning plans first."""
        runner = FakeRunner(initialized_state, [None, set_state(status="success")])

        make_loop(initialized_state, runner).resume()

        assert runner.calls == 2
        assert "Planning Phase" in runner.prompts[0]
        assert "Work Session" in runner.prompts[1]

    def test_first_iteration_from_ready(self, ready_state, make_loop):
        """The first work iteration is session 1 with exactly one record."""
        runner = FakeRunner(ready_state, [set_state(status="success")])

        make_loop(ready_state, runner).resume()

        assert runner.calls == 1
        assert ready_state.load_state()["session_count"] == 1
        assert [p.name for p in ready_state.session_log_paths()] == ["session-001.md"]


class TestWorkLoop:
    """Tests for the loop's stop conditions."""

    def test_max_sessions(self, ready_state, make_loop):
        """Two sessions run, the third pass stops without invoking the Agent."""
        runner = FakeRunner(ready_state)
        options = LoopOptions(max_sessions=2, sleep_seconds=0)

        outcome = make_loop(ready_state, runner, options=options).resume()

        assert outcome is LoopOutcome.MAX_SESSIONS
        assert outcome.is_failure is False
        assert runner.calls == 2
        assert ready_state.load_state()["status"] == "ready"
        assert "\n_Stopped at max sessions (2) at " in ready_state.progress

    def test_failed_session_is_recorded_and_retried(self, ready_state, make_loop):
        """A failing session leaves status alone and the loop goes on."""
        runner = FakeRunner(ready_state, [fail("E" * 700), set_state(status="success")])

        outcome = make_loop(ready_state, runner).resume()

        assert outcome is LoopOutcome.SUCCESS
        assert runner.calls == 2
        progress = ready_state.progress
        assert "\n## Session 1 Error\n\n" + "E" * 500 in progress
        assert "E" * 501 not in progress

    def test_failed_session_does_not_block(self, ready_state, make_loop):
        runner = FakeRunner(ready_state, [fail()])
        options = LoopOptions(max_sessions=1, sleep_seconds=0)

        make_loop(ready_state, runner, options=options).resume()

        assert ready_state.load_state()["status"] == "ready"

    def test_agent_blocks_mid_loop(self, ready_state, make_loop, output):
        runner = FakeRunner(ready_state, [set_state(status="blocked", notes="Needs API key")])

        outcome = make_loop(ready_state, runner).resume()

        assert outcome is LoopOutcome.BLOCKED
        assert "Needs API key" in output.getvalue()

    def test_pause_on_new_pr(self, ready_state, make_loop):
        runner = FakeRunner(ready_state, [set_state(pr_number=7)])
        options = LoopOptions(pause_on_pr=True, sleep_seconds=0)

        outcome = make_loop(ready_state, runner, options=options).resume()

        assert outcome is LoopOutcome.PAUSED_FOR_PR
        assert runner.calls == 1
        assert "\n_Paused for PR review (#7) at " in ready_state.progress

    def test_new_pr_without_pause_continues(self, ready_state, make_loop):
        runner = FakeRunner(ready_state, [set_state(pr_number=7), set_state(status="success")])

        assert make_loop(ready_state, runner).resume() is LoopOutcome.SUCCESS
        assert runner.calls == 2

    def test_interrupt_is_a_clean_pause(self, ready_state, make_loop):
        runner = FakeRunner(ready_state, [interrupt])

        outcome = make_loop(ready_state, runner).resume()

        assert outcome is LoopOutcome.INTERRUPTED
        assert "\n_Paused at " in ready_state.progress
        assert ready_state.load_state()["status"] == "ready"

    def test_sleeps_between_passes(self, ready_state, make_loop):
        runner = FakeRunner(ready_state)
        options = LoopOptions(max_sessions=2, sleep_seconds=2.0)

        with patch("claude_task_master.work_loop.time.sleep") as mock_sleep:
            make_loop(ready_state, runner, options=options).resume()

        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(2.0)

    def test_max_sessions_counts_this_run_only(self, ready_state, make_loop):
        """Sessions from earlier runs do not count toward the limit."""
        ready_state.update_state(session_count=10)
        runner = FakeRunner(ready_state)
        options = LoopOptions(max_sessions=1, sleep_seconds=0)

        make_loop(ready_state, runner, options=options).resume()

        assert runner.calls == 1


class TestWorkIteration:
    """Tests for a single session."""

    def test_session_log_format(self, ready_state, make_loop):
        runner = FakeRunner(ready_state, [set_state(status="success")])

        make_loop(ready_state, runner).resume()

        log = ready_state.read_session_log(1)
        assert log.startswith("# Work Session 1\n\n_Duration: ")
        assert "s_\n_Started: " in log
        assert log.endswith("_\n\n## Output\n\noutput 1\n")

    def test_prompt_contains_fresh_context(self, ready_state, make_loop):
        ready_state.save_plan("# Plan\n- [ ] Task 1.1: scaffold")
        runner = FakeRunner(ready_state, [set_state(status="success")])

        make_loop(ready_state, runner).resume()

        prompt = runner.prompts[0]
        assert "Task 1.1: scaffold" in prompt
        assert "- Current task: Task 1.1" in prompt

    def test_reports_task_and_pr_changes(self, ready_state, make_loop, output):
        runner = FakeRunner(ready_state, [
            set_state(current_task="Task 1.2", pr_number=15),
            set_state(status="success"),
        ])

        make_loop(ready_state, runner).resume()

        text = output.getvalue()
        assert "Task changed: Task 1.2" in text
        assert "PR created: #15" in text

    def test_pr_status_line(self, ready_state, make_loop, output):
        ready_state.update_state(pr_number=3)
        github = MagicMock()
        github.pr_status.return_value = PRStatus(status=CIStatus.PASSING)
        github.unresolved_threads.return_value = []
        runner = FakeRunner(ready_state, [set_state(status="success")])

        make_loop(ready_state, runner, github=github).resume()

        assert "PR #3: CI passing | 0 unresolved" in output.getvalue()

    def test_pr_status_counts_unresolved(self, ready_state, make_loop, output):
        ready_state.update_state(pr_number=3)
        github = MagicMock()
        github.pr_status.return_value = PRStatus(status=CIStatus.FAILING)
        github.unresolved_threads.return_value = [ReviewThread(id="T1"), ReviewThread(id="T2")]
        runner = FakeRunner(ready_state, [set_state(status="success")])

        make_loop(ready_state, runner, github=github).resume()

        assert "CI failing | 2 unresolved comments" in output.getvalue()

    def test_pr_status_errors_are_swallowed(self, ready_state, make_loop, output):
        ready_state.update_state(pr_number=3)
        github = MagicMock()
        github.pr_status.side_effect = RuntimeError("gh exploded")
        runner = FakeRunner(ready_state, [set_state(status="success")])

        outcome = make_loop(ready_state, runner, github=github).resume()

        assert outcome is LoopOutcome.SUCCESS
        assert "PR #3: (couldn't fetch status)" in output.getvalue()

    def test_session_events_logged(self, ready_state, make_loop):
        logger = MagicMock()
        runner = FakeRunner(ready_state, [set_state(status="success")])

        make_loop(ready_state, runner, logger=logger).resume()

        logger.session_context.assert_called_once_with("session-001")
        events = [c.args[0] for c in logger.log.call_args_list]
        assert "session_complete" in events
        assert events[-1] == "loop_stopped"


class TestLoopOptions:
    """Tests for building options from config."""

    def test_from_config(self):
        config = LoopConfig(no_merge=True, max_sessions=5, sleep_seconds=0.5)
        options = LoopOptions.from_config(config)
        assert options.no_merge is True
        assert options.max_sessions == 5
        assert options.sleep_seconds == 0.5

    def test_overrides_ignore_none(self):
        config = LoopConfig(max_sessions=5)
        options = LoopOptions.from_config(config, max_sessions=None, pause_on_pr=True)
        assert options.max_sessions == 5
        assert options.pause_on_pr is True

    def test_describe(self):
        options = LoopOptions(no_merge=True, max_sessions=3, verbose=True)
        assert options.describe() == ["no-merge", "max-sessions=3", "verbose"]
