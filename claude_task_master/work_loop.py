"""
Planning phase and work loop for Claude Task Master.

This module drives the Agent until the goal is met:
- run() initializes state, plans, then works
- resume() re-enters after an interrupt, pause or session limit
- Each work session gets a fresh context document and its own transcript

Terminal conditions are read from state.json, which the Agent itself
updates; the loop only forces a status when planning fails or when the
Agent forgets to mark the plan ready.
"""

from __future__ import annotations

import time
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol, Union

from rich.console import Console
from rich.markup import escape

from claude_task_master import STATE_DIR
from claude_task_master.errors import AgentError, ConfigError
from claude_task_master.models import AgentResult, CIStatus, LoopOutcome, Status
from claude_task_master.prompts import planning_prompt, work_prompt
from claude_task_master.utils.formatting import now_iso, tail, truncate
from claude_task_master.utils.fs import file_exists, read_file

if TYPE_CHECKING:
    from claude_task_master.config import LoopConfig
    from claude_task_master.github import GitHubClient
    from claude_task_master.logger import EventLogger
    from claude_task_master.state_store import StateStore

CLAUDE_MD = "CLAUDE.md"

# Characters of Agent output copied into progress.md on failure
FAILURE_TAIL_LENGTH = 500

GOAL_PREVIEW_LENGTH = 100


class AgentRunner(Protocol):
    """Anything that can run a prompt, such as ClaudeCliRunner."""

    def invoke(self, prompt: str) -> AgentResult: ...


@dataclass
class LoopOptions:
    """Per-run behaviour of the work loop."""
    no_merge: bool = False
    max_sessions: Optional[int] = None         # Sessions per process run, not cumulative
    pause_on_pr: bool = False
    verbose: bool = False
    sleep_seconds: float = 2.0

    @classmethod
    def from_config(cls, config: LoopConfig, **overrides: Any) -> LoopOptions:
        """Build options from LoopConfig, with non-None overrides taking precedence."""
        values = {
            "no_merge": config.no_merge,
            "max_sessions": config.max_sessions,
            "pause_on_pr": config.pause_on_pr,
            "verbose": config.verbose,
            "sleep_seconds": config.sleep_seconds,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def describe(self) -> list[str]:
        """Active options as short labels for display."""
        active = []
        if self.no_merge:
            active.append("no-merge")
        if self.max_sessions:
            active.append(f"max-sessions={self.max_sessions}")
        if self.pause_on_pr:
            active.append("pause-on-pr")
        if self.verbose:
            active.append("verbose")
        return active


class WorkLoop:
    """
    State machine that keeps invoking the Agent until the goal is met.

    Statuses other than success and blocked all mean "keep working".
    """

    def __init__(
        self,
        state: StateStore,
        runner: AgentRunner,
        github: Optional[GitHubClient] = None,
        options: Optional[LoopOptions] = None,
        console: Optional[Console] = None,
        logger: Optional[EventLogger] = None,
        project_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        """
        Initialize the loop.

        Args:
            state: Store for the project's state directory.
            runner: Agent runner used for every session.
            github: Client used to show PR status; None skips the display.
            options: Loop behaviour. Defaults to LoopOptions().
            console: Rich console for user-facing output.
            logger: Optional logger for recording operations.
            project_dir: Where CLAUDE.md is looked up. Defaults to the
                state store's project directory.
        """
        self.state = state
        self.runner = runner
        self.github = github
        self.options = options or LoopOptions()
        self.console = console or Console()
        self._logger = logger
        self.project_dir = Path(project_dir) if project_dir else state.project_dir
        self._session_count = 0

    def _log(
        self,
        event_type: str,
        data: Optional[dict] = None,
        level: str = "info"
    ) -> None:
        """Log an event if logger is configured."""
        if self._logger:
            self._logger.log(event_type, data, level=level)

    def _session_scope(self, session_num: int):
        if self._logger:
            return self._logger.session_context(f"session-{session_num:03d}")
        return nullcontext()

    # Entry points

    def run(self, goal: str, criteria: str) -> LoopOutcome:
        """
        Start from scratch: initialize state, plan, then work.

        Raises:
            AgentError: If the planning session fails.
        """
        self.console.print("[cyan]Starting claude-task-master...[/cyan]")
        self.console.print(f"[dim]Goal: {escape(truncate(goal, GOAL_PREVIEW_LENGTH))}[/dim]")
        self._show_options()
        self.console.print()

        self.state.init(goal, criteria)
        self._log("loop_started", {"goal_length": len(goal), "options": self.options.describe()})

        self._plan_phase()
        return self._work_loop()

    def resume(self) -> LoopOutcome:
        """
        Continue from existing state, re-planning if planning never finished.

        Raises:
            ConfigError: If there is no state to resume from, or state.json
                cannot be read.
            AgentError: If a re-run planning session fails.
        """
        if not self.state.exists():
            raise ConfigError("No existing state found. Start fresh with a goal.")

        current = self.state.load_state()
        if current is None:
            raise ConfigError(
                f"{self.state.state_path} is unreadable. Fix it or run 'claude-task-master clean'."
            )
        goal = self.state.goal or ""
        self.console.print("[cyan]Resuming claude-task-master...[/cyan]")
        self.console.print(f"[dim]Goal: {escape(truncate(goal, GOAL_PREVIEW_LENGTH))}[/dim]")
        self.console.print(f"[dim]Status: {current.get('status')}[/dim]")
        self.console.print(f"[dim]Session: {current.get('session_count')}[/dim]")
        self._show_options()
        self.console.print()

        self._log("loop_resumed", {"status": current.get("status")})

        if current.get("status") == Status.PLANNING:
            self._plan_phase()

        return self._work_loop()

    def _show_options(self) -> None:
        active = self.options.describe()
        if active:
            self.console.print(f"[dim]Options: {', '.join(active)}[/dim]")

    # Phase 1

    def _plan_phase(self) -> None:
        """
        Run the planning session.

        Raises:
            AgentError: If the Agent reports failure. Status is set to
                blocked and the output tail recorded first.
        """
        self.console.print("[yellow]Phase 1: Planning...[/yellow]")

        claude_md_path = self.project_dir / CLAUDE_MD
        existing_claude_md = read_file(claude_md_path) if file_exists(claude_md_path) else None

        prompt = planning_prompt(
            self.state.goal or "",
            existing_claude_md=existing_claude_md,
            no_merge=self.options.no_merge,
        )

        session_num = self.state.next_session_number()
        self.state.update_state(session_count=session_num)

        with self._session_scope(session_num):
            success, output, exit_code = self.runner.invoke(prompt)
            self.state.log_session(session_num, f"# Planning Session\n\n{output}")

        if not success:
            self.state.update_state(status=Status.BLOCKED)
            self.state.append_progress(f"\n## Blocked in Planning\n\n{tail(output, FAILURE_TAIL_LENGTH)}")
            self._log("planning_failed", {"session": session_num, "exit_code": exit_code}, level="error")
            raise AgentError("Planning failed. Check logs.", output=output, exit_code=exit_code)

        current = self.state.load_state() or {}
        if current.get("status") != Status.READY:
            self.state.update_state(status=Status.READY)

        self._log("planning_complete", {"session": session_num})
        self.console.print(f"[green]Plan created. Check {STATE_DIR}/plan.md[/green]")
        self.console.print()

    # Phase 2

    def _work_loop(self) -> LoopOutcome:
        """Iterate work sessions until a terminal condition is reached."""
        self.console.print("[yellow]Phase 2: Working...[/yellow]")
        self.console.print("[dim]Press Ctrl+C to pause (can resume later)[/dim]")
        self.console.print()

        try:
            while True:
                if self.state.is_success():
                    self.console.print()
                    self.console.print("[bold green]SUCCESS![/bold green]")
                    self.console.print(f"[green]All tasks completed. Check {STATE_DIR}/progress.md[/green]")
                    return self._finish(LoopOutcome.SUCCESS)

                if self.state.is_blocked():
                    reason = self.state.blocked_reason()
                    self.console.print()
                    self.console.print("[bold red]BLOCKED[/bold red]")
                    self.console.print(
                        f"[red]Claude got stuck. Check {STATE_DIR}/progress.md for details.[/red]"
                    )
                    self.console.print()
                    self.console.print(f"[yellow]Reason: {escape(str(reason))}[/yellow]")
                    return self._finish(LoopOutcome.BLOCKED, {"reason": reason})

                max_sessions = self.options.max_sessions
                if max_sessions and self._session_count >= max_sessions:
                    self.console.print()
                    self.console.print("[bold yellow]MAX SESSIONS REACHED[/bold yellow]")
                    self.console.print(
                        f"[yellow]Stopped after {self._session_count} sessions. "
                        "Run 'claude-task-master resume' to continue.[/yellow]"
                    )
                    self.state.append_progress(
                        f"\n_Stopped at max sessions ({self._session_count}) at {now_iso()}_\n"
                    )
                    return self._finish(LoopOutcome.MAX_SESSIONS)

                pr_before = (self.state.load_state() or {}).get("pr_number")
                self._work_iteration()
                self._session_count += 1

                pr_after = (self.state.load_state() or {}).get("pr_number")
                if pr_after and pr_after != pr_before and self.options.pause_on_pr:
                    self.console.print()
                    self.console.print("[bold yellow]NEW PR CREATED[/bold yellow]")
                    self.console.print(f"[yellow]Paused for review. PR #{pr_after}[/yellow]")
                    self.console.print("[dim]Run 'claude-task-master resume' to continue after review.[/dim]")
                    self.state.append_progress(f"\n_Paused for PR review (#{pr_after}) at {now_iso()}_\n")
                    return self._finish(LoopOutcome.PAUSED_FOR_PR, {"pr": pr_after})

                if self.options.sleep_seconds > 0:
                    time.sleep(self.options.sleep_seconds)

        except KeyboardInterrupt:
            self.console.print()
            self.console.print("[yellow]Paused. Run 'claude-task-master' to resume.[/yellow]")
            self.state.append_progress(f"\n_Paused at {now_iso()}_\n")
            return self._finish(LoopOutcome.INTERRUPTED)

    def _finish(self, outcome: LoopOutcome, data: Optional[dict] = None) -> LoopOutcome:
        log_data = {"outcome": outcome.name.lower(), "sessions": self._session_count}
        if data:
            log_data.update(data)
        self._log("loop_stopped", log_data, level="warn" if outcome.is_failure else "info")
        return outcome

    def _work_iteration(self) -> None:
        """Run one work session and record its transcript."""
        current = self.state.load_state() or {}
        session_num = self.state.next_session_number()

        if current.get("pr_number"):
            self._show_pr_status(current["pr_number"])

        task = current.get("current_task") or "next task"
        self.console.print(f"[cyan]\\[Session {session_num}] Working on: {escape(str(task))}[/cyan]")

        context = self.state.build_context()
        prompt = work_prompt(context, no_merge=self.options.no_merge)

        self.state.update_state(session_count=session_num)

        started_at = now_iso()
        start = time.monotonic()
        with self._session_scope(session_num):
            success, output, exit_code = self.runner.invoke(prompt)
            duration = round(time.monotonic() - start, 1)

            self.state.log_session(
                session_num,
                f"# Work Session {session_num}\n"
                "\n"
                f"_Duration: {duration}s_\n"
                f"_Started: {started_at}_\n"
                "\n"
                "## Output\n"
                "\n"
                f"{output}\n",
            )

        if success:
            self.console.print(f"[green]  Completed in {duration}s[/green]")
            self._log("session_complete", {"session": session_num, "duration": duration})
        else:
            self.console.print(f"[red]  Session ended with error ({duration}s)[/red]")
            self.state.append_progress(
                f"\n## Session {session_num} Error\n\n{tail(output, FAILURE_TAIL_LENGTH)}"
            )
            self._log("session_failed", {
                "session": session_num,
                "duration": duration,
                "exit_code": exit_code,
            }, level="warn")

        if self.options.verbose and output:
            self.console.print(tail(output, FAILURE_TAIL_LENGTH), style="dim", markup=False)

        new_state = self.state.load_state() or {}
        if new_state.get("current_task") != current.get("current_task"):
            self.console.print(f"[dim]  Task changed: {escape(str(new_state.get('current_task')))}[/dim]")
        new_pr = new_state.get("pr_number")
        if new_pr and new_pr != current.get("pr_number"):
            self.console.print(f"[dim]  PR created: #{new_pr}[/dim]")

    def _show_pr_status(self, pr_number: int) -> None:
        """Print one line of CI and review status. Never raises."""
        if self.github is None:
            return

        try:
            pr_status = self.github.pr_status(pr_number)
            unresolved = self.github.unresolved_threads(pr_number)
        except Exception as e:
            self._log("pr_status_unavailable", {"pr": pr_number, "error": str(e)}, level="warn")
            self.console.print(f"[dim]  PR #{pr_number}: (couldn't fetch status)[/dim]")
            return

        ci_text = {
            CIStatus.PASSING: "[green]CI passing[/green]",
            CIStatus.FAILING: "[red]CI failing[/red]",
            CIStatus.PENDING: "[yellow]CI pending[/yellow]",
        }.get(pr_status.status, "[dim]CI unknown[/dim]")

        if unresolved:
            comments_text = f"[yellow]{len(unresolved)} unresolved comments[/yellow]"
        else:
            comments_text = "[green]0 unresolved[/green]"

        self.console.print(f"[dim]  PR #{pr_number}:[/dim] {ci_text} [dim]|[/dim] {comments_text}")
