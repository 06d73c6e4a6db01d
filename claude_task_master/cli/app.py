"""Main Typer app definition and commands.

This is the canonical entry point for the CLI. The app, callback, and
all commands are defined here.
"""
from __future__ import annotations

import platform
import subprocess
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape

from claude_task_master import STATE_DIR, __version__
from claude_task_master.cli.common import (
    build_github,
    build_logger,
    build_runner,
    build_state_store,
    get_console,
    load_project_config,
    set_project_dir,
)
from claude_task_master.cli.display import comments_table, format_status
from claude_task_master.config import ConfigError, TaskMasterConfig
from claude_task_master.errors import AgentError
from claude_task_master.github import GitHubClient
from claude_task_master.llm_clients import ClaudeCliRunner
from claude_task_master.state_store import StateStoreError
from claude_task_master.work_loop import LoopOptions, WorkLoop

# Create Typer app
app = typer.Typer(
    name="claude-task-master",
    help="Keep Claude working on a goal until it is done - run from any project directory",
    add_completion=False,
)

# Rich console for output - use singleton from common module
console = get_console()

MIN_PYTHON = (3, 10)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"claude-task-master {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    project: Optional[str] = typer.Option(
        None,
        "--project",
        "-p",
        help="Project directory to operate on (default: current directory)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Claude Task Master - autonomous task orchestration for Claude.

    Plans the work, then keeps starting Claude sessions until the success
    criteria are met. Run without a command to resume existing work.
    """
    set_project_dir(None)
    if project:
        project_path = Path(project)
        if not project_path.is_dir():
            console.print(f"[red]Error: Project directory not found: {escape(project)}[/red]")
            raise typer.Exit(1)
        set_project_dir(str(project_path.absolute()))

    # No subcommand: resume if there is state, otherwise show help
    if ctx.invoked_subcommand is None:
        config = _load_config_or_exit()
        if build_state_store(config).exists():
            _run_loop(config)
        else:
            typer.echo(ctx.get_help())
        raise typer.Exit(0)


# =========================================================================
# Helpers
# =========================================================================


def _load_config_or_exit() -> TaskMasterConfig:
    try:
        return load_project_config()
    except ConfigError as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def _check_prerequisites(config: TaskMasterConfig, github: GitHubClient) -> None:
    """Exit if Claude is missing; warn if gh is not usable."""
    if not ClaudeCliRunner.available(config.claude.binary):
        console.print("[red]Claude CLI not found. Install it first:[/red]")
        console.print("  npm install -g @anthropic-ai/claude-code")
        raise typer.Exit(1)

    if not github.available():
        console.print("[yellow]Warning: gh CLI not authenticated. PR features won't work.[/yellow]")
        console.print("  Run: gh auth login")


def _prompt_for_criteria() -> str:
    console.print("[cyan]What are your success criteria?[/cyan]")
    console.print("[dim](e.g., 'tests pass, deploys to staging, no sentry errors for 10min')[/dim]")
    return typer.prompt(">", prompt_suffix=" ")


def _run_loop(
    config: TaskMasterConfig,
    *,
    goal: Optional[str] = None,
    criteria: Optional[str] = None,
    model: Optional[str] = None,
    no_merge: bool = False,
    max_sessions: Optional[int] = None,
    pause_on_pr: bool = False,
    verbose: bool = False,
) -> None:
    """Start (goal given) or resume the work loop and map its outcome to an exit code."""
    logger = build_logger(config)
    github = build_github(config, logger)
    _check_prerequisites(config, github)

    state = build_state_store(config, logger)
    if goal is None and not state.exists():
        console.print(f"[red]No existing state found in {STATE_DIR}/[/red]")
        console.print("Run 'claude-task-master start \"your goal\"' to begin.")
        raise typer.Exit(1)

    if goal is not None and criteria is None:
        criteria = _prompt_for_criteria()

    options = LoopOptions.from_config(
        config.loop,
        no_merge=no_merge or None,
        max_sessions=max_sessions,
        pause_on_pr=pause_on_pr or None,
        verbose=verbose or None,
    )
    runner = build_runner(config, model=model, logger=logger, verbose=options.verbose)
    loop = WorkLoop(
        state,
        runner,
        github=github,
        options=options,
        console=console,
        logger=logger,
        project_dir=config.project_dir,
    )

    try:
        if goal is not None:
            outcome = loop.run(goal, criteria)
        else:
            outcome = loop.resume()
    except (AgentError, ConfigError, StateStoreError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Interrupted during planning. Run 'claude-task-master resume' to retry.[/yellow]")
        raise typer.Exit(130)

    if outcome.is_failure:
        raise typer.Exit(1)


def _require_state():
    """Return the state store, or None after printing a hint."""
    state = build_state_store(_load_config_or_exit())
    if not state.exists():
        console.print("[yellow]No active task.[/yellow]")
        return None
    return state


def _print_document(content: str) -> None:
    console.print(content, markup=False, highlight=False)


def _tool_version(args: list[str]) -> Optional[str]:
    """First line of a tool's version output, or None if it cannot run."""
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    output = (result.stdout or result.stderr).strip()
    return output.splitlines()[0] if output else None


# =========================================================================
# Loop Commands
# =========================================================================


@app.command()
def start(
    goal: str = typer.Argument(..., help="What Claude should accomplish"),
    criteria: Optional[str] = typer.Option(
        None, "--criteria", "-c",
        help="Success criteria (will prompt if not provided)",
    ),
    model: Optional[str] = typer.Option(
        None, "--model",
        help="Claude model to use (sonnet, opus, haiku)",
    ),
    no_merge: bool = typer.Option(
        False, "--no-merge",
        help="Do not auto-merge PRs (require manual merge)",
    ),
    max_sessions: Optional[int] = typer.Option(
        None, "--max-sessions", "-m", min=1,
        help="Maximum number of sessions before stopping",
    ),
    pause_on_pr: bool = typer.Option(
        False, "--pause-on-pr",
        help="Pause after creating each PR for review",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Show verbose output",
    ),
) -> None:
    """
    Start working on a new goal.

    Claude analyzes the codebase, writes a plan to .claude-task-master/plan.md
    and then works autonomously until the success criteria are met.

    Examples:
        claude-task-master start "build a REST API with user auth"
        claude-task-master start "fix all TypeScript errors" -c "tsc passes"
    """
    config = _load_config_or_exit()
    _run_loop(
        config,
        goal=goal,
        criteria=criteria,
        model=model,
        no_merge=no_merge,
        max_sessions=max_sessions,
        pause_on_pr=pause_on_pr,
        verbose=verbose,
    )


@app.command()
def resume(
    model: Optional[str] = typer.Option(None, "--model", help="Claude model to use"),
    no_merge: bool = typer.Option(False, "--no-merge", help="Do not auto-merge PRs"),
    max_sessions: Optional[int] = typer.Option(
        None, "--max-sessions", "-m", min=1,
        help="Maximum sessions before stopping",
    ),
    pause_on_pr: bool = typer.Option(False, "--pause-on-pr", help="Pause after creating each PR"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show verbose output"),
) -> None:
    """
    Resume previous work.

    Use after pressing Ctrl+C, hitting the session limit, or reviewing a PR.
    """
    config = _load_config_or_exit()
    _run_loop(
        config,
        model=model,
        no_merge=no_merge,
        max_sessions=max_sessions,
        pause_on_pr=pause_on_pr,
        verbose=verbose,
    )


# =========================================================================
# Inspection Commands
# =========================================================================


@app.command()
def status() -> None:
    """Show current status."""
    state = build_state_store(_load_config_or_exit())
    if not state.exists():
        console.print("[yellow]No active task. Run 'claude-task-master start \"goal\"' to begin.[/yellow]")
        return

    current = state.load_state() or {}
    pr_number = current.get("pr_number")

    console.print("[bold cyan]claude-task-master status[/bold cyan]")
    console.print()
    console.print(f"Goal: {escape(state.goal or '')}")
    console.print(f"Criteria: {escape(state.criteria or '')}")
    console.print()
    console.print("Status:", format_status(current.get("status")))
    console.print(f"Current task: {escape(str(current.get('current_task') or 'none'))}")
    console.print(f"PR: {'#' + str(pr_number) if pr_number else 'none'}")
    console.print(f"Sessions: {current.get('session_count')}")
    console.print(f"Started: {current.get('started_at')}")
    console.print(f"Updated: {current.get('updated_at')}")
    console.print()
    console.print(f"State dir: {state.dir}")


@app.command()
def plan() -> None:
    """Show the current plan."""
    state = _require_state()
    if state is None:
        return

    content = state.plan
    if content:
        _print_document(content)
    else:
        console.print("[yellow]No plan yet. Run 'claude-task-master resume' to generate one.[/yellow]")


@app.command()
def logs(
    session: Optional[int] = typer.Option(None, "--session", "-s", help="Specific session number"),
    last: int = typer.Option(1, "--last", "-l", min=1, help="Show last N sessions"),
) -> None:
    """Show session logs."""
    state = _require_state()
    if state is None:
        return

    if session is not None:
        content = state.read_session_log(session)
        if content is None:
            console.print(f"[red]Session {session} not found.[/red]")
        else:
            _print_document(content)
        return

    for path in state.session_log_paths()[-last:]:
        console.print(f"[cyan]=== {path.name} ===[/cyan]")
        _print_document(path.read_text(encoding="utf-8"))
        console.print()


@app.command()
def context() -> None:
    """Show the accumulated context file."""
    state = _require_state()
    if state is None:
        return

    content = state.context
    if content is not None:
        _print_document(content)
    else:
        console.print("[dim]No context file yet.[/dim]")


@app.command()
def progress() -> None:
    """Show the progress log."""
    state = _require_state()
    if state is None:
        return

    content = state.progress
    if content is not None:
        _print_document(content)
    else:
        console.print("[dim]No progress log yet.[/dim]")


@app.command()
def comments(
    pr: Optional[int] = typer.Argument(None, help="PR number (default: the PR recorded in state)"),
    actionable: bool = typer.Option(
        False, "--actionable", "-a",
        help="Only show comments that need changes or are unresolved",
    ),
) -> None:
    """Show review comments on a pull request, classified by severity."""
    config = _load_config_or_exit()

    if pr is None:
        current = build_state_store(config).load_state() or {}
        pr = current.get("pr_number")
    if not pr:
        console.print("[yellow]No PR given and none recorded in state.[/yellow]")
        raise typer.Exit(1)

    github = build_github(config, build_logger(config))
    if not github.available():
        console.print("[red]GitHub CLI not authenticated. Run: gh auth login[/red]")
        raise typer.Exit(1)

    found = github.actionable_comments(pr) if actionable else github.pr_comments(pr)
    if not found:
        kind = "actionable comments" if actionable else "review comments"
        console.print(f"[green]No {kind} on PR #{pr}.[/green]")
        return

    title = f"PR #{pr}: {len(found)} {'actionable ' if actionable else ''}comments"
    console.print(comments_table(found, title))


# =========================================================================
# Maintenance Commands
# =========================================================================


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"claude-task-master {__version__}")


@app.command()
def doctor() -> None:
    """Check prerequisites and system health."""
    config = _load_config_or_exit()
    github = build_github(config)
    all_good = True

    console.print("[bold cyan]claude-task-master doctor[/bold cyan]")
    console.print()

    if ClaudeCliRunner.available(config.claude.binary):
        claude_version = ClaudeCliRunner.version(config.claude.binary) or "installed"
        console.print(f"Claude CLI: [green]{escape(claude_version)}[/green]")
    else:
        console.print("Claude CLI: [red]NOT FOUND[/red]")
        console.print("[dim]  Install: npm install -g @anthropic-ai/claude-code[/dim]")
        all_good = False

    gh_version = _tool_version([config.github.binary, "--version"])
    if gh_version:
        console.print(f"GitHub CLI: [green]{escape(gh_version)}[/green]")
    else:
        console.print("GitHub CLI: [red]NOT FOUND[/red]")
        console.print("[dim]  Install: https://cli.github.com/[/dim]")
        all_good = False

    if github.available():
        console.print("GitHub Auth: [green]authenticated[/green]")
    else:
        console.print("GitHub Auth: [yellow]NOT AUTHENTICATED[/yellow]")
        console.print("[dim]  Run: gh auth login[/dim]")
        all_good = False

    git_version = _tool_version(["git", "--version"])
    if git_version:
        console.print(f"Git: [green]{escape(git_version)}[/green]")
    else:
        console.print("Git: [red]NOT FOUND[/red]")
        all_good = False

    python_version = platform.python_version()
    if sys.version_info[:2] >= MIN_PYTHON:
        console.print(f"Python: [green]{python_version}[/green]")
    else:
        console.print(f"Python: [yellow]{python_version} (recommend 3.10+)[/yellow]")

    if _tool_version(["git", "-C", config.project_dir, "rev-parse", "--git-dir"]):
        console.print(f"Git repo: [green]{escape(github.current_repo() or 'local repo')}[/green]")
    else:
        console.print("Git repo: [yellow]not in a git repository[/yellow]")

    if (Path(config.project_dir) / "CLAUDE.md").is_file():
        console.print("CLAUDE.md: [green]present[/green]")
    else:
        console.print("CLAUDE.md: [dim]not found (optional)[/dim]")

    state = build_state_store(config)
    if state.exists():
        current = state.load_state() or {}
        console.print(f"State dir: [cyan]exists (status: {current.get('status')})[/cyan]")
    else:
        console.print("State dir: [dim]none[/dim]")

    console.print()
    if all_good:
        console.print("[bold green]All prerequisites met![/bold green]")
    else:
        console.print("[bold red]Some prerequisites missing. Fix them before running.[/bold red]")
        raise typer.Exit(1)


@app.command()
def clean(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Remove the state directory and start fresh."""
    state = build_state_store(_load_config_or_exit())
    if not state.exists():
        console.print("[yellow]No state directory to clean.[/yellow]")
        return

    if not force:
        console.print(f"[yellow]This will delete {STATE_DIR}/ and all session data.[/yellow]")
        if not typer.confirm("Are you sure?", default=False):
            console.print("Aborted.")
            return

    try:
        state.clean()
    except StateStoreError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Cleaned up {STATE_DIR}/[/green]")


# =========================================================================
# Entry Point
# =========================================================================


def cli_main() -> None:
    """Entry point for the CLI."""
    app()


__all__ = ["app", "cli_main"]
