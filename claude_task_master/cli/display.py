"""Display helpers and formatters for the CLI.

Contains Rich formatting utilities for statuses and PR review comments.
This module should NOT import from app.py to avoid circular imports.
"""
from __future__ import annotations

from typing import Optional

from rich.table import Table
from rich.text import Text

from claude_task_master.models import Status
from claude_task_master.pr_comment import (
    CRITICAL,
    INFO,
    MAJOR,
    NITPICK,
    REFACTOR,
    SUGGESTION,
    TRIVIAL,
    WARNING,
    PRComment,
)

# State status colors
STATUS_STYLES: dict[str, str] = {
    Status.SUCCESS: "green",
    Status.BLOCKED: "red",
    Status.READY: "cyan",
    Status.WORKING: "cyan",
    Status.PLANNING: "yellow",
}

# Comment severity colors
SEVERITY_STYLES: dict[str, str] = {
    CRITICAL: "red bold",
    WARNING: "yellow bold",
    MAJOR: "yellow",
    REFACTOR: "magenta",
    SUGGESTION: "cyan",
    TRIVIAL: "dim",
    NITPICK: "dim",
    INFO: "dim",
}


def format_status(status: Optional[str]) -> Text:
    """Format a state status as colored text."""
    if status is None:
        return Text("unknown", style="dim")
    return Text(status, style=STATUS_STYLES.get(status, "white"))


def format_severity(severity: str) -> Text:
    """Format a comment severity as colored text."""
    return Text(severity, style=SEVERITY_STYLES.get(severity, "white"))


def format_location(comment: PRComment) -> str:
    """File and line range, e.g. "app/models.py:40-42"."""
    if not comment.file_path:
        return "-"
    if not comment.line_range:
        return comment.file_path
    return f"{comment.file_path}:{comment.line_range}"


def comments_table(comments: list[PRComment], title: str) -> Table:
    """Build a table of review comments, most severe first."""
    order = list(SEVERITY_STYLES)
    ranked = sorted(comments, key=lambda c: order.index(c.severity) if c.severity in order else len(order))

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Severity", no_wrap=True)
    table.add_column("Location", style="cyan")
    table.add_column("Author")
    table.add_column("Summary")

    for comment in ranked:
        author = Text(comment.author or "-", style="dim" if comment.from_bot else "")
        summary = comment.summary or ""
        if comment.has_suggestion:
            summary += " (has suggestion)"
        table.add_row(
            format_severity(comment.severity),
            format_location(comment),
            author,
            Text(summary),
        )

    return table
