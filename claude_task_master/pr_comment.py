"""
Pull request review comments and their triage.

This module provides:
- classify_severity(), a pure mapping from comment text to a severity tag
- PRComment, a typed record built from GitHub's review-comment JSON, with
  cached derived fields (line range, severity, summary, suggestion code)
- Bot detection for CodeRabbit, Copilot and other "[bot]" accounts
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property
from typing import Any, Optional

from claude_task_master.utils.formatting import truncate

CRITICAL = "critical"
WARNING = "warning"
MAJOR = "major"
TRIVIAL = "trivial"
REFACTOR = "refactor"
NITPICK = "nitpick"
SUGGESTION = "suggestion"
INFO = "info"

ACTIONABLE_SEVERITIES = frozenset({CRITICAL, MAJOR, WARNING})

CODERABBIT_BOT = "coderabbitai[bot]"
COPILOT_BOT = "github-copilot[bot]"
KNOWN_BOTS = (CODERABBIT_BOT, COPILOT_BOT)

SUMMARY_MAX_LENGTH = 100

# Ordered: the first matching severity wins.
_SEVERITY_PATTERNS: list[tuple[str, tuple[re.Pattern[str], ...]]] = [
    (CRITICAL, (
        re.compile("\u274c.*Critical", re.DOTALL),                 # ❌
        re.compile(r"\*\*Critical\*\*", re.IGNORECASE),
    )),
    (WARNING, (
        re.compile("\u26a0\ufe0f?.*Warning", re.DOTALL),          # ⚠️
        re.compile(r"\*\*Warning\*\*", re.IGNORECASE),
    )),
    (MAJOR, (
        re.compile("\U0001f7e0 Major"),                             # 🟠
        re.compile(r"\*\*Major\*\*", re.IGNORECASE),
    )),
    (TRIVIAL, (
        re.compile("\U0001f535 Trivial"),                           # 🔵
        re.compile(r"\*\*Trivial\*\*", re.IGNORECASE),
    )),
    (REFACTOR, (
        re.compile("\U0001f6e0\ufe0f? Refactor"),                  # 🛠️
        re.compile(r"refactor suggestion", re.IGNORECASE),
    )),
    (NITPICK, (
        re.compile("\U0001f9f9 Nitpick"),                           # 🧹
        re.compile(r"nitpick", re.IGNORECASE),
    )),
    (SUGGESTION, (
        re.compile(r"suggestion:", re.IGNORECASE),
        re.compile(r"consider:", re.IGNORECASE),
    )),
]

_BOLD = re.compile(r"\*\*(.+?)\*\*")
_SUGGESTION_BLOCK = re.compile(r"```suggestion[^\n]*\n(.*?)\n```", re.DOTALL)
_METADATA_PREFIXES = ("_", "<", "<!--")


def classify_severity(body: Optional[str]) -> str:
    """
    Map a review comment body to a severity tag.

    Recognises the markers CodeRabbit and Copilot put in their comments.
    Returns "info" for empty bodies and anything unrecognised.
    """
    if not body:
        return INFO

    for severity, patterns in _SEVERITY_PATTERNS:
        if any(pattern.search(body) for pattern in patterns):
            return severity
    return INFO


def is_actionable(severity: str) -> bool:
    """True for severities that need a change before merging."""
    return severity in ACTIONABLE_SEVERITIES


def _extract_author(user: Any) -> Optional[str]:
    if isinstance(user, str):
        return user
    if isinstance(user, dict):
        return user.get("login")
    return None


@dataclass
class PRComment:
    """A single review comment on a pull request."""

    id: Optional[int] = None
    file_path: Optional[str] = None
    line: Optional[int] = None
    start_line: Optional[int] = None
    body: Optional[str] = None
    author: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    html_url: Optional[str] = None
    resolved: Optional[bool] = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> PRComment:
        """
        Create from one item of GitHub's pull request review-comment JSON.

        "user" may be the API's user object or a bare login string.
        """
        resolved = item.get("resolved")
        return cls(
            id=item.get("id"),
            file_path=item.get("path"),
            line=item.get("line"),
            start_line=item.get("start_line"),
            body=item.get("body"),
            author=_extract_author(item.get("user")),
            created_at=item.get("created_at"),
            updated_at=item.get("updated_at"),
            html_url=item.get("html_url"),
            resolved=resolved if isinstance(resolved, bool) else None,
        )

    @classmethod
    def from_api_response(cls, data: dict[str, Any] | list[dict[str, Any]]) -> list[PRComment]:
        """Create a list of comments from a single item or a list of items."""
        if isinstance(data, dict):
            data = [data]
        return [cls.from_api(item) for item in data]

    @cached_property
    def line_range(self) -> str:
        """Line span as "40-42", "42" for a single line, or "40-" when the end line is gone."""
        start = self.start_line if self.start_line is not None else self.line
        end = "" if self.line is None else str(self.line)
        if start == self.line:
            return end
        return f"{start}-{end}"

    @cached_property
    def severity(self) -> str:
        return classify_severity(self.body)

    @cached_property
    def summary(self) -> Optional[str]:
        """
        One-line summary of the comment.

        The first bold span if there is one, otherwise the first line that
        is not blank or metadata (lines starting with "_" or "<").
        """
        if not self.body:
            return None

        match = _BOLD.search(self.body)
        if match:
            return match.group(1)

        for line in self.body.splitlines():
            stripped = line.strip()
            if stripped and not stripped.startswith(_METADATA_PREFIXES):
                return truncate(stripped, SUMMARY_MAX_LENGTH)
        return None

    @cached_property
    def suggestion_code(self) -> Optional[str]:
        """Code inside a ```suggestion block, if the comment has one."""
        if not self.has_suggestion:
            return None
        match = _SUGGESTION_BLOCK.search(self.body)
        return match.group(1) if match else None

    @property
    def actionable(self) -> bool:
        return is_actionable(self.severity)

    @property
    def has_suggestion(self) -> bool:
        return bool(self.body) and "```suggestion" in self.body

    @property
    def from_coderabbit(self) -> bool:
        return self.author == CODERABBIT_BOT

    @property
    def from_copilot(self) -> bool:
        return self.author == COPILOT_BOT

    @property
    def from_bot(self) -> bool:
        if not self.author:
            return False
        return self.author in KNOWN_BOTS or self.author.endswith("[bot]")

    @property
    def from_human(self) -> bool:
        return not self.from_bot

    @property
    def is_resolved(self) -> bool:
        return self.resolved is True

    @property
    def is_unresolved(self) -> bool:
        return self.resolved is False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "file_path": self.file_path,
            "line_range": self.line_range,
            "author": self.author,
            "severity": self.severity,
            "summary": self.summary,
            "actionable": self.actionable,
            "from_bot": self.from_bot,
            "resolved": self.is_resolved,
            "has_suggestion": self.has_suggestion,
            "html_url": self.html_url,
        }
