"""
Core data models for Claude Task Master.

This module defines the small records passed between components:
- Status constants for the machine state's "status" field
- AgentResult returned by every Agent invocation
- CIStatus / PRStatus / ReviewThread produced by the GitHub client
- LoopOutcome describing why the work loop stopped
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum, auto
from typing import Any, Iterator, Optional


class Status:
    """
    Known values of state.json's "status" field.

    The Agent may write any other value; the loop treats everything that is
    not SUCCESS or BLOCKED as "keep working".
    """
    PLANNING = "planning"
    READY = "ready"
    WORKING = "working"
    BLOCKED = "blocked"
    SUCCESS = "success"


@dataclass
class AgentResult:
    """
    Outcome of one Agent invocation.

    Unpacks as (success, output, exit_code).
    """
    success: bool
    output: str
    exit_code: int

    def __iter__(self) -> Iterator[Any]:
        return iter((self.success, self.output, self.exit_code))


class CIStatus(Enum):
    """Aggregated CI state for a pull request."""
    PASSING = "passing"
    FAILING = "failing"
    PENDING = "pending"
    UNKNOWN = "unknown"


@dataclass
class PRStatus:
    """CI status of a pull request plus the individual checks."""
    status: CIStatus = CIStatus.UNKNOWN
    checks: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"status": self.status.value, "checks": list(self.checks)}


@dataclass
class ReviewThread:
    """First comment of an unresolved review thread."""
    id: str
    author: Optional[str] = None
    body: Optional[str] = None
    file_path: Optional[str] = None
    line: Optional[int] = None
    comment_id: Optional[int] = None           # REST id of the first comment

    @classmethod
    def from_graphql(cls, node: dict[str, Any]) -> ReviewThread:
        """Create from a GraphQL reviewThreads node."""
        comments = (node.get("comments") or {}).get("nodes") or []
        first = comments[0] if comments else {}
        author = first.get("author") or {}
        return cls(
            id=node.get("id", ""),
            author=author.get("login"),
            body=first.get("body"),
            file_path=first.get("path"),
            line=first.get("line"),
            comment_id=first.get("databaseId"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


class LoopOutcome(Enum):
    """Why the work loop returned."""
    SUCCESS = auto()                 # Agent set status=success
    BLOCKED = auto()                 # Agent set status=blocked
    MAX_SESSIONS = auto()            # Session limit for this run reached
    PAUSED_FOR_PR = auto()           # New PR created with pause_on_pr
    INTERRUPTED = auto()             # User pressed Ctrl+C

    @property
    def is_failure(self) -> bool:
        """Only a blocked run should end with a nonzero exit code."""
        return self is LoopOutcome.BLOCKED
