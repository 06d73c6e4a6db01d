"""
GitHub access for Claude Task Master.

This module wraps the gh CLI:
- CI status, review threads and review comments for a pull request
- Creating, merging and replying to pull requests
- Resolving review threads through the GraphQL API
- Gracefully handles a missing gh CLI or authentication errors

Read operations never raise; failures are logged and degrade to empty or
"unknown" values so the work loop keeps running.
"""

from __future__ import annotations

import json
import re
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Union

from claude_task_master.config import GitHubConfig
from claude_task_master.errors import GitHubError
from claude_task_master.models import CIStatus, PRStatus, ReviewThread
from claude_task_master.pr_comment import PRComment

if TYPE_CHECKING:
    from claude_task_master.logger import EventLogger


_THREADS_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      reviewThreads(first: 100) {
        nodes {
          id
          isResolved
          comments(first: 10) {
            nodes {
              databaseId
              body
              author { login }
              path
              line
            }
          }
        }
      }
    }
  }
}
"""

_RESOLVE_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread {
      id
      isResolved
    }
  }
}
"""

_PR_URL_NUMBER = re.compile(r"/pull/(\d+)")


def _parse_json_stream(text: str) -> list[Any]:
    """
    Decode one or more concatenated JSON documents.

    `gh api --paginate` prints one array per page back to back.
    """
    decoder = json.JSONDecoder()
    documents = []
    index = 0
    text = text.strip()
    while index < len(text):
        document, end = decoder.raw_decode(text, index)
        documents.append(document)
        index = end
        while index < len(text) and text[index].isspace():
            index += 1
    return documents


class GitHubClient:
    """
    Client for the repository hosting service, backed by the gh CLI.

    Constructed once by the caller and passed to the components that need
    it. The repository name and availability are cached per instance;
    reset() clears them.
    """

    def __init__(
        self,
        config: Optional[GitHubConfig] = None,
        project_dir: Optional[Union[str, Path]] = None,
        logger: Optional[EventLogger] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: GitHubConfig with the gh binary and timeouts.
            project_dir: Directory gh commands run in (the repository checkout).
            logger: Optional logger for recording operations.
        """
        self.config = config or GitHubConfig()
        self.project_dir = str(project_dir) if project_dir else None
        self._logger = logger
        self._gh_available: Optional[bool] = None
        self._current_repo: Optional[str] = None

    def _log(
        self,
        event_type: str,
        data: Optional[dict] = None,
        level: str = "info",
    ) -> None:
        """Log an event if logger is configured."""
        if self._logger:
            log_data = {"component": "github"}
            if data:
                log_data.update(data)
            self._logger.log(event_type, log_data, level=level)

    def _run_gh_command(
        self,
        args: list[str],
        timeout: Optional[int] = None,
    ) -> tuple[bool, str, str]:
        """
        Run a gh CLI command.

        Args:
            args: Arguments to pass to gh CLI.
            timeout: Command timeout in seconds (defaults to config).

        Returns:
            Tuple of (success, stdout, stderr).
        """
        try:
            result = subprocess.run(
                [self.config.binary] + args,
                cwd=self.project_dir,
                capture_output=True,
                text=True,
                timeout=timeout or self.config.timeout_seconds,
            )
            return result.returncode == 0, result.stdout, result.stderr
        except subprocess.TimeoutExpired:
            return False, "", "Command timed out"
        except Exception as e:
            return False, "", str(e)

    def _run_graphql(self, query: str, **variables: Any) -> Optional[dict[str, Any]]:
        """
        Run a GraphQL document through `gh api graphql`.

        Integer variables are sent typed (-F), everything else as strings (-f).

        Returns:
            The decoded response, or None if gh failed without a JSON body.
        """
        args = ["api", "graphql", "-f", f"query={query}"]
        for key, value in variables.items():
            flag = "-F" if isinstance(value, int) else "-f"
            args.extend([flag, f"{key}={value}"])

        success, stdout, stderr = self._run_gh_command(args)
        try:
            response = json.loads(stdout) if stdout.strip() else None
        except json.JSONDecodeError:
            response = None

        if response is None and not success:
            self._log("gh_graphql_failed", {"stderr": stderr[:200]}, level="warn")
        return response

    def reset(self) -> None:
        """Forget the cached repository and availability."""
        self._gh_available = None
        self._current_repo = None

    def available(self) -> bool:
        """
        Check if gh CLI is installed and authenticated.

        Results are cached after first check.
        """
        if self._gh_available is not None:
            return self._gh_available

        try:
            result = subprocess.run(
                [self.config.binary, "auth", "status"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            self._gh_available = result.returncode == 0
            if not self._gh_available:
                self._log("gh_auth_failed", {
                    "stderr": result.stderr[:200] if result.stderr else "",
                }, level="warn")
        except FileNotFoundError:
            self._gh_available = False
            self._log("gh_not_found", level="warn")
        except subprocess.TimeoutExpired:
            self._gh_available = False
            self._log("gh_timeout", level="warn")

        return self._gh_available

    def current_repo(self) -> Optional[str]:
        """Repository as "owner/name", or None outside a GitHub checkout."""
        if self._current_repo is None:
            success, stdout, _ = self._run_gh_command([
                "repo", "view", "--json", "nameWithOwner", "-q", ".nameWithOwner",
            ])
            if success and stdout.strip():
                self._current_repo = stdout.strip()
        return self._current_repo

    # Reads

    def pr_status(self, pr_number: int) -> PRStatus:
        """
        Aggregate CI state of a pull request.

        Any failed check makes the PR failing, otherwise any pending check
        makes it pending. No checks at all is unknown.
        """
        if not self.current_repo():
            return PRStatus()

        success, stdout, stderr = self._run_gh_command([
            "pr", "checks", str(pr_number), "--json", "name,state,bucket",
        ])
        if not stdout.strip():
            if not success:
                self._log("pr_status_failed", {"pr": pr_number, "stderr": stderr[:200]}, level="warn")
            return PRStatus()

        try:
            checks = json.loads(stdout)
        except json.JSONDecodeError:
            self._log("pr_status_invalid_json", {"pr": pr_number}, level="warn")
            return PRStatus()

        if not checks:
            return PRStatus(status=CIStatus.UNKNOWN, checks=[])

        buckets = {check.get("bucket") for check in checks}
        if "fail" in buckets:
            status = CIStatus.FAILING
        elif "pending" in buckets:
            status = CIStatus.PENDING
        else:
            status = CIStatus.PASSING

        return PRStatus(status=status, checks=checks)

    def unresolved_threads(self, pr_number: int) -> list[ReviewThread]:
        """Unresolved review threads, each represented by its first comment."""
        repo = self.current_repo()
        if not repo:
            return []

        owner, name = repo.split("/", 1)
        response = self._run_graphql(_THREADS_QUERY, owner=owner, name=name, number=int(pr_number))
        if not response:
            return []

        try:
            nodes = response["data"]["repository"]["pullRequest"]["reviewThreads"]["nodes"]
        except (KeyError, TypeError):
            self._log("review_threads_missing", {"pr": pr_number}, level="warn")
            return []

        return [
            ReviewThread.from_graphql(node)
            for node in nodes or []
            if not node.get("isResolved")
        ]

    def pr_comments(self, pr_number: int) -> list[PRComment]:
        """All review comments on a pull request, across pages."""
        repo = self.current_repo()
        if not repo:
            return []

        success, stdout, stderr = self._run_gh_command([
            "api", "--paginate", f"repos/{repo}/pulls/{pr_number}/comments",
        ])
        if not success:
            self._log("pr_comments_failed", {"pr": pr_number, "stderr": stderr[:200]}, level="warn")
            return []

        try:
            pages = _parse_json_stream(stdout)
        except json.JSONDecodeError:
            self._log("pr_comments_invalid_json", {"pr": pr_number}, level="warn")
            return []

        items: list[dict[str, Any]] = []
        for page in pages:
            if isinstance(page, list):
                items.extend(page)
            elif isinstance(page, dict):
                items.append(page)
        return PRComment.from_api_response(items)

    def actionable_comments(self, pr_number: int) -> list[PRComment]:
        """
        Comments that need attention.

        A comment qualifies if its severity is actionable or it opens a
        thread that is still unresolved.
        """
        comments = self.pr_comments(pr_number)
        unresolved_ids = {
            thread.comment_id for thread in self.unresolved_threads(pr_number)
            if thread.comment_id is not None
        }
        return [
            comment for comment in comments
            if comment.actionable or comment.id in unresolved_ids
        ]

    def pr_info(self, pr_number: int) -> Optional[dict[str, Any]]:
        """Basic pull request metadata, or None if it cannot be fetched."""
        if not self.current_repo():
            return None

        success, stdout, _ = self._run_gh_command([
            "pr", "view", str(pr_number), "--json",
            "number,title,state,url,headRefName,baseRefName,mergeable",
        ])
        if not success:
            return None

        try:
            data = json.loads(stdout)
        except json.JSONDecodeError:
            return None

        return {
            "number": data.get("number"),
            "title": data.get("title"),
            "state": data.get("state"),
            "url": data.get("url"),
            "head_ref": data.get("headRefName"),
            "base_ref": data.get("baseRefName"),
            "mergeable": data.get("mergeable"),
            "merged": data.get("state") == "MERGED",
        }

    def open_prs(self) -> list[dict[str, Any]]:
        """Open pull requests as number, title and head branch."""
        if not self.current_repo():
            return []

        success, stdout, _ = self._run_gh_command([
            "pr", "list", "--state", "open", "--json", "number,title,headRefName",
        ])
        if not success:
            return []

        try:
            data = json.loads(stdout)
        except json.JSONDecodeError:
            return []

        return [
            {"number": pr.get("number"), "title": pr.get("title"), "head_ref": pr.get("headRefName")}
            for pr in data
        ]

    def wait_for_ci(self, pr_number: int, timeout: Optional[int] = None) -> str:
        """
        Block until CI finishes.

        Returns:
            "passing", "failing", or "timeout".
        """
        timeout = timeout or self.config.ci_wait_timeout_seconds
        try:
            result = subprocess.run(
                [self.config.binary, "pr", "checks", str(pr_number), "--watch", "--fail-fast"],
                cwd=self.project_dir,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            self._log("ci_wait_timeout", {"pr": pr_number, "timeout": timeout}, level="warn")
            return "timeout"
        except OSError as e:
            self._log("ci_wait_failed", {"pr": pr_number, "error": str(e)}, level="warn")
            return "failing"

        return "passing" if result.returncode == 0 else "failing"

    # Writes

    def create_pr(
        self,
        title: str,
        body: str,
        base: str = "main",
        head: Optional[str] = None,
    ) -> tuple[bool, Union[int, str]]:
        """
        Open a pull request.

        Returns:
            (True, pr_number) on success, (False, error_message) otherwise.
        """
        if not self.current_repo():
            return False, "Not in a git repository"

        args = ["pr", "create", "--title", title, "--body", body, "--base", base]
        if head:
            args.extend(["--head", head])

        success, stdout, stderr = self._run_gh_command(args)
        if not success:
            self._log("pr_create_failed", {"stderr": stderr[:200]}, level="warn")
            return False, stderr.strip() or "gh pr create failed"

        match = _PR_URL_NUMBER.search(stdout)
        if not match:
            return False, f"Could not find PR number in output: {stdout.strip()}"

        pr_number = int(match.group(1))
        self._log("pr_created", {"pr": pr_number, "title": title})
        return True, pr_number

    def merge_pr(self, pr_number: int, method: str = "squash", delete_branch: bool = True) -> bool:
        """Merge a pull request with the given method (squash, merge or rebase)."""
        if not self.current_repo():
            return False

        args = ["pr", "merge", str(pr_number), f"--{method}"]
        if delete_branch:
            args.append("--delete-branch")

        success, _, stderr = self._run_gh_command(args)
        if not success:
            self._log("pr_merge_failed", {"pr": pr_number, "stderr": stderr[:200]}, level="warn")
            return False

        self._log("pr_merged", {"pr": pr_number, "method": method})
        return True

    def resolve_thread(self, thread_id: str) -> bool:
        """
        Mark a review thread as resolved.

        Raises:
            GitHubError: If the mutation reports errors or gh fails.
        """
        response = self._run_graphql(_RESOLVE_MUTATION, threadId=thread_id)
        if response is None:
            raise GitHubError(f"Failed to resolve thread {thread_id}")

        errors = response.get("errors")
        if errors:
            raise GitHubError(", ".join(e.get("message", str(e)) for e in errors))

        self._log("thread_resolved", {"thread_id": thread_id})
        return True

    def reply_to_comment(self, pr_number: int, comment_id: int, body: str) -> bool:
        """Reply in the thread of a review comment."""
        repo = self.current_repo()
        if not repo:
            return False

        success, _, stderr = self._run_gh_command([
            "api", "--method", "POST",
            f"repos/{repo}/pulls/{pr_number}/comments/{comment_id}/replies",
            "-f", f"body={body}",
        ])
        if not success:
            self._log("comment_reply_failed", {
                "pr": pr_number,
                "comment_id": comment_id,
                "stderr": stderr[:200],
            }, level="warn")
        return success
