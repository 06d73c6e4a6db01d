"""
Claude Code CLI wrapper for Claude Task Master.

This module provides a Python interface to the Claude CLI:
- ClaudeCliRunner class for executing prompts non-interactively
- Streaming of combined stdout/stderr into an in-memory transcript
- Wall-clock timeout that stops the subprocess and everything it spawned
- Availability and version checks for the doctor command
"""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from claude_task_master.config import ClaudeConfig
from claude_task_master.models import AgentResult

if TYPE_CHECKING:
    from claude_task_master.logger import EventLogger

# Marker the CLI prints when the model calls a tool
TOOL_MARKER = "[Tool:"

# Seconds to wait after SIGTERM before sending SIGKILL
TERMINATE_GRACE_SECONDS = 5


@dataclass
class ClaudeCliRunner:
    """
    Runner for the Claude CLI.

    Every failure mode is folded into the returned AgentResult; only a
    KeyboardInterrupt escapes invoke(), after the subprocess is reaped.
    """

    config: ClaudeConfig = field(default_factory=ClaudeConfig)
    logger: Optional[EventLogger] = None
    on_progress: Optional[Callable[[str], None]] = None

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def timeout(self) -> int:
        return self.config.timeout_seconds

    @classmethod
    def available(cls, binary: str = "claude") -> bool:
        """Check if the Claude CLI is on PATH."""
        return shutil.which(binary) is not None

    @classmethod
    def version(cls, binary: str = "claude") -> str:
        """Return `claude --version` output, or an empty string on failure."""
        try:
            result = subprocess.run(
                [binary, "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired):
            return ""
        return (result.stdout or result.stderr).strip()

    def _build_command(
        self,
        prompt: str,
        *,
        allowed_tools: Optional[list[str]] = None,
    ) -> list[str]:
        """
        Build the CLI command.

        Args:
            prompt: The prompt to send to Claude, passed as the last argument.
            allowed_tools: Tool names for --allowedTools. None omits the flag.

        Returns:
            List of command arguments.
        """
        cmd = [
            self.config.binary,
            "-p",
            "--dangerously-skip-permissions",
            "--model", self.config.model,
        ]

        if allowed_tools is not None:
            cmd.extend(["--allowedTools", ",".join(allowed_tools)])

        cmd.append(prompt)
        return cmd

    def _log(
        self,
        event_type: str,
        data: Optional[dict] = None,
        level: str = "info"
    ) -> None:
        """Log an event if logger is configured."""
        if self.logger:
            self.logger.log(event_type, data, level=level)

    def invoke(
        self,
        prompt: str,
        *,
        allowed_tools: Optional[list[str]] = None,
        working_dir: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> AgentResult:
        """
        Run one non-interactive Claude session.

        Args:
            prompt: The prompt to send to Claude.
            allowed_tools: Tools to allow (overrides config). None uses config.
            working_dir: Working directory (defaults to the current directory).
            timeout: Timeout in seconds (overrides config).

        Returns:
            AgentResult. On timeout the output ends with
            "[TIMEOUT after Ns]", on any other failure with "[ERROR: msg]";
            both use exit code -1.

        Raises:
            KeyboardInterrupt: Re-raised after the subprocess is stopped.
        """
        tools = allowed_tools if allowed_tools is not None else self.config.allowed_tools
        cmd = self._build_command(prompt, allowed_tools=tools)
        timeout_seconds = timeout or self.config.timeout_seconds

        self._log("agent_invocation_start", {
            "prompt_length": len(prompt),
            "model": self.config.model,
            "allowed_tools": tools,
            "timeout": timeout_seconds,
        })

        lines: list[str] = []
        timed_out = threading.Event()
        process: Optional[subprocess.Popen] = None
        timer: Optional[threading.Timer] = None

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=working_dir,
                start_new_session=True,
            )
            timer = threading.Timer(timeout_seconds, self._expire, args=(process, timed_out))
            timer.daemon = True
            timer.start()

            for line in process.stdout:
                lines.append(line)
                if TOOL_MARKER in line and self.on_progress:
                    self.on_progress(line)

            exit_code = process.wait()

        except KeyboardInterrupt:
            self._stop(process)
            self._log("agent_invocation_interrupted", level="warn")
            raise

        except Exception as e:
            self._stop(process)
            self._log("agent_invocation_error", {"error": str(e)}, level="error")
            return AgentResult(False, f"{''.join(lines)}\n\n[ERROR: {e}]", -1)

        finally:
            if timer is not None:
                timer.cancel()

        output = "".join(lines)

        if timed_out.is_set():
            self._stop(process)
            self._log("agent_invocation_timeout", {
                "timeout_seconds": timeout_seconds,
            }, level="error")
            return AgentResult(False, f"{output}\n\n[TIMEOUT after {timeout_seconds}s]", -1)

        self._log("agent_invocation_complete", {
            "exit_code": exit_code,
            "output_length": len(output),
        }, level="info" if exit_code == 0 else "warn")

        return AgentResult(exit_code == 0, output, exit_code)

    @staticmethod
    def _signal_group(process: subprocess.Popen, sig: int) -> None:
        """Send sig to the process group the CLI leads; a group that is gone is ignored."""
        try:
            os.killpg(process.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass

    @classmethod
    def _expire(cls, process: subprocess.Popen, timed_out: threading.Event) -> None:
        """
        Timer callback: flag the timeout and stop the whole process group.

        Descendants are killed too, since any of them may still hold the
        output pipe open after the CLI itself exits.
        """
        timed_out.set()
        cls._signal_group(process, signal.SIGTERM)
        try:
            process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            pass
        cls._signal_group(process, signal.SIGKILL)

    @classmethod
    def _stop(cls, process: Optional[subprocess.Popen]) -> None:
        """Terminate the process group if the CLI is still running, killing it if it lingers, and reap."""
        if process is None:
            return

        if process.poll() is None:
            cls._signal_group(process, signal.SIGTERM)
        try:
            process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            cls._signal_group(process, signal.SIGKILL)
            process.wait()
