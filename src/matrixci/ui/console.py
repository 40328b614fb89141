"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
import traceback
from typing import Dict, List, Optional


class Console:
    """Centralized console output formatting. Safe to use from job worker threads."""

    def __init__(self, debug: bool = False, stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where normal output goes (defaults to sys.stdout)
        """
        self.debug = debug
        self._stream = stream
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else (self._stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(
        self,
        run_id: str,
        workflow: str,
        ref: str,
        event: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Run: {run_id}",
            f"Workflow: {workflow}",
            f"Event: {event} {ref}",
            f"Jobs: {job_count}",
            "",
        )

    def print_trigger_rejected(self, event: str, ref: str, reason: str) -> None:
        self._out(f"\nNO RUN: {event} {ref}", f"Reason: {reason}")

    def print_run_cancelled(self, run_id: str, by: Optional[str] = None) -> None:
        suffix = f" (superseded by {by})" if by else ""
        self._out(f"\nRUN CANCELLED: {run_id}{suffix}")

    def print_job_start(self, name: str, runs_on: str) -> None:
        self._out(f"\nJOB STARTED: {name} (runs-on: {runs_on})")

    def print_step(self, job: str, name: str) -> None:
        self._out(f"[{job}] STEP: {name}")

    def print_step_skipped(self, job: str, name: str, condition: str) -> None:
        self._out(f"[{job}] STEP SKIPPED: {name} (if: {condition})")

    def print_success(self, name: str) -> None:
        self._out(f"[{name}] STATUS: succeeded")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print job failure message.

        Args:
            name: Job instance name
            reason: Failure reason/error message
            exit_code: Optional exit code of the failing command
            output: Optional captured output tail (shown in debug mode)
        """
        lines = [f"JOB FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if self.debug:
            lines.append(f"Error details: {reason}")
            if output:
                lines.append(output.rstrip())
        else:
            # first line of error for non-debug mode
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        self._out(*lines)

    def print_job_cancelled(self, name: str) -> None:
        self._out(f"[{name}] STATUS: cancelled")

    def print_job_skipped(self, name: str, reason: str) -> None:
        self._out(f"\nJOB SKIPPED: {name} ({reason})")

    def print_cache(self, job: str, reason: str) -> None:
        self._out(f"[{job}] CACHE: {reason}")

    def print_cache_saved(self, job: str, key: str) -> None:
        short_key = key[:40] + "..." if len(key) > 40 else key
        self._out(f"[{job}] CACHE: saved ({short_key})")

    def print_plan(self, instances: List[tuple]) -> None:
        """Print (job, name, runs_on, steps) rows of an expanded run."""
        self._out("\nPLAN")
        for job, name, runs_on, steps in instances:
            self._out(f"  {job}: {name} on {runs_on} ({steps} steps)")

    def print_results(self, results: Dict[str, str], release: Optional[str] = None) -> None:
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for job, status in results.items():
            lines.append(f"  {job}: {status.upper()}")
        if release:
            lines.append(f"  release: {release.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
