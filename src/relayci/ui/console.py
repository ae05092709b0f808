"""Console output formatting utilities for relayci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..model import Event, JobResult, PipelineResult, StepResult


class Console:
    """Centralized console output formatting.

    Jobs run on worker threads, so every print goes through one lock and
    multi-line blocks are never interleaved.
    """

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._lock = threading.RLock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(self, pipeline: str, event: "Event", job_count: int) -> None:
        """Print run start information."""
        self._emit(
            "",
            "RUN STARTED",
            f"Pipeline: {pipeline}",
            f"Event: {event.type} ({event.branch})",
            f"Jobs: {job_count}",
            "",
        )

    def print_pipeline_skipped(self, pipeline: str, reason: str) -> None:
        self._emit("", f"PIPELINE SKIPPED: {pipeline}", f"Reason: {reason}")

    def print_job_start(self, name: str) -> None:
        self._emit(f"[{name}] JOB STARTED")

    def print_step(self, job: str, name: str) -> None:
        self._emit(f"[{job}] ▶ {name}")

    def print_step_result(self, job: str, result: "StepResult") -> None:
        """Print one status line per finished step."""
        line = f"[{job}]   {result.status.value.upper()} {result.name} ({result.duration:.1f}s)"
        if result.exit_code is not None and result.status.failed:
            line += f" exit={result.exit_code}"
        if result.reason and result.status.failed:
            line += f" - {result.reason}"
        self._emit(line)

    def print_job_result(self, result: "JobResult") -> None:
        line = f"[{result.name}] JOB {result.status.value.upper()} ({result.duration:.1f}s)"
        if result.reason:
            line += f" - {result.reason}"
        self._emit(line)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._emit(f"[{name}] JOB SKIPPED ({reason})")

    def print_failure_output(self, job: str, step: "StepResult") -> None:
        """Print the captured output of the first failing step of a job."""
        if not step.output.strip():
            return
        lines = [f"[{job}] output of '{step.name}':"]
        lines.extend(f"    {l}" for l in step.output.rstrip().splitlines())
        self._emit(*lines)

    def print_cache(self, job: str, message: str) -> None:
        self._emit(f"[{job}] cache: {message}")

    def print_cache_error(self, op: str, key: str, exc: BaseException) -> None:
        self._emit(f"CacheError: {op} {key!r} degraded ({exc})", err=True)

    def print_results(self, result: "PipelineResult") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, f"RESULTS: {result.name}", "=" * 40]
        for job in result.jobs.values():
            lines.append(f"  {job.name}: {job.status.value.upper()}")
            for step in job.steps:
                lines.append(f"    - {step.name}: {step.status.value}")
        lines.append(f"PIPELINE: {result.status.value.upper()}")
        if result.reason:
            lines.append(f"Reason: {result.reason}")
        self._emit(*lines)

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
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


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
