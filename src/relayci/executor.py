# executor.py
from __future__ import annotations

import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Tuple

from .actions import ActionContext, ActionRegistry, default_registry
from .cache import CacheManager, MemoryCacheBackend
from .env import ENV_FILE_VAR, EnvironmentContext
from .errors import ActionError, Cancelled, StepFailure, TimedOut, UnknownAction
from .model import ActionRef, Command, Job, JobResult, Status, Step, StepResult
from .process import run_process
from .ui.console import Console, get_console

CANCELLED = "Cancelled"


def _effective_timeout(step_timeout: Optional[float], deadline: Optional[float]) -> Optional[float]:
    """Smaller of the step's own limit and what is left of the job's."""
    limits = []
    if step_timeout is not None:
        limits.append(step_timeout)
    if deadline is not None:
        limits.append(deadline - time.monotonic())
    return min(limits) if limits else None


class StepExecutor:
    """
    Runs the steps of one job, in declared order, on the calling thread.

    Fail-fast: the first failed or timed-out step stops the job, later steps
    are recorded as skipped and never started. Exports and cache writes made
    by earlier steps stay in place.
    """

    def __init__(
        self,
        *,
        registry: ActionRegistry | None = None,
        cache: CacheManager | None = None,
        workspace: str | Path = ".",
        console: Console | None = None,
        cancel_event: threading.Event | None = None,
        base_env: Mapping[str, str] | None = None,
    ):
        self.registry = registry or default_registry()
        self.console = console or get_console()
        self.cache = cache or CacheManager(MemoryCacheBackend(), console=self.console)
        self.workspace = Path(workspace).resolve()
        self.cancel_event = cancel_event or threading.Event()
        self.base_env = dict(os.environ) if base_env is None else dict(base_env)

    # ------------------------------------------------------------------
    # Job
    # ------------------------------------------------------------------

    def run_job(self, job: Job, pipeline_env: Mapping[str, str] | None = None) -> JobResult:
        if self.cancel_event.is_set():
            # queued behind the worker limit when the run was cancelled
            self.console.print_job_skipped(job.name, "pipeline cancelled")
            return JobResult(job.name, Status.SKIPPED, reason="pipeline cancelled")

        env = EnvironmentContext(pipeline_env, job.env, base=self.base_env)
        started = time.monotonic()
        deadline = started + job.timeout if job.timeout else None
        post: List[Tuple[str, Callable[[], None]]] = []
        results: List[StepResult] = []
        failed: Optional[StepResult] = None

        self.console.print_job_start(job.name)

        for step in job.steps:
            if failed is not None:
                results.append(StepResult(name=step.label, status=Status.SKIPPED, reason="earlier step failed"))
                continue

            if self.cancel_event.is_set():
                result = StepResult(name=step.label, status=Status.FAILURE, reason=CANCELLED)
            elif deadline is not None and time.monotonic() >= deadline:
                result = StepResult(name=step.label, status=Status.TIMED_OUT, reason="job timeout")
            else:
                self.console.print_step(job.name, step.label)
                result = self.run_step(job, step, env, deadline=deadline, post=post)
                self.console.print_step_result(job.name, result)

            results.append(result)
            if result.status.failed:
                failed = result

        if failed is None:
            # post hooks run last-registered first, only for successful jobs
            for label, fn in reversed(post):
                result = self._run_post(job, label, fn)
                results.append(result)
                if result.status.failed:
                    failed = result
                    break

        duration = time.monotonic() - started
        if failed is None:
            job_result = JobResult(job.name, Status.SUCCESS, results, duration)
        else:
            reason = failed.reason if failed.reason == CANCELLED else str(
                StepFailure(job.name, failed.name, failed.exit_code, failed.reason or "", failed.output)
            )
            job_result = JobResult(job.name, Status.FAILURE, results, duration, reason=reason)
            self.console.print_failure_output(job.name, failed)

        self.console.print_job_result(job_result)
        return job_result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def run_step(
        self,
        job: Job,
        step: Step,
        env: EnvironmentContext,
        *,
        deadline: Optional[float] = None,
        post: Optional[List[Tuple[str, Callable[[], None]]]] = None,
    ) -> StepResult:
        started = time.monotonic()
        if isinstance(step, Command):
            result = self._run_command(job, step, env, deadline)
        elif isinstance(step, ActionRef):
            result = self._run_action(job, step, env, deadline, post if post is not None else [])
        else:
            raise TypeError(f"unsupported step type: {type(step).__name__}")
        result.duration = time.monotonic() - started
        return result

    def _run_command(
        self, job: Job, step: Command, env: EnvironmentContext, deadline: Optional[float]
    ) -> StepResult:
        cwd = (self.workspace / (step.cwd or ".")).resolve()
        if not cwd.is_dir():
            return StepResult(step.label, Status.FAILURE, reason=f"working directory not found: {cwd}")

        timeout = _effective_timeout(step.timeout, deadline)
        fd, env_file = tempfile.mkstemp(prefix="relayci-env-")
        os.close(fd)
        try:
            proc_env = env.materialize(step.env)
            proc_env[ENV_FILE_VAR] = env_file
            outcome = run_process(
                step.run,
                env=proc_env,
                cwd=cwd,
                timeout=timeout,
                cancel_event=self.cancel_event,
            )
            if outcome.ok:
                added = env.absorb_env_file(Path(env_file).read_text(encoding="utf-8", errors="replace"))
                if added:
                    self.console.print_debug(f"[{job.name}] exported {sorted(added)}")
        finally:
            Path(env_file).unlink(missing_ok=True)

        if outcome.cancelled:
            return StepResult(step.label, Status.FAILURE, reason=CANCELLED, output=outcome.output)
        if outcome.timed_out:
            return StepResult(step.label, Status.TIMED_OUT, reason=f"timed out after {timeout:.1f}s", output=outcome.output)
        if outcome.exit_code != 0:
            return StepResult(step.label, Status.FAILURE, exit_code=outcome.exit_code, output=outcome.output)
        return StepResult(step.label, Status.SUCCESS, exit_code=0, output=outcome.output)

    def _run_action(
        self,
        job: Job,
        step: ActionRef,
        env: EnvironmentContext,
        deadline: Optional[float],
        post: List[Tuple[str, Callable[[], None]]],
    ) -> StepResult:
        try:
            handler = self.registry.resolve(step.uses)
        except UnknownAction as e:
            return StepResult(step.label, Status.FAILURE, reason=str(e))

        timeout = _effective_timeout(step.timeout, deadline)
        ctx = ActionContext(
            job=job.name,
            step=step,
            env=env,
            cache=self.cache,
            workspace=self.workspace,
            console=self.console,
            deadline=None if timeout is None else time.monotonic() + timeout,
            cancel_event=self.cancel_event,
        )
        try:
            handler(ctx)
        except ActionError as e:
            return StepResult(step.label, Status.FAILURE, exit_code=e.exit_code, reason=e.message, output=e.output)
        except TimedOut as e:
            return StepResult(step.label, Status.TIMED_OUT, reason=str(e))
        except Cancelled:
            return StepResult(step.label, Status.FAILURE, reason=CANCELLED)
        except Exception as e:
            self.console.print_exception(e)
            return StepResult(step.label, Status.FAILURE, reason=f"{type(e).__name__}: {e}")

        if ctx.deadline is not None and time.monotonic() > ctx.deadline:
            return StepResult(step.label, Status.TIMED_OUT, reason=f"timed out after {timeout:.1f}s")
        post.extend(ctx.post)
        return StepResult(step.label, Status.SUCCESS)

    def _run_post(self, job: Job, label: str, fn: Callable[[], None]) -> StepResult:
        name = f"Post {label}"
        self.console.print_step(job.name, name)
        started = time.monotonic()
        try:
            fn()
            result = StepResult(name, Status.SUCCESS)
        except ActionError as e:
            result = StepResult(name, Status.FAILURE, exit_code=e.exit_code, reason=e.message, output=e.output)
        except (TimedOut, Cancelled) as e:
            result = StepResult(name, Status.FAILURE, reason=str(e) or type(e).__name__)
        except Exception as e:
            self.console.print_exception(e)
            result = StepResult(name, Status.FAILURE, reason=f"{type(e).__name__}: {e}")
        result.duration = time.monotonic() - started
        self.console.print_step_result(job.name, result)
        return result
