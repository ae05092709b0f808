# runner.py
from __future__ import annotations

import os
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Deque, Dict, Mapping

from .actions import ActionRegistry
from .cache import CacheManager
from .dag import build_dag
from .executor import StepExecutor
from .model import Event, Job, JobResult, Pipeline, PipelineResult, Status
from .settings import MAX_WORKERS
from .trigger import TriggerMismatch, select_trigger
from .ui.console import Console, get_console


def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


class JobScheduler:
    """
    Runs the jobs of a pipeline along their dependency DAG.

    - a job starts once every job it needs finished with success
    - a failed/skipped dependency marks its dependents skipped (never run)
    - independent jobs run concurrently, bounded by max_workers
    - siblings keep running when one job fails
    """

    def __init__(
        self,
        executor: StepExecutor,
        *,
        max_workers: int | None = None,
        console: Console | None = None,
    ):
        self.executor = executor
        self.max_workers = max_workers or MAX_WORKERS or default_workers()
        self.console = console or get_console()

    @property
    def cancel_event(self) -> threading.Event:
        return self.executor.cancel_event

    def cancel(self) -> None:
        """Terminate in-flight steps and skip every job not started yet."""
        self.cancel_event.set()

    def _skip(self, name: str, reason: str, results: Dict[str, JobResult]) -> None:
        results[name] = JobResult(name, Status.SKIPPED, reason=reason)
        self.console.print_job_skipped(name, reason)

    def _skip_dependents(
        self, name: str, adj: Mapping[str, set], results: Dict[str, JobResult]
    ) -> None:
        stack = [(child, name) for child in sorted(adj[name])]
        while stack:
            child, parent = stack.pop()
            if child in results:
                continue
            self._skip(child, f"dependency '{parent}' did not succeed", results)
            stack.extend((grand, child) for grand in sorted(adj[child]))

    def run(self, jobs: Mapping[str, Job], pipeline_env: Mapping[str, str] | None = None) -> Dict[str, JobResult]:
        by_name = dict(jobs)
        adj, indeg = build_dag(by_name.values())
        ready: Deque[str] = deque(name for name in by_name if indeg[name] == 0)
        results: Dict[str, JobResult] = {}
        in_flight: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="relayci-job") as pool:
            while ready or in_flight:
                # schedule all currently ready
                while ready:
                    name = ready.popleft()
                    if name in results:
                        continue
                    if self.cancel_event.is_set():
                        self._skip(name, "pipeline cancelled", results)
                        self._skip_dependents(name, adj, results)
                        continue
                    fut = pool.submit(self.executor.run_job, by_name[name], pipeline_env)
                    in_flight[fut] = name

                if not in_flight:
                    break

                # wait for a completion, then loop to schedule newly-ready jobs
                try:
                    done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    self.console.print_info("\nCancelling pipeline...")
                    self.cancel()
                    continue

                for fut in done:
                    name = in_flight.pop(fut)
                    try:
                        result = fut.result()
                    except Exception as e:
                        self.console.print_exception(e)
                        result = JobResult(name, Status.FAILURE, reason=f"internal error: {e}")
                    results[name] = result

                    if result.status is Status.SUCCESS:
                        for nxt in sorted(adj[name]):
                            indeg[nxt] -= 1
                            if indeg[nxt] == 0 and nxt not in results:
                                ready.append(nxt)
                    else:
                        self._skip_dependents(name, adj, results)

        return {name: results[name] for name in by_name}


def aggregate(name: str, results: Mapping[str, JobResult]) -> PipelineResult:
    ok = bool(results) and all(r.status is Status.SUCCESS for r in results.values())
    failed = sorted(n for n, r in results.items() if r.status is not Status.SUCCESS)
    return PipelineResult(
        name=name,
        status=Status.SUCCESS if ok else Status.FAILURE,
        jobs=dict(results),
        reason=None if ok else f"jobs not successful: {failed}",
    )


def run_pipeline(
    pipeline: Pipeline,
    event: Event,
    *,
    registry: ActionRegistry | None = None,
    cache: CacheManager | None = None,
    workspace: str | Path = ".",
    max_workers: int | None = None,
    base_env: Mapping[str, str] | None = None,
    cancel_event: threading.Event | None = None,
    console: Console | None = None,
) -> PipelineResult:
    """
    Match the event, run the job DAG and aggregate one PipelineResult.

    A pipeline whose triggers do not match the event is reported as
    skipped; no job is started.
    """
    console = console or get_console()

    selected = select_trigger(event, pipeline)
    if isinstance(selected, TriggerMismatch):
        console.print_pipeline_skipped(pipeline.name, str(selected))
        return PipelineResult(
            name=pipeline.name,
            status=Status.SKIPPED,
            jobs={n: JobResult(n, Status.SKIPPED, reason="trigger mismatch") for n in pipeline.jobs},
            reason=str(selected),
        )

    console.print_run_started(pipeline.name, event, len(pipeline.jobs))

    executor = StepExecutor(
        registry=registry,
        cache=cache,
        workspace=workspace,
        console=console,
        cancel_event=cancel_event,
        base_env=base_env,
    )
    scheduler = JobScheduler(executor, max_workers=max_workers, console=console)
    results = scheduler.run(pipeline.jobs, pipeline.env)
    return aggregate(pipeline.name, results)
