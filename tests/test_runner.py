import threading
import time

from relayci.executor import StepExecutor
from relayci.loader import loads_pipeline
from relayci.model import Command, Event, Job, JobResult, Status
from relayci.runner import JobScheduler, aggregate, run_pipeline


def run(text, event, tmp_path, console, base_env, **kw):
    return run_pipeline(
        loads_pipeline(text),
        event,
        workspace=tmp_path,
        console=console,
        base_env=base_env,
        **kw,
    )


SCENARIO_TEST = """\
name: test
on: {events: [push], branches: [main]}
jobs:
  test:
    steps:
      - uses: actions/checkout@v3
      - name: install-deps
        run: echo installing
      - name: run-tests
        run: exit 0
"""

SCENARIO_FMT = """\
name: fmt
on: {events: [pull_request], branches: [main]}
jobs:
  fmt:
    steps:
      - uses: actions/checkout@v3
      - name: run-format-check
        run: echo "file.rs needs formatting"; exit 1
"""


def test_push_to_main_runs_test_pipeline_successfully(tmp_path, console, base_env):
    result = run(SCENARIO_TEST, Event("push", "main"), tmp_path, console, base_env)
    assert result.status is Status.SUCCESS
    assert result.exit_code == 0
    assert [s.status for s in result.jobs["test"].steps] == [Status.SUCCESS] * 3


def test_failing_format_check_fails_the_pipeline(tmp_path, console, base_env, capsys):
    result = run(SCENARIO_FMT, Event("pull_request", "main"), tmp_path, console, base_env)
    assert result.jobs["fmt"].status is Status.FAILURE
    assert result.status is Status.FAILURE
    assert result.exit_code == 1
    assert "needs formatting" in capsys.readouterr().out


def test_unmatched_event_skips_pipeline_without_running_jobs(tmp_path, console, base_env):
    text = SCENARIO_TEST.replace("name: install-deps\n        run: echo installing", "run: touch ran")
    result = run(text, Event("merge_group", "main"), tmp_path, console, base_env)
    assert result.status is Status.SKIPPED
    assert result.exit_code == 0
    assert all(j.status is Status.SKIPPED for j in result.jobs.values())
    assert not (tmp_path / "ran").exists()


DIAMOND = """\
name: dag
on: push
jobs:
  a:
    steps: [{run: "exit 1"}]
  b:
    dependsOn: [a]
    steps: [{run: touch b}]
  c:
    dependsOn: [b]
    steps: [{run: touch c}]
  sibling:
    steps: [{run: touch sibling}]
"""


def test_failed_dependency_skips_dependents_transitively(tmp_path, console, base_env):
    result = run(DIAMOND, Event("push", "main"), tmp_path, console, base_env)
    assert result.jobs["a"].status is Status.FAILURE
    assert result.jobs["b"].status is Status.SKIPPED
    assert result.jobs["c"].status is Status.SKIPPED
    assert result.jobs["sibling"].status is Status.SUCCESS
    assert not (tmp_path / "b").exists()
    assert not (tmp_path / "c").exists()
    assert (tmp_path / "sibling").exists()
    assert result.status is Status.FAILURE
    assert list(result.jobs) == ["a", "b", "c", "sibling"]


def test_dependent_runs_after_its_dependencies(tmp_path, console, base_env):
    text = """\
name: order
on: push
jobs:
  build:
    steps: [{run: "sleep 0.2; echo build >> log"}]
  lint:
    steps: [{run: "echo lint >> log"}]
  test:
    needs: [build, lint]
    steps: [{run: "echo test >> log"}]
"""
    result = run(text, Event("push", "main"), tmp_path, console, base_env)
    assert result.status is Status.SUCCESS
    assert (tmp_path / "log").read_text().split()[-1] == "test"


def test_independent_jobs_run_concurrently(tmp_path, console, base_env):
    text = "name: par\non: push\njobs:\n" + "".join(
        f"  j{i}:\n    steps: [{{run: 'sleep 0.5'}}]\n" for i in range(4)
    )
    started = time.monotonic()
    result = run(text, Event("push", "main"), tmp_path, console, base_env, max_workers=4)
    assert result.status is Status.SUCCESS
    assert time.monotonic() - started < 1.8


def test_worker_limit_bounds_concurrency(tmp_path, console, base_env):
    text = "name: seq\non: push\njobs:\n" + "".join(
        f"  j{i}:\n    steps: [{{run: 'sleep 0.3'}}]\n" for i in range(3)
    )
    started = time.monotonic()
    result = run(text, Event("push", "main"), tmp_path, console, base_env, max_workers=1)
    assert result.status is Status.SUCCESS
    assert time.monotonic() - started >= 0.9


def test_step_timeout_does_not_fail_siblings(tmp_path, console, base_env):
    text = """\
name: t
on: push
jobs:
  slow:
    steps: [{run: "sleep 5", timeout: 300ms}]
  fast:
    steps: [{run: "true"}]
"""
    result = run(text, Event("push", "main"), tmp_path, console, base_env)
    assert result.jobs["slow"].status is Status.FAILURE
    assert result.jobs["fast"].status is Status.SUCCESS


def test_cancel_fails_in_flight_jobs_and_skips_the_rest(tmp_path, console, base_env):
    pipeline = loads_pipeline("""\
name: c
on: push
jobs:
  long:
    steps: [{run: "sleep 5"}]
  after:
    needs: [long]
    steps: [{run: "touch after"}]
""")
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        result = run_pipeline(
            pipeline, Event("push", "main"),
            workspace=tmp_path, console=console, base_env=base_env, cancel_event=cancel,
        )
    finally:
        timer.cancel()
    assert result.jobs["long"].status is Status.FAILURE
    assert result.jobs["long"].reason == "Cancelled"
    assert result.jobs["after"].status is Status.SKIPPED
    assert not (tmp_path / "after").exists()


def test_jobs_not_started_before_cancel_are_skipped(tmp_path, console, base_env):
    executor = StepExecutor(workspace=tmp_path, console=console, base_env=base_env)
    scheduler = JobScheduler(executor, max_workers=1, console=console)
    scheduler.cancel()
    results = scheduler.run({"a": Job("a", (Command("touch a"),))})
    assert results["a"].status is Status.SKIPPED
    assert not (tmp_path / "a").exists()


def test_pipeline_success_only_if_every_job_succeeds():
    ok = {"a": JobResult("a", Status.SUCCESS), "b": JobResult("b", Status.SUCCESS)}
    assert aggregate("p", ok).status is Status.SUCCESS
    mixed = dict(ok, c=JobResult("c", Status.SKIPPED))
    assert aggregate("p", mixed).status is Status.FAILURE
    assert aggregate("p", mixed).exit_code == 1


def test_cache_is_shared_between_jobs(tmp_path, console, base_env, memory_cache):
    text = """\
name: cache
on: push
jobs:
  producer:
    steps:
      - run: mkdir -p deps && echo built > deps/lib.txt
      - uses: relayci/cache@v1
        with: {key: deps, path: deps}
  consumer:
    needs: [producer]
    steps:
      - run: rm -rf deps
      - uses: relayci/cache@v1
        with: {key: deps, path: deps}
      - run: test "$RELAYCI_CACHE_HIT" = true && test -f deps/lib.txt
"""
    result = run(text, Event("push", "main"), tmp_path, console, base_env, cache=memory_cache)
    assert result.status is Status.SUCCESS, result.jobs


def test_jobs_queued_behind_the_worker_limit_are_skipped_on_cancel(tmp_path, console, base_env):
    pipeline = loads_pipeline("""\
name: c
on: push
jobs:
  a:
    steps: [{run: "sleep 3"}]
  b:
    steps: [{run: "touch b"}]
""")
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()
    try:
        result = run_pipeline(
            pipeline, Event("push", "main"), max_workers=1,
            workspace=tmp_path, console=console, base_env=base_env, cancel_event=cancel,
        )
    finally:
        timer.cancel()
    assert result.jobs["a"].status is Status.FAILURE
    assert result.jobs["a"].reason == "Cancelled"
    assert result.jobs["b"].status is Status.SKIPPED
    assert result.jobs["b"].reason == "pipeline cancelled"
    assert not (tmp_path / "b").exists()
