import pytest

from relayci.errors import DependencyCycleError, SchemaError
from relayci.loader import load_pipeline, loads_pipeline, parse_duration, parse_pipeline
from relayci.model import ActionRef, Command, TriggerSpec


FULL = """\
name: ci
on:
  events: [push, pull_request]
  branches: [main, "release/*"]
env:
  CARGO_TERM_COLOR: always
  DEBUG: false
jobs:
  lint:
    steps:
      - uses: actions/checkout@v3
      - name: fmt
        run: cargo fmt --check
  test:
    dependsOn: [lint]
    env: {RUST_LOG: info}
    timeout: 10m
    steps:
      - uses: dtolnay/rust-toolchain@nightly
        with:
          components: rustfmt
      - run: |
          cargo build
          cargo test
        env: {RUST_LOG: debug}
        timeout: 30s
"""


def test_full_document_loads_into_typed_graph():
    p = loads_pipeline(FULL)
    assert p.name == "ci"
    assert p.triggers == (TriggerSpec(frozenset({"push", "pull_request"}), ("main", "release/*")),)
    assert p.env == {"CARGO_TERM_COLOR": "always", "DEBUG": "false"}
    assert list(p.jobs) == ["lint", "test"]

    lint = p.jobs["lint"]
    assert isinstance(lint.steps[0], ActionRef)
    assert lint.steps[0].identifier == "actions/checkout"
    assert lint.steps[0].version == "v3"
    assert isinstance(lint.steps[1], Command)
    assert lint.steps[1].label == "fmt"

    test = p.jobs["test"]
    assert test.needs == ("lint",)
    assert test.timeout == 600.0
    assert test.steps[0].params == {"components": "rustfmt"}
    assert test.steps[1].run == "cargo build\ncargo test\n"
    assert test.steps[1].env == {"RUST_LOG": "debug"}
    assert test.steps[1].timeout == 30.0
    assert test.steps[1].label == "cargo build"


def test_github_style_on_mapping_gives_one_trigger_per_event():
    p = loads_pipeline("""\
name: Format
on:
  push:
    branches: [ main ]
  pull_request:
    branches: [ main ]
  merge_group:
jobs:
  fmt:
    runs-on: ubuntu-latest
    steps:
      - run: cargo fmt --all -- --check
""")
    assert set(p.triggers) == {
        TriggerSpec(frozenset({"push"}), ("main",)),
        TriggerSpec(frozenset({"pull_request"}), ("main",)),
        TriggerSpec(frozenset({"merge_group"}), ("*",)),
    }
    assert p.jobs["fmt"].runs_on == "ubuntu-latest"


def test_on_as_list_matches_all_branches():
    p = loads_pipeline("name: x\non: [push]\njobs:\n  a:\n    steps:\n      - run: 'true'\n")
    assert p.triggers == (TriggerSpec(frozenset({"push"}), ("*",)),)


def test_needs_is_an_alias_for_depends_on():
    p = loads_pipeline("""\
name: x
on: push
jobs:
  a: {steps: [{run: 'true'}]}
  b: {needs: a, steps: [{run: 'true'}]}
""")
    assert p.jobs["b"].needs == ("a",)


def test_duplicate_job_name_is_rejected():
    with pytest.raises(SchemaError) as ei:
        loads_pipeline("""\
name: x
on: push
jobs:
  a: {steps: [{run: 'true'}]}
  a: {steps: [{run: 'false'}]}
""")
    assert "defined twice" in str(ei.value)


def test_empty_step_list_is_rejected():
    with pytest.raises(SchemaError) as ei:
        loads_pipeline("name: x\non: push\njobs:\n  a:\n    steps: []\n")
    assert any("no steps" in v for v in ei.value.violations)


def test_unknown_dependency_is_rejected():
    with pytest.raises(SchemaError) as ei:
        loads_pipeline("""\
name: x
on: push
jobs:
  a: {dependsOn: [ghost], steps: [{run: 'true'}]}
""")
    assert any("ghost" in v for v in ei.value.violations)


def test_cycle_is_rejected_before_anything_runs():
    with pytest.raises(DependencyCycleError) as ei:
        loads_pipeline("""\
name: x
on: push
jobs:
  a: {dependsOn: [c], steps: [{run: 'true'}]}
  b: {dependsOn: [a], steps: [{run: 'true'}]}
  c: {dependsOn: [b], steps: [{run: 'true'}]}
  d: {steps: [{run: 'true'}]}
""")
    assert ei.value.nodes == ["a", "b", "c"]
    assert isinstance(ei.value, SchemaError)


@pytest.mark.parametrize(
    "step",
    [
        "{run: 'true', uses: actions/checkout@v3}",
        "{name: nothing}",
        "{run: 'true', with: {a: 1}}",
    ],
)
def test_step_needs_exactly_one_of_uses_or_run(step):
    with pytest.raises(SchemaError):
        loads_pipeline(f"name: x\non: push\njobs:\n  a:\n    steps:\n      - {step}\n")


def test_unknown_keys_are_rejected():
    with pytest.raises(SchemaError) as ei:
        loads_pipeline("name: x\non: push\njobs:\n  a:\n    stepz: []\n")
    assert any("stepz" in v for v in ei.value.violations)


def test_violations_are_collected_together():
    with pytest.raises(SchemaError) as ei:
        parse_pipeline({
            "name": "x",
            "on": {"events": []},
            "jobs": {"a": {"steps": []}, "b": {"timeout": "soon", "steps": [{"run": "true"}]}},
        })
    assert len(ei.value.violations) == 3


def test_empty_jobs_and_non_mapping_documents_are_rejected():
    with pytest.raises(SchemaError):
        parse_pipeline({"name": "x", "on": "push", "jobs": {}})
    with pytest.raises(SchemaError):
        parse_pipeline(["not", "a", "mapping"])


def test_malformed_yaml_and_missing_file(tmp_path):
    with pytest.raises(SchemaError):
        loads_pipeline("name: [unclosed\n")
    with pytest.raises(SchemaError):
        load_pipeline(tmp_path / "missing.yml")


def test_load_pipeline_reads_a_file(write_pipeline):
    path = write_pipeline("name: x\non: push\njobs:\n  a:\n    steps:\n      - run: echo hi\n")
    assert load_pipeline(path).jobs["a"].steps[0].run == "echo hi"


@pytest.mark.parametrize(
    "value, seconds",
    [(30, 30.0), (1.5, 1.5), ("45s", 45.0), ("10m", 600.0), ("2h", 7200.0), ("250ms", 0.25), ("12", 12.0), (None, None)],
)
def test_parse_duration(value, seconds):
    assert parse_duration(value) == (None if seconds is None else pytest.approx(seconds))


@pytest.mark.parametrize("value", ["soon", "-1s", 0, True, "5d"])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_duration(value)
