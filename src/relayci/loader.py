# loader.py
"""
Pipeline loading and validation.

Reads a YAML pipeline definition, validates its shape with pydantic and its
job graph with `dag.validate_graph`, and returns an immutable `Pipeline`.
Nothing is executed here: a definition either loads completely or raises
`SchemaError` listing what is wrong.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .dag import validate_graph
from .errors import SchemaError
from .model import ActionRef, Command, Job, Pipeline, Step, TriggerSpec

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


# ----------------------------------------------------------------------
# YAML reading
# ----------------------------------------------------------------------

class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate mapping keys instead of overwriting."""


def _construct_mapping(loader: _UniqueKeyLoader, node: yaml.MappingNode, deep: bool = False):
    seen = set()
    for key_node, _value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in seen:
            raise SchemaError(
                "Duplicate key in pipeline definition",
                [f"key {key!r} defined twice (line {key_node.start_mark.line + 1})"],
            )
        seen.add(key)
    return loader.construct_mapping(node, deep=deep)


_UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_mapping
)


def parse_duration(value: Union[int, float, str, None]) -> Optional[float]:
    """Seconds as a number, or a string like '90s', '10m', '1.5h', '500ms'."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        m = _DURATION_RE.match(str(value))
        if not m:
            raise ValueError(f"invalid duration: {value!r}")
        seconds = float(m.group(1)) * _UNITS[m.group(2)]
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {value!r}")
    return seconds


def _env_value(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


# ----------------------------------------------------------------------
# Document schema
# ----------------------------------------------------------------------

EnvMap = Dict[str, Any]


class StepDoc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: Optional[str] = None
    uses: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    run: Optional[str] = None
    env: EnvMap = Field(default_factory=dict)
    cwd: Optional[str] = Field(default=None, alias="working-directory")
    timeout: Optional[Union[int, float, str]] = None

    @model_validator(mode="after")
    def _uses_xor_run(self) -> "StepDoc":
        if bool(self.uses) == bool(self.run):
            raise ValueError("a step needs exactly one of 'uses' or 'run'")
        if self.with_ and not self.uses:
            raise ValueError("'with' is only allowed together with 'uses'")
        return self


class JobDoc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")
    needs: List[str] = Field(default_factory=list)
    env: EnvMap = Field(default_factory=dict)
    timeout: Optional[Union[int, float, str]] = None
    runs_on: Optional[str] = Field(default=None, alias="runs-on")
    steps: List[StepDoc] = Field(default_factory=list)

    @field_validator("depends_on", "needs", mode="before")
    @classmethod
    def _one_or_many(cls, v):
        if isinstance(v, str):
            return [v]
        return v


class PipelineDoc(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    on: Any
    env: EnvMap = Field(default_factory=dict)
    jobs: Dict[str, JobDoc]


# ----------------------------------------------------------------------
# Conversion
# ----------------------------------------------------------------------

def _as_list(value: Any, what: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ValueError(f"'{what}' must be a string or a list of strings, got {value!r}")


def parse_triggers(on: Any) -> Tuple[TriggerSpec, ...]:
    """
    Accepted forms of `on`:
      - {events: [push], branches: [main]}
      - {push: {branches: [main]}, pull_request: {branches: [main]}}
      - [push, pull_request]  /  push
    A trigger without branches matches every branch.
    """
    if isinstance(on, (str, list)):
        events = _as_list(on, "on")
        if not events:
            raise ValueError("'on' lists no events")
        return (TriggerSpec(events=frozenset(events)),)

    if not isinstance(on, dict) or not on:
        raise ValueError(f"'on' must be a mapping, a list or an event name, got {on!r}")

    if "events" in on:
        extra = set(on) - {"events", "branches"}
        if extra:
            raise ValueError(f"unexpected keys in 'on': {sorted(extra)}")
        events = _as_list(on["events"], "on.events")
        if not events:
            raise ValueError("'on.events' is empty")
        branches = _as_list(on.get("branches"), "on.branches") or ["*"]
        return (TriggerSpec(events=frozenset(events), branches=tuple(branches)),)

    triggers = []
    for event, filters in on.items():
        filters = filters or {}
        if not isinstance(filters, dict):
            raise ValueError(f"filters of event '{event}' must be a mapping")
        branches = _as_list(filters.get("branches"), f"on.{event}.branches") or ["*"]
        triggers.append(TriggerSpec(events=frozenset([str(event)]), branches=tuple(branches)))
    return tuple(triggers)


def _to_step(doc: StepDoc, where: str, violations: List[str]) -> Optional[Step]:
    try:
        timeout = parse_duration(doc.timeout)
    except ValueError as e:
        violations.append(f"{where}: {e}")
        return None
    env = {k: _env_value(v) for k, v in doc.env.items()}
    if doc.uses:
        return ActionRef(uses=doc.uses, name=doc.name, params=dict(doc.with_), env=env, timeout=timeout)
    return Command(run=doc.run or "", name=doc.name, env=env, cwd=doc.cwd, timeout=timeout)


def _to_job(name: str, doc: JobDoc, violations: List[str]) -> Optional[Job]:
    ok = True
    if not doc.steps:
        violations.append(f"job '{name}' has no steps")
        ok = False
    try:
        timeout = parse_duration(doc.timeout)
    except ValueError as e:
        violations.append(f"job '{name}': {e}")
        ok = False
        timeout = None

    steps = []
    for idx, s in enumerate(doc.steps):
        step = _to_step(s, f"job '{name}' step {idx + 1}", violations)
        if step is None:
            ok = False
        steps.append(step)
    if not ok:
        return None

    needs = list(dict.fromkeys([*doc.depends_on, *doc.needs]))
    return Job(
        name=name,
        steps=tuple(steps),
        needs=tuple(needs),
        env={k: _env_value(v) for k, v in doc.env.items()},
        timeout=timeout,
        runs_on=doc.runs_on,
    )


def _format_validation_error(e: ValidationError) -> List[str]:
    out = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc or '<root>'}: {err.get('msg')}")
    return out


def parse_pipeline(doc: Any) -> Pipeline:
    """Validate a raw mapping (already parsed YAML/JSON) into a Pipeline."""
    if not isinstance(doc, dict):
        raise SchemaError("Pipeline definition must be a mapping", [f"got {type(doc).__name__}"])

    # YAML 1.1 reads a bare `on:` key as boolean True.
    if True in doc and "on" not in doc:
        doc = dict(doc)
        doc["on"] = doc.pop(True)

    try:
        parsed = PipelineDoc.model_validate(doc)
    except ValidationError as e:
        raise SchemaError("Invalid pipeline definition", _format_validation_error(e)) from e

    violations: List[str] = []
    try:
        triggers = parse_triggers(parsed.on)
    except ValueError as e:
        violations.append(str(e))
        triggers = ()

    if not parsed.jobs:
        violations.append("pipeline defines no jobs")

    jobs: Dict[str, Job] = {}
    for name, job_doc in parsed.jobs.items():
        job = _to_job(name, job_doc, violations)
        if job is not None:
            jobs[name] = job

    if violations:
        raise SchemaError(f"Invalid pipeline '{parsed.name}'", violations)

    validate_graph(jobs.values())

    return Pipeline(
        name=parsed.name,
        triggers=triggers,
        jobs=jobs,
        env={k: _env_value(v) for k, v in parsed.env.items()},
    )


def loads_pipeline(text: str) -> Pipeline:
    try:
        doc = yaml.load(text, Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise SchemaError("Pipeline definition is not valid YAML", [str(e)]) from e
    return parse_pipeline(doc)


def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a YAML file.

    Raises:
      SchemaError for a missing file, malformed YAML or an invalid definition.
    """
    p = Path(path).expanduser()
    if not p.is_file():
        raise SchemaError("Pipeline file not found", [str(p)])
    return loads_pipeline(p.read_text(encoding="utf-8"))
