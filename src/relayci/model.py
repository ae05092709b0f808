# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class Event:
    """A source-control event: what happened (`type`) and on which branch."""
    type: str
    branch: str


@dataclass(frozen=True)
class TriggerSpec:
    events: FrozenSet[str]
    branches: Tuple[str, ...] = ("*",)


# ----------------------------------------------------------------------
# Steps (tagged variant)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Command:
    """A single shell command."""
    run: str
    name: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    timeout: Optional[float] = None

    @property
    def label(self) -> str:
        if self.name:
            return self.name
        first = self.run.strip().splitlines()[0] if self.run.strip() else ""
        return first or "<empty command>"


@dataclass(frozen=True)
class ActionRef:
    """A reference to a registered action, e.g. `actions/checkout@v3`."""
    uses: str
    name: Optional[str] = None
    params: Mapping[str, object] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None

    @property
    def identifier(self) -> str:
        return self.uses.partition("@")[0]

    @property
    def version(self) -> Optional[str]:
        _, sep, ver = self.uses.partition("@")
        return ver if sep else None

    @property
    def label(self) -> str:
        return self.name or self.uses


Step = Union[Command, ActionRef]


@dataclass(frozen=True)
class Job:
    """
    A CI job: ordered steps + dependencies + job-level env.

    `needs` holds the names of jobs that must succeed BEFORE this job runs.
    """
    name: str
    steps: Tuple[Step, ...]
    needs: Tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    runs_on: Optional[str] = None


@dataclass(frozen=True)
class Pipeline:
    name: str
    triggers: Tuple[TriggerSpec, ...]
    jobs: Mapping[str, Job]
    env: Mapping[str, str] = field(default_factory=dict)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

class Status(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"

    @property
    def failed(self) -> bool:
        return self in (Status.FAILURE, Status.TIMED_OUT)


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SCHEMA = 2
EXIT_INTERNAL = 3


@dataclass
class StepResult:
    name: str
    status: Status
    duration: float = 0.0
    exit_code: Optional[int] = None
    reason: Optional[str] = None
    output: str = ""


@dataclass
class JobResult:
    name: str
    status: Status
    steps: List[StepResult] = field(default_factory=list)
    duration: float = 0.0
    reason: Optional[str] = None

    @property
    def first_failure(self) -> Optional[StepResult]:
        for s in self.steps:
            if s.status.failed:
                return s
        return None


@dataclass
class PipelineResult:
    name: str
    status: Status
    jobs: Dict[str, JobResult] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def exit_code(self) -> int:
        if self.status in (Status.SUCCESS, Status.SKIPPED):
            return EXIT_OK
        return EXIT_FAILED
