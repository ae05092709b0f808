# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


class RelayError(Exception):
    """Base class for every error raised by relayci."""


# ----------------------------------------------------------------------
# Pre-execution (fatal, the pipeline never starts)
# ----------------------------------------------------------------------

@dataclass
class SchemaError(RelayError):
    """
    Malformed or invalid pipeline definition.

    `violations` lists every constraint that failed so the user can fix them
    in one go instead of one error per run.
    """
    message: str
    violations: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [self.message]
        for v in self.violations:
            lines.append(f"  - {v}")
        return "\n".join(lines)


@dataclass
class DependencyCycleError(SchemaError):
    nodes: List[str] = field(default_factory=list)


# ----------------------------------------------------------------------
# Job-local
# ----------------------------------------------------------------------

@dataclass
class StepFailure(RelayError):
    job: str
    step: str
    exit_code: int | None
    reason: str = ""
    output: str = ""

    def __str__(self) -> str:
        code = "" if self.exit_code is None else f" (exit={self.exit_code})"
        reason = f": {self.reason}" if self.reason else ""
        return f"[{self.job}] step '{self.step}' failed{code}{reason}"


class TimedOut(RelayError):
    """A step (or the job around it) ran past its time limit."""


class Cancelled(RelayError):
    """The pipeline was cancelled while the step was in flight."""


@dataclass
class UnknownAction(RelayError):
    identifier: str

    def __str__(self) -> str:
        return f"Unknown action: {self.identifier!r}"


@dataclass
class ActionError(RelayError):
    """Raised by action handlers to report a failure."""
    message: str
    exit_code: int = 1
    output: str = ""

    def __str__(self) -> str:
        return self.message


# ----------------------------------------------------------------------
# Cache (never escalates past the CacheManager)
# ----------------------------------------------------------------------

class CacheError(RelayError):
    """Cache backend unreachable or unusable."""
