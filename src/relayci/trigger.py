# trigger.py
from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, Union

from .model import Event, Pipeline, TriggerSpec


@dataclass(frozen=True)
class TriggerMismatch:
    """
    Not an error: the event does not activate the pipeline.

    The run is reported as skipped, never as a failure.
    """
    event: Event
    pipeline: str

    def __str__(self) -> str:
        return (
            f"no trigger of '{self.pipeline}' matches "
            f"event {self.event.type!r} on branch {self.event.branch!r}"
        )


def branch_matches(branch: str, pattern: str) -> bool:
    return branch == pattern or fnmatchcase(branch, pattern)


def _matches_any(branch: str, patterns: Iterable[str]) -> bool:
    return any(branch_matches(branch, p) for p in patterns)


def matches(event: Event, trigger: TriggerSpec) -> bool:
    return event.type in trigger.events and _matches_any(event.branch, trigger.branches)


def select_trigger(event: Event, pipeline: Pipeline) -> Union[TriggerSpec, TriggerMismatch]:
    """Return the first trigger activated by `event`, or a TriggerMismatch."""
    for trigger in pipeline.triggers:
        if matches(event, trigger):
            return trigger
    return TriggerMismatch(event=event, pipeline=pipeline.name)
